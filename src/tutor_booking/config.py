from __future__ import annotations

import os

AWS_REGION = os.environ.get("AWS_REGION", "us-east-1")
TABLE_NAME = os.environ.get("TABLE_NAME", "bookings")
TEACHERS_TABLE_NAME = os.environ.get("TEACHERS_TABLE_NAME", "teachers")

MIN_LEAD_MINUTES = int(os.environ.get("MIN_LEAD_MINUTES", "30"))
BOOKING_TTL_HOURS = int(os.environ.get("BOOKING_TTL_HOURS", "72"))
DEFAULT_DURATION_MINUTES = int(os.environ.get("DEFAULT_DURATION_MINUTES", "60"))

NOTIFICATION_CHANNEL = os.environ.get("NOTIFICATION_CHANNEL", "whatsapp")
# "outbox" queues through the table stream, "log" only logs (local dev)
NOTIFICATION_SINK = os.environ.get("NOTIFICATION_SINK", "outbox")
PROXY_BASE_URL = os.environ.get("PROXY_BASE_URL", "http://localhost:4000").rstrip("/")
EVENT_BUS_NAME = os.environ.get("EVENT_BUS_NAME", "default")

METRICS_NAMESPACE = os.environ.get("METRICS_NAMESPACE", "TutorBooking")
