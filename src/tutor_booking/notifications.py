from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Protocol

from aws_lambda_powertools import Logger
from aws_lambda_powertools.metrics import Metrics, MetricUnit

from .config import METRICS_NAMESPACE, NOTIFICATION_CHANNEL, NOTIFICATION_SINK, PROXY_BASE_URL
from .models import Booking, Notification, ProxySession
from .repository import ReservationRepository

logger = Logger()
metrics = Metrics(namespace=METRICS_NAMESPACE)


class NotificationSink(Protocol):
    def send(self, notification: Notification) -> bool: ...


class OutboxNotificationSink:
    """Queues the notification in the table; the stream processor delivers it."""

    def __init__(self, store: ReservationRepository) -> None:
        self._store = store

    def send(self, notification: Notification) -> bool:
        self._store.put_notification(notification)
        return True


class LoggingNotificationSink:
    def send(self, notification: Notification) -> bool:
        logger.info(
            "Notification",
            extra={"channel": notification.channel, "to": notification.to, "body": notification.body},
        )
        return True


def render_body(booking: Booking, session: ProxySession | None) -> str:
    lines = [
        "New booking request",
        f"Student: {booking.student_name}",
        f"Time: {booking.requested_time_utc.isoformat()}",
    ]
    if session is not None:
        lines.append(f"Proxy chat: {PROXY_BASE_URL}/proxy/{session.session_id}")
    return "\n".join(lines)


class NotificationDispatcher:
    def __init__(
        self,
        sink: NotificationSink,
        channel: str = NOTIFICATION_CHANNEL,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._sink = sink
        self._channel = channel
        self._clock = clock

    def build(self, booking: Booking, session: ProxySession | None) -> Notification:
        return Notification(
            notification_id=str(uuid.uuid4()),
            booking_id=booking.booking_id,
            to=booking.teacher_id,
            channel=self._channel,
            body=render_body(booking, session),
            payload={"proxySessionId": session.session_id if session else None},
            created_at=self._clock(),
        )

    def dispatch(self, booking: Booking, session: ProxySession | None) -> bool:
        """Hand the notification to the sink. Never raises."""
        try:
            notification = self.build(booking, session)
            delivered = self._sink.send(notification)
        except Exception:
            logger.exception("Notification dispatch failed", extra={"booking_id": booking.booking_id})
            delivered = False
        if not delivered:
            metrics.add_metric(name="NotificationFailed", value=1, unit=MetricUnit.Count)
            logger.warning("Booking left without a delivered notification", extra={"booking_id": booking.booking_id})
        return delivered


def default_sink(store: ReservationRepository) -> NotificationSink:
    if NOTIFICATION_SINK == "log":
        return LoggingNotificationSink()
    return OutboxNotificationSink(store)
