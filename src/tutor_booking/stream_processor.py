from __future__ import annotations

import json
from typing import Any

import boto3
from aws_lambda_powertools import Logger, Tracer
from aws_lambda_powertools.utilities.typing import LambdaContext
from boto3.dynamodb.types import TypeDeserializer

from .config import AWS_REGION, EVENT_BUS_NAME

logger = Logger()
tracer = Tracer()

_events = boto3.client("events", region_name=AWS_REGION)
_deserializer = TypeDeserializer()

NOTIFICATION_SOURCE = "tutor_booking.notification"
NOTIFICATION_DETAIL_TYPE = "BookingRequested"


def _from_image(image: dict[str, Any]) -> dict[str, Any]:
    return {name: _deserializer.deserialize(value) for name, value in image.items()}


@tracer.capture_lambda_handler
def lambda_handler(event: dict[str, Any], context: LambdaContext) -> None:
    # Triggered by the table stream; relays queued notifications to EventBridge
    entries: list[dict[str, Any]] = []
    for record in event.get("Records", []):
        if record.get("eventName") != "INSERT":
            continue

        new_image = record.get("dynamodb", {}).get("NewImage", {})
        if new_image.get("entity", {}).get("S") != "notification":
            continue

        item = _from_image(new_image)
        detail = {
            "version": "1.0",
            "type": NOTIFICATION_DETAIL_TYPE,
            "notification_id": item.get("notification_id"),
            "booking_id": item.get("booking_id"),
            "to": item.get("to"),
            "channel": item.get("channel"),
            "body": item.get("body"),
            "payload": item.get("payload", {}),
        }
        logger.info("Relaying notification", extra={"notification_id": detail["notification_id"]})
        entries.append(
            {
                "Source": NOTIFICATION_SOURCE,
                "DetailType": NOTIFICATION_DETAIL_TYPE,
                "Detail": json.dumps(detail, default=str),
                "EventBusName": EVENT_BUS_NAME,
            }
        )

    # put_events accepts at most 10 entries per call
    for start in range(0, len(entries), 10):
        batch = entries[start : start + 10]
        resp = _events.put_events(Entries=batch)
        if resp.get("FailedEntryCount"):
            logger.error(
                "Notification relay failed",
                extra={"failed": resp["FailedEntryCount"], "entries": resp.get("Entries", [])},
            )
