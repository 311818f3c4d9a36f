from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any, TypedDict, cast

import boto3
from aws_lambda_powertools import Logger
from botocore.exceptions import ClientError

if TYPE_CHECKING:
    # Only for static type checking; not imported at runtime
    from mypy_boto3_dynamodb.service_resource import DynamoDBServiceResource
    from mypy_boto3_dynamodb.service_resource import Table as DynamoDBTable
else:
    # Fallbacks to satisfy annotations at runtime
    DynamoDBServiceResource = Any  # type: ignore[assignment]
    DynamoDBTable = Any  # type: ignore[assignment]

from .config import AWS_REGION, BOOKING_TTL_HOURS, TABLE_NAME
from .errors import ConflictError, InternalError
from .models import (
    Booking,
    Created,
    CreateResult,
    KeyConflict,
    Notification,
    ProxySession,
    ReservationRequest,
    SlotConflict,
)

logger = Logger()

_dynamodb: DynamoDBServiceResource = boto3.resource("dynamodb", region_name=AWS_REGION)
_table: DynamoDBTable = _dynamodb.Table(TABLE_NAME)

BOOKING_NOT_FOUND = "Booking not found"
PROXY_SESSION_NOT_FOUND = "Proxy session not found"

_CONDITION_FAILED = "ConditionalCheckFailed"
_TRANSACTION_CONFLICT = "TransactionConflict"
_CLAIM_LOST = {_CONDITION_FAILED, _TRANSACTION_CONFLICT}
_INSERT_ATTEMPTS = 2


class BookingItem(TypedDict, total=False):
    pk: str
    entity: str
    booking_id: str
    teacher_id: str
    student_name: str
    student_phone: str
    student_email: str
    requested_time_utc: str
    duration_minutes: int
    idempotency_key: str
    status: str
    created_at: str
    expires_at: str
    proxy_session_id: str


def _dt_to_iso(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC).isoformat()


def _iso_to_dt(s: str) -> datetime:
    return datetime.fromisoformat(s)


def booking_key(booking_id: str) -> str:
    return f"BOOKING#{booking_id}"


def slot_key(teacher_id: str, requested_time_utc: datetime) -> str:
    return f"SLOT#{teacher_id}#{_dt_to_iso(requested_time_utc)}"


def idempotency_key(key: str) -> str:
    return f"IDEMPOTENCY#{key}"


def session_key(session_id: str) -> str:
    return f"SESSION#{session_id}"


def notification_key(notification_id: str) -> str:
    return f"NOTIFICATION#{notification_id}"


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


def _cancellation_codes(exc: ClientError) -> list[str]:
    return [str(r.get("Code")) for r in cast(list[dict[str, Any]], exc.response.get("CancellationReasons", []))]


def _only_transaction_conflicts(exc: ClientError) -> bool:
    codes = _cancellation_codes(exc)
    return _TRANSACTION_CONFLICT in codes and all(code in ("None", _TRANSACTION_CONFLICT) for code in codes)


class DynamoReservationStore:
    """Booking, claim, proxy session and outbox items in one DynamoDB table.

    Uniqueness of a slot and of an idempotency key is encoded as claim items
    (``SLOT#...`` and ``IDEMPOTENCY#...``) written in the same conditional
    transaction as the booking, so the table itself arbitrates races.
    """

    def __init__(self, table: DynamoDBTable) -> None:
        self._table = table

    @property
    def _client(self) -> Any:
        # The resource-bound client serializes plain Python values
        return self._table.meta.client

    def _put(self, item: dict[str, Any]) -> dict[str, Any]:
        return {
            "Put": {
                "TableName": self._table.name,
                "Item": item,
                "ConditionExpression": "attribute_not_exists(pk)",
            }
        }

    def create(self, request: ReservationRequest, now: datetime) -> CreateResult:
        booking_id = str(uuid.uuid4())
        try:
            expires_at = now + timedelta(hours=BOOKING_TTL_HOURS)
        except OverflowError as exc:
            logger.exception("Booking expiry out of range", extra={"created_at": now.isoformat()})
            raise InternalError("Internal server error") from exc
        item: BookingItem = {
            "pk": booking_key(booking_id),
            "entity": "booking",
            "booking_id": booking_id,
            "teacher_id": request.teacher_id,
            "student_name": request.student_name,
            "student_phone": request.student_phone,
            "requested_time_utc": _dt_to_iso(request.requested_time_utc),
            "duration_minutes": request.duration_minutes,
            "status": "pending",
            "created_at": _dt_to_iso(now),
            "expires_at": _dt_to_iso(expires_at),
        }
        if request.student_email:
            item["student_email"] = request.student_email
        if request.idempotency_key:
            item["idempotency_key"] = request.idempotency_key

        transact_items = [
            self._put(cast(dict[str, Any], item)),
            self._put(
                {
                    "pk": slot_key(request.teacher_id, request.requested_time_utc),
                    "entity": "slot",
                    "booking_id": booking_id,
                }
            ),
        ]
        if request.idempotency_key:
            transact_items.append(
                self._put(
                    {
                        "pk": idempotency_key(request.idempotency_key),
                        "entity": "idempotency",
                        "booking_id": booking_id,
                    }
                )
            )

        for attempt in range(1, _INSERT_ATTEMPTS + 1):
            try:
                self._client.transact_write_items(TransactItems=transact_items)
                break
            except ClientError as exc:
                if _error_code(exc) != "TransactionCanceledException":
                    logger.exception("Booking insert failed", extra={"booking_id": booking_id})
                    raise InternalError("Internal server error") from exc
                if attempt < _INSERT_ATTEMPTS and _only_transaction_conflicts(exc):
                    # Concurrent transactions on the same claims can all be
                    # rejected without any of them committing
                    logger.info("Booking insert hit a transaction conflict, retrying", extra={"booking_id": booking_id})
                    continue
                return self._classify_cancellation(exc, request)

        logger.info(
            "Booking created",
            extra={"booking_id": booking_id, "teacher_id": request.teacher_id, "slot": item["requested_time_utc"]},
        )
        return Created(_to_booking(item))

    def _classify_cancellation(self, exc: ClientError, request: ReservationRequest) -> CreateResult:
        reasons = _cancellation_codes(exc)
        logger.info("Booking insert cancelled", extra={"reasons": reasons, "teacher_id": request.teacher_id})

        # Positions follow transact_items: booking, slot, idempotency
        if request.idempotency_key and len(reasons) > 2 and reasons[2] in _CLAIM_LOST:  # noqa: PLR2004
            return KeyConflict(request.idempotency_key)
        if any(code in _CLAIM_LOST for code in reasons):
            return SlotConflict(request.teacher_id, request.requested_time_utc)
        raise InternalError("Internal server error") from exc

    def find_by_idempotency_key(self, key: str) -> Booking | None:
        resp = cast(
            dict[str, Any],
            self._table.get_item(Key={"pk": idempotency_key(key)}, ConsistentRead=True),
        )
        claim = resp.get("Item")
        if not isinstance(claim, dict):
            return None
        try:
            return self.get_booking(claim["booking_id"])
        except KeyError:
            return None

    def find_conflicting_slot(self, teacher_id: str, requested_time_utc: datetime) -> str | None:
        resp = cast(
            dict[str, Any],
            self._table.get_item(Key={"pk": slot_key(teacher_id, requested_time_utc)}, ConsistentRead=True),
        )
        claim = resp.get("Item")
        if not isinstance(claim, dict):
            return None
        return cast(str, claim["booking_id"])

    def get_booking(self, booking_id: str) -> Booking:
        resp = cast(dict[str, Any], self._table.get_item(Key={"pk": booking_key(booking_id)}, ConsistentRead=True))
        item = resp.get("Item")
        if not isinstance(item, dict):
            raise KeyError(BOOKING_NOT_FOUND)
        return _to_booking(cast(BookingItem, item))

    def attach_proxy_session(self, session: ProxySession) -> None:
        """Store the session and link it to its booking in one transaction."""
        self._client.transact_write_items(
            TransactItems=[
                self._put(
                    {
                        "pk": session_key(session.session_id),
                        "entity": "proxy_session",
                        "session_id": session.session_id,
                        "booking_id": session.booking_id,
                        "proxy_identifier": session.proxy_identifier,
                        "expires_at": _dt_to_iso(session.expires_at),
                        "created_at": _dt_to_iso(session.created_at),
                    }
                ),
                {
                    "Update": {
                        "TableName": self._table.name,
                        "Key": {"pk": booking_key(session.booking_id)},
                        "UpdateExpression": "SET proxy_session_id = :sid",
                        "ConditionExpression": "attribute_exists(pk) AND attribute_not_exists(proxy_session_id)",
                        "ExpressionAttributeValues": {":sid": session.session_id},
                    }
                },
            ]
        )

    def get_proxy_session(self, session_id: str) -> ProxySession:
        resp = cast(dict[str, Any], self._table.get_item(Key={"pk": session_key(session_id)}))
        item = resp.get("Item")
        if not isinstance(item, dict):
            raise KeyError(PROXY_SESSION_NOT_FOUND)
        return ProxySession(
            session_id=item["session_id"],
            booking_id=item["booking_id"],
            proxy_identifier=item["proxy_identifier"],
            expires_at=_iso_to_dt(item["expires_at"]),
            created_at=_iso_to_dt(item["created_at"]),
        )

    def confirm_booking(self, booking_id: str, now: datetime) -> Booking:
        current = self.get_booking(booking_id)
        status = current.effective_status(now)
        if status != "pending":
            raise ConflictError(f"Booking status must be pending, got {status}")
        try:
            resp = cast(
                dict[str, Any],
                self._table.update_item(
                    Key={"pk": booking_key(booking_id)},
                    UpdateExpression="SET #s = :s",
                    ConditionExpression="#s = :expected",
                    ExpressionAttributeNames={"#s": "status"},
                    ExpressionAttributeValues={":s": "confirmed", ":expected": "pending"},
                    ReturnValues="ALL_NEW",
                ),
            )
        except ClientError as exc:
            if _error_code(exc) == "ConditionalCheckFailedException":
                raise ConflictError("Booking was modified concurrently") from exc
            raise
        attrs = cast(dict[str, Any], resp.get("Attributes") or {})
        return _to_booking(cast(BookingItem, attrs))

    def cancel_booking(self, booking_id: str) -> Booking:
        """Cancel a booking and release its slot claim atomically."""
        current = self.get_booking(booking_id)
        if current.status == "cancelled":
            raise ConflictError("Booking is already cancelled")
        try:
            self._client.transact_write_items(
                TransactItems=[
                    {
                        "Update": {
                            "TableName": self._table.name,
                            "Key": {"pk": booking_key(booking_id)},
                            "UpdateExpression": "SET #s = :s",
                            "ConditionExpression": "#s = :expected",
                            "ExpressionAttributeNames": {"#s": "status"},
                            "ExpressionAttributeValues": {":s": "cancelled", ":expected": current.status},
                        }
                    },
                    {
                        "Delete": {
                            "TableName": self._table.name,
                            "Key": {"pk": slot_key(current.teacher_id, current.requested_time_utc)},
                            "ConditionExpression": "booking_id = :bid",
                            "ExpressionAttributeValues": {":bid": booking_id},
                        }
                    },
                ]
            )
        except ClientError as exc:
            if _error_code(exc) == "TransactionCanceledException":
                raise ConflictError("Booking was modified concurrently") from exc
            raise
        logger.info("Booking cancelled", extra={"booking_id": booking_id})
        return current.model_copy(update={"status": "cancelled"})

    def put_notification(self, notification: Notification) -> None:
        self._table.put_item(
            Item={
                "pk": notification_key(notification.notification_id),
                "entity": "notification",
                "notification_id": notification.notification_id,
                "booking_id": notification.booking_id,
                "to": notification.to,
                "channel": notification.channel,
                "body": notification.body,
                "payload": notification.payload,
                "status": notification.status,
                "created_at": _dt_to_iso(notification.created_at),
            },
            ConditionExpression="attribute_not_exists(pk)",
        )


def default_store() -> DynamoReservationStore:
    return DynamoReservationStore(_table)


def _to_booking(item: BookingItem) -> Booking:
    return Booking(
        booking_id=item["booking_id"],
        teacher_id=item["teacher_id"],
        student_name=item["student_name"],
        student_phone=item["student_phone"],
        student_email=item.get("student_email"),
        requested_time_utc=_iso_to_dt(item["requested_time_utc"]),
        # DynamoDB hands numbers back as Decimal
        duration_minutes=int(item["duration_minutes"]),
        idempotency_key=item.get("idempotency_key"),
        status=item.get("status", "pending"),  # type: ignore[arg-type]
        created_at=_iso_to_dt(item["created_at"]),
        expires_at=_iso_to_dt(item["expires_at"]),
        proxy_session_id=item.get("proxy_session_id"),
    )
