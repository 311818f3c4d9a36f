from __future__ import annotations

from datetime import UTC, datetime, timedelta

from .config import DEFAULT_DURATION_MINUTES, MIN_LEAD_MINUTES
from .errors import ValidationError
from .models import BookingRequest, ReservationRequest

_REQUIRED = (
    ("teacher_id", "teacherId"),
    ("student_name", "studentName"),
    ("student_phone", "studentPhone"),
    ("requested_time", "requestedTime"),
)


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def parse_timestamp(raw: str) -> datetime:
    """Parse an ISO-8601 timestamp into an aware UTC datetime.

    Naive values are taken to be UTC already.
    """
    try:
        dt = datetime.fromisoformat(raw)
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=UTC)
        return dt.astimezone(UTC)
    except ValueError as exc:
        raise ValidationError("requestedTime must be an ISO-8601 timestamp") from exc
    except OverflowError as exc:
        raise ValidationError("requestedTime is out of range") from exc


def validate_booking_request(payload: BookingRequest, now: datetime) -> ReservationRequest:
    for attr, field in _REQUIRED:
        if _clean(getattr(payload, attr)) is None:
            raise ValidationError(f"{field} is required")

    requested_time_utc = parse_timestamp(_clean(payload.requested_time) or "")

    duration = payload.duration_minutes
    if duration is None:
        duration = DEFAULT_DURATION_MINUTES
    elif duration <= 0:
        raise ValidationError("durationMinutes must be a positive integer")

    if requested_time_utc < now + timedelta(minutes=MIN_LEAD_MINUTES):
        raise ValidationError(f"requestedTime must be at least {MIN_LEAD_MINUTES} minutes in the future")

    return ReservationRequest(
        teacher_id=_clean(payload.teacher_id) or "",
        student_name=_clean(payload.student_name) or "",
        student_phone=_clean(payload.student_phone) or "",
        student_email=_clean(payload.student_email),
        requested_time_utc=requested_time_utc,
        duration_minutes=duration,
        idempotency_key=_clean(payload.idempotency_key),
    )
