from __future__ import annotations

from datetime import datetime

from aws_lambda_powertools import Logger

from .errors import ConflictError
from .models import Booking, BookingReceipt, ReservationRequest
from .repository import ReservationRepository

logger = Logger()


def to_receipt(booking: Booking, now: datetime) -> BookingReceipt:
    return BookingReceipt(
        booking_id=booking.booking_id,
        status=booking.effective_status(now),
        expires_at=booking.expires_at,
        proxy_session_id=booking.proxy_session_id,
    )


class IdempotencyGuard:
    def __init__(self, store: ReservationRepository) -> None:
        self._store = store

    def lookup(self, request: ReservationRequest, now: datetime) -> BookingReceipt | None:
        """Return the receipt of an earlier booking made with the same key, if any."""
        if not request.idempotency_key:
            return None
        existing = self._store.find_by_idempotency_key(request.idempotency_key)
        if existing is None:
            return None
        logger.info(
            "Replaying idempotent booking",
            extra={"booking_id": existing.booking_id, "idempotency_key": request.idempotency_key},
        )
        return to_receipt(existing, now)

    def resolve_lost_claim(self, key: str, now: datetime) -> BookingReceipt:
        # Another request claimed the key between our lookup and our insert
        existing = self._store.find_by_idempotency_key(key)
        if existing is None:
            logger.warning("Idempotency key claimed but booking not readable", extra={"idempotency_key": key})
            raise ConflictError("A booking with this idempotency key is already in progress")
        logger.info("Idempotency race resolved to existing booking", extra={"booking_id": existing.booking_id})
        return to_receipt(existing, now)
