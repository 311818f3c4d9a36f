from __future__ import annotations

from datetime import datetime
from typing import Protocol

from .models import Booking, CreateResult, Notification, ProxySession, ReservationRequest


class ReservationRepository(Protocol):
    """Storage port used by the reservation pipeline.

    ``create`` must be atomic and report lost races through its result
    instead of raising.
    """

    def create(self, request: ReservationRequest, now: datetime) -> CreateResult: ...

    def find_by_idempotency_key(self, key: str) -> Booking | None: ...

    def find_conflicting_slot(self, teacher_id: str, requested_time_utc: datetime) -> str | None: ...

    def get_booking(self, booking_id: str) -> Booking: ...

    def attach_proxy_session(self, session: ProxySession) -> None: ...

    def get_proxy_session(self, session_id: str) -> ProxySession: ...

    def confirm_booking(self, booking_id: str, now: datetime) -> Booking: ...

    def cancel_booking(self, booking_id: str) -> Booking: ...

    def put_notification(self, notification: Notification) -> None: ...
