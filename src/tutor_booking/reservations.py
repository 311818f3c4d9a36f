"""Reservation pipeline.

validate -> idempotency replay -> availability -> atomic insert ->
proxy session -> notification

Only the insert mutates reservation state. Everything after a successful
insert is best effort: the booking is already durable, so failures there are
logged and never turned into a request failure.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from aws_lambda_powertools import Logger, Tracer
from aws_lambda_powertools.metrics import Metrics, MetricUnit

from .availability import SLOT_TAKEN, AvailabilityChecker
from .channels import ChannelProvisioner
from .config import METRICS_NAMESPACE
from .errors import ConflictError, InternalError
from .idempotency import IdempotencyGuard, to_receipt
from .models import (
    Booking,
    BookingReceipt,
    BookingRequest,
    Created,
    KeyConflict,
    ProxySession,
    SlotConflict,
)
from .notifications import NotificationDispatcher
from .repository import ReservationRepository
from .teachers import TeacherDirectory
from .validation import validate_booking_request

logger = Logger()
tracer = Tracer()
metrics = Metrics(namespace=METRICS_NAMESPACE)

Scheduler = Callable[..., Any]


@dataclass(frozen=True)
class ReservationOutcome:
    receipt: BookingReceipt
    created: bool
    booking: Booking | None = None
    session: ProxySession | None = None


def _run_now(func: Callable[..., Any], *args: Any) -> None:
    func(*args)


class ReservationService:
    def __init__(
        self,
        store: ReservationRepository,
        teachers: TeacherDirectory,
        dispatcher: NotificationDispatcher,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._store = store
        self._guard = IdempotencyGuard(store)
        self._availability = AvailabilityChecker(teachers, store)
        self._channels = ChannelProvisioner(store)
        self._dispatcher = dispatcher
        self._clock = clock

    @tracer.capture_method
    def reserve(self, payload: BookingRequest, schedule: Scheduler = _run_now) -> ReservationOutcome:
        """Run the pipeline for one request.

        ``schedule`` receives the notification call so the HTTP layer can run
        it after the response has been sent.
        """
        now = self._clock()
        request = validate_booking_request(payload, now)

        replay = self._guard.lookup(request, now)
        if replay is not None:
            metrics.add_metric(name="BookingReplayed", value=1, unit=MetricUnit.Count)
            return ReservationOutcome(receipt=replay, created=False)

        try:
            self._availability.check(request)
        except ConflictError:
            # The slot may be held by an earlier request with our own key that
            # committed after our lookup missed
            replay = self._guard.lookup(request, now)
            if replay is None:
                raise
            metrics.add_metric(name="BookingReplayed", value=1, unit=MetricUnit.Count)
            return ReservationOutcome(receipt=replay, created=False)

        result = self._store.create(request, self._clock())
        if isinstance(result, KeyConflict):
            metrics.add_metric(name="BookingReplayed", value=1, unit=MetricUnit.Count)
            return ReservationOutcome(receipt=self._guard.resolve_lost_claim(result.idempotency_key, now), created=False)
        if isinstance(result, SlotConflict):
            metrics.add_metric(name="BookingConflict", value=1, unit=MetricUnit.Count)
            logger.info("Slot race lost at insert", extra={"teacher_id": result.teacher_id})
            raise ConflictError(SLOT_TAKEN)
        if not isinstance(result, Created):
            raise InternalError("Internal server error")

        booking = result.booking
        metrics.add_metric(name="BookingCreated", value=1, unit=MetricUnit.Count)

        session = self._provision(booking)
        if session is not None:
            booking = booking.model_copy(update={"proxy_session_id": session.session_id})

        schedule(self._dispatcher.dispatch, booking, session)
        return ReservationOutcome(receipt=to_receipt(booking, now), created=True, booking=booking, session=session)

    def _provision(self, booking: Booking) -> ProxySession | None:
        try:
            return self._channels.provision(booking, self._clock())
        except Exception:
            metrics.add_metric(name="ProxySessionFailed", value=1, unit=MetricUnit.Count)
            logger.exception("Booking left without a proxy session", extra={"booking_id": booking.booking_id})
            return None

    def get_booking(self, booking_id: str) -> Booking:
        booking = self._store.get_booking(booking_id)
        return booking.model_copy(update={"status": booking.effective_status(self._clock())})

    def get_proxy_session(self, session_id: str) -> tuple[ProxySession, bool]:
        session = self._store.get_proxy_session(session_id)
        return session, self._clock() > session.expires_at

    def confirm_booking(self, booking_id: str) -> Booking:
        return self._store.confirm_booking(booking_id, self._clock())

    def cancel_booking(self, booking_id: str) -> Booking:
        return self._store.cancel_booking(booking_id)
