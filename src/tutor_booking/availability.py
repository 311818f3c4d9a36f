from __future__ import annotations

from aws_lambda_powertools import Logger

from .errors import ConflictError, NotFoundError
from .models import ReservationRequest, Teacher
from .repository import ReservationRepository
from .teachers import TeacherDirectory

logger = Logger()

TEACHER_NOT_FOUND = "Teacher not found or not active"
SLOT_TAKEN = "Time slot already booked"


class AvailabilityChecker:
    """Fast-path checks run before the insert.

    The slot read here is advisory only; the conditional insert in the store
    decides races.
    """

    def __init__(self, teachers: TeacherDirectory, store: ReservationRepository) -> None:
        self._teachers = teachers
        self._store = store

    def check(self, request: ReservationRequest) -> Teacher:
        teacher = self._teachers.find_active_teacher(request.teacher_id)
        if teacher is None:
            raise NotFoundError(TEACHER_NOT_FOUND)

        holder = self._store.find_conflicting_slot(request.teacher_id, request.requested_time_utc)
        if holder is not None:
            logger.info(
                "Slot already held",
                extra={"teacher_id": request.teacher_id, "booking_id": holder},
            )
            raise ConflictError(SLOT_TAKEN)
        return teacher
