from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

BookingStatus = Literal["pending", "confirmed", "cancelled", "expired"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BookingRequest(CamelModel):
    # Presence and format are checked by the validator so that the first
    # failing rule can be reported by name.
    teacher_id: str | None = None
    student_name: str | None = None
    student_phone: str | None = None
    student_email: str | None = None
    requested_time: str | None = None
    duration_minutes: int | None = None
    idempotency_key: str | None = None


class ReservationRequest(BaseModel):
    teacher_id: str
    student_name: str
    student_phone: str
    student_email: str | None = None
    requested_time_utc: datetime
    duration_minutes: int = Field(..., gt=0)
    idempotency_key: str | None = None


class Teacher(BaseModel):
    id: str
    name: str | None = None
    subscription_active: bool = False

    @property
    def is_active(self) -> bool:
        return self.subscription_active


class Booking(CamelModel):
    booking_id: str
    teacher_id: str
    student_name: str
    student_phone: str
    student_email: str | None = None
    requested_time_utc: datetime
    duration_minutes: int
    idempotency_key: str | None = None
    status: BookingStatus = "pending"
    created_at: datetime
    expires_at: datetime
    proxy_session_id: str | None = None

    def effective_status(self, now: datetime) -> BookingStatus:
        """Status as readers see it: a pending booking past its TTL is expired."""
        if self.status == "pending" and now > self.expires_at:
            return "expired"
        return self.status


class ProxySession(CamelModel):
    session_id: str
    booking_id: str
    proxy_identifier: str
    expires_at: datetime
    created_at: datetime


class ProxySessionView(ProxySession):
    expired: bool = False


class BookingReceipt(CamelModel):
    booking_id: str
    status: BookingStatus
    expires_at: datetime
    proxy_session_id: str | None = None


class Notification(CamelModel):
    notification_id: str
    booking_id: str
    to: str
    channel: str
    body: str
    payload: dict[str, Any] = Field(default_factory=dict)
    status: Literal["queued", "sent", "failed"] = "queued"
    created_at: datetime


@dataclass(frozen=True)
class Created:
    booking: Booking


@dataclass(frozen=True)
class SlotConflict:
    teacher_id: str
    requested_time_utc: datetime


@dataclass(frozen=True)
class KeyConflict:
    idempotency_key: str


CreateResult = Created | SlotConflict | KeyConflict
