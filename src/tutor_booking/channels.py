from __future__ import annotations

import secrets
import uuid
from datetime import datetime

from aws_lambda_powertools import Logger

from .models import Booking, ProxySession
from .repository import ReservationRepository

logger = Logger()


def generate_proxy_identifier() -> str:
    """Masked E.164-like handle; carries nothing about the real contact."""
    return f"proxy:+1000000{100000 + secrets.randbelow(900000)}"


class ChannelProvisioner:
    def __init__(self, store: ReservationRepository) -> None:
        self._store = store

    def provision(self, booking: Booking, now: datetime) -> ProxySession:
        session = ProxySession(
            session_id=str(uuid.uuid4()),
            booking_id=booking.booking_id,
            proxy_identifier=generate_proxy_identifier(),
            expires_at=booking.expires_at,
            created_at=now,
        )
        self._store.attach_proxy_session(session)
        logger.info(
            "Proxy session created",
            extra={"booking_id": booking.booking_id, "proxy_session_id": session.session_id},
        )
        return session
