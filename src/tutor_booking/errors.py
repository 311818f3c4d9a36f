"""Error taxonomy for the reservation pipeline.

Each error carries the HTTP status it is rendered with; the API layer turns
any ``BookingError`` into an ``{"error": message}`` body.
"""

from __future__ import annotations

from http import HTTPStatus


class BookingError(Exception):
    status_code: int = HTTPStatus.INTERNAL_SERVER_ERROR

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(BookingError):
    status_code = HTTPStatus.BAD_REQUEST


class NotFoundError(BookingError):
    status_code = HTTPStatus.NOT_FOUND


class ConflictError(BookingError):
    status_code = HTTPStatus.CONFLICT


class InternalError(BookingError):
    status_code = HTTPStatus.INTERNAL_SERVER_ERROR
