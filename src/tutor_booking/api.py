from __future__ import annotations

from functools import lru_cache
from http import HTTPStatus

from aws_lambda_powertools import Logger
from fastapi import BackgroundTasks, Depends, FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from . import dal
from .errors import BookingError, NotFoundError
from .models import Booking, BookingReceipt, BookingRequest, ProxySessionView
from .notifications import NotificationDispatcher, default_sink
from .reservations import ReservationService
from .teachers import default_directory

logger = Logger()

app = FastAPI(title="Tutor Booking API", version="0.1.0")


@lru_cache(maxsize=1)
def get_reservation_service() -> ReservationService:
    store = dal.default_store()
    return ReservationService(
        store=store,
        teachers=default_directory(),
        dispatcher=NotificationDispatcher(default_sink(store)),
    )


@app.exception_handler(BookingError)
async def handle_booking_error(request: Request, exc: BookingError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def handle_request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = "Invalid request body"
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{field}: {first.get('msg')}" if field else str(first.get("msg"))
    return JSONResponse(status_code=HTTPStatus.BAD_REQUEST, content={"error": message})


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error", extra={"path": request.url.path})
    return JSONResponse(status_code=HTTPStatus.INTERNAL_SERVER_ERROR, content={"error": "Internal server error"})


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/bookings", response_model=BookingReceipt, status_code=201)
def create_booking(
    payload: BookingRequest,
    response: Response,
    background_tasks: BackgroundTasks,
    service: ReservationService = Depends(get_reservation_service),
) -> BookingReceipt:
    outcome = service.reserve(payload, schedule=background_tasks.add_task)
    if not outcome.created:
        response.status_code = HTTPStatus.OK
    return outcome.receipt


@app.get("/bookings/{booking_id}", response_model=Booking)
def get_booking(booking_id: str, service: ReservationService = Depends(get_reservation_service)) -> Booking:
    try:
        return service.get_booking(booking_id)
    except KeyError as exc:
        raise NotFoundError(dal.BOOKING_NOT_FOUND) from exc


@app.post("/bookings/{booking_id}/confirm", response_model=Booking)
def confirm_booking(booking_id: str, service: ReservationService = Depends(get_reservation_service)) -> Booking:
    try:
        return service.confirm_booking(booking_id)
    except KeyError as exc:
        raise NotFoundError(dal.BOOKING_NOT_FOUND) from exc


@app.post("/bookings/{booking_id}/cancel", response_model=Booking)
def cancel_booking(booking_id: str, service: ReservationService = Depends(get_reservation_service)) -> Booking:
    try:
        return service.cancel_booking(booking_id)
    except KeyError as exc:
        raise NotFoundError(dal.BOOKING_NOT_FOUND) from exc


@app.get("/proxy/{session_id}", response_model=ProxySessionView)
def get_proxy_session(
    session_id: str, service: ReservationService = Depends(get_reservation_service)
) -> ProxySessionView:
    try:
        session, expired = service.get_proxy_session(session_id)
    except KeyError as exc:
        raise NotFoundError(dal.PROXY_SESSION_NOT_FOUND) from exc
    return ProxySessionView(**session.model_dump(), expired=expired)
