from __future__ import annotations

import json
from http import HTTPStatus
from typing import Any

from tutor_booking.api import app, get_reservation_service
from tutor_booking.api_handler import lambda_handler


def _http_v2_event(path: str, method: str = "GET") -> dict[str, Any]:
    return {
        "version": "2.0",
        "rawPath": path,
        "routeKey": f"{method} {path}",
        "rawQueryString": "",
        "headers": {"host": "example.com"},
        "requestContext": {"http": {"method": method, "path": path, "protocol": "HTTP/1.1"}},
        "isBase64Encoded": False,
    }


def test_lambda_handler_health_ok() -> None:
    event = _http_v2_event("/health", "GET")
    resp = lambda_handler(event, context={})  # type: ignore[arg-type]
    assert isinstance(resp, dict)
    assert resp.get("statusCode") == HTTPStatus.OK
    assert "ok" in resp.get("body", "")


def test_lambda_handler_renders_error_body(service) -> None:
    app.dependency_overrides[get_reservation_service] = lambda: service
    try:
        resp = lambda_handler(_http_v2_event("/bookings/missing", "GET"), context={})  # type: ignore[arg-type]
    finally:
        app.dependency_overrides.clear()
    assert resp.get("statusCode") == HTTPStatus.NOT_FOUND
    assert json.loads(resp["body"]) == {"error": "Booking not found"}
