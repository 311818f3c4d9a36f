from __future__ import annotations

import copy
import threading
from collections.abc import Iterator
from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from typing import Any

import pytest
from botocore.exceptions import ClientError
from fastapi.testclient import TestClient

from tutor_booking.api import app, get_reservation_service
from tutor_booking.dal import DynamoReservationStore
from tutor_booking.models import Notification, Teacher
from tutor_booking.notifications import NotificationDispatcher
from tutor_booking.reservations import ReservationService


def _condition_holds(
    item: dict[str, Any] | None, expr: str | None, names: dict[str, str], values: dict[str, Any]
) -> bool:
    # Supports the small subset of condition expressions the store issues
    if not expr:
        return True
    for clause in (c.strip() for c in expr.split(" AND ")):
        if clause.startswith("attribute_not_exists("):
            attr = clause[len("attribute_not_exists(") : -1]
            ok = item is None or names.get(attr, attr) not in item
        elif clause.startswith("attribute_exists("):
            attr = clause[len("attribute_exists(") : -1]
            ok = item is not None and names.get(attr, attr) in item
        else:
            left, right = (s.strip() for s in clause.split("="))
            ok = item is not None and item.get(names.get(left, left)) == values[right]
        if not ok:
            return False
    return True


def _apply_set(item: dict[str, Any], expr: str, names: dict[str, str], values: dict[str, Any]) -> None:
    set_part = expr.split("SET", 1)[1]
    for assign in (s.strip() for s in set_part.split(",") if s.strip()):
        name, val = (s.strip() for s in assign.split("="))
        item[names.get(name, name)] = values[val]


def _client_error(code: str, operation: str, **extra: Any) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}, **extra}, operation)  # type: ignore[arg-type]


class FakeClient:
    def __init__(self, table: FakeTable) -> None:
        self._table = table
        self.fail_transactions_with: str | None = None
        self.conflicts_remaining = 0
        self.transactions = 0

    def transact_write_items(self, TransactItems: list[dict[str, Any]]) -> dict[str, Any]:  # noqa: N803
        self.transactions += 1
        if self.fail_transactions_with:
            raise _client_error(self.fail_transactions_with, "TransactWriteItems")
        if self.conflicts_remaining:
            self.conflicts_remaining -= 1
            reasons = [{"Code": "TransactionConflict"} for _ in TransactItems]
            raise _client_error("TransactionCanceledException", "TransactWriteItems", CancellationReasons=reasons)
        table = self._table
        with table.lock:
            reasons = []
            for op in TransactItems:
                kind, spec = next(iter(op.items()))
                key = spec["Item"]["pk"] if kind == "Put" else spec["Key"]["pk"]
                holds = _condition_holds(
                    table.items.get(key),
                    spec.get("ConditionExpression"),
                    spec.get("ExpressionAttributeNames") or {},
                    spec.get("ExpressionAttributeValues") or {},
                )
                reasons.append({"Code": "None" if holds else "ConditionalCheckFailed"})
            if any(r["Code"] != "None" for r in reasons):
                raise _client_error(
                    "TransactionCanceledException", "TransactWriteItems", CancellationReasons=reasons
                )
            for op in TransactItems:
                kind, spec = next(iter(op.items()))
                if kind == "Put":
                    table.items[spec["Item"]["pk"]] = copy.deepcopy(spec["Item"])
                elif kind == "Delete":
                    table.items.pop(spec["Key"]["pk"], None)
                else:
                    _apply_set(
                        table.items[spec["Key"]["pk"]],
                        spec["UpdateExpression"],
                        spec.get("ExpressionAttributeNames") or {},
                        spec.get("ExpressionAttributeValues") or {},
                    )
        return {}


class FakeTable:
    """In-memory stand-in for a DynamoDB Table keyed on ``pk``."""

    name = "bookings-test"

    def __init__(self) -> None:
        self.items: dict[str, dict[str, Any]] = {}
        self.lock = threading.Lock()
        self.meta = SimpleNamespace(client=FakeClient(self))

    def get_item(self, Key: dict[str, Any], ConsistentRead: bool = False) -> dict[str, Any]:  # noqa: N803
        with self.lock:
            item = self.items.get(Key["pk"])
            return {"Item": copy.deepcopy(item)} if item else {}

    def put_item(self, Item: dict[str, Any], ConditionExpression: str | None = None) -> dict[str, Any]:  # noqa: N803
        with self.lock:
            if not _condition_holds(self.items.get(Item["pk"]), ConditionExpression, {}, {}):
                raise _client_error("ConditionalCheckFailedException", "PutItem")
            self.items[Item["pk"]] = copy.deepcopy(Item)
        return {}

    def update_item(self, **kwargs: Any) -> dict[str, Any]:
        key = kwargs["Key"]["pk"]
        names = kwargs.get("ExpressionAttributeNames") or {}
        values = kwargs.get("ExpressionAttributeValues") or {}
        with self.lock:
            item = self.items.get(key)
            if item is None or not _condition_holds(item, kwargs.get("ConditionExpression"), names, values):
                raise _client_error("ConditionalCheckFailedException", "UpdateItem")
            _apply_set(item, kwargs["UpdateExpression"], names, values)
            return {"Attributes": copy.deepcopy(item)}

    def by_entity(self, entity: str) -> list[dict[str, Any]]:
        return [it for it in self.items.values() if it.get("entity") == entity]


class FakeTeacherDirectory:
    def __init__(self, teachers: dict[str, Teacher]) -> None:
        self.teachers = teachers
        self.calls = 0

    def find_active_teacher(self, teacher_id: str) -> Teacher | None:
        self.calls += 1
        teacher = self.teachers.get(teacher_id)
        return teacher if teacher and teacher.is_active else None


class RecordingSink:
    def __init__(self) -> None:
        self.sent: list[Notification] = []

    def send(self, notification: Notification) -> bool:
        self.sent.append(notification)
        return True


class Clock:
    """Wall clock that tests can move forward."""

    def __init__(self) -> None:
        self.offset = timedelta()

    def __call__(self) -> datetime:
        return datetime.now(UTC) + self.offset

    def advance(self, **kwargs: float) -> None:
        self.offset += timedelta(**kwargs)


@pytest.fixture()
def table() -> FakeTable:
    return FakeTable()


@pytest.fixture()
def store(table: FakeTable) -> DynamoReservationStore:
    return DynamoReservationStore(table)  # type: ignore[arg-type]


@pytest.fixture()
def teachers() -> FakeTeacherDirectory:
    return FakeTeacherDirectory(
        {
            "T1": Teacher(id="T1", name="Teacher One", subscription_active=True),
            "T2": Teacher(id="T2", name="Lapsed Teacher", subscription_active=False),
        }
    )


@pytest.fixture()
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture()
def clock() -> Clock:
    return Clock()


@pytest.fixture()
def service(
    store: DynamoReservationStore, teachers: FakeTeacherDirectory, sink: RecordingSink, clock: Clock
) -> ReservationService:
    return ReservationService(
        store=store,
        teachers=teachers,
        dispatcher=NotificationDispatcher(sink, channel="whatsapp", clock=clock),
        clock=clock,
    )


@pytest.fixture()
def client(service: ReservationService) -> Iterator[TestClient]:
    app.dependency_overrides[get_reservation_service] = lambda: service
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()
