from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, cast

import boto3
from aws_lambda_powertools import Logger

if TYPE_CHECKING:
    from mypy_boto3_dynamodb.service_resource import Table as DynamoDBTable
else:
    DynamoDBTable = Any  # type: ignore[assignment]

from .config import AWS_REGION, TEACHERS_TABLE_NAME
from .models import Teacher

logger = Logger()


class TeacherDirectory(Protocol):
    def find_active_teacher(self, teacher_id: str) -> Teacher | None: ...


class DynamoTeacherDirectory:
    """Read-only view of the teachers table owned by the profile service."""

    def __init__(self, table: DynamoDBTable) -> None:
        self._table = table

    def find_active_teacher(self, teacher_id: str) -> Teacher | None:
        resp = cast(dict[str, Any], self._table.get_item(Key={"id": teacher_id}))
        item = resp.get("Item")
        if not isinstance(item, dict):
            return None
        teacher = Teacher(
            id=item["id"],
            name=item.get("name"),
            subscription_active=bool(item.get("subscription_active", False)),
        )
        if not teacher.is_active:
            logger.info("Teacher is not accepting bookings", extra={"teacher_id": teacher_id})
            return None
        return teacher


def default_directory() -> DynamoTeacherDirectory:
    return DynamoTeacherDirectory(boto3.resource("dynamodb", region_name=AWS_REGION).Table(TEACHERS_TABLE_NAME))
