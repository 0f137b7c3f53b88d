"""Routes package for the org assignment service.

Authentication is not handled here; callers identify themselves with an
``X-Actor`` header (or an ``actor`` field in the JSON body) that is only
recorded in the audit log.
"""

from datetime import datetime
from typing import Any

from flask import current_app, request

from ..errors import ValidationError
from ..models.types import ensure_utc


def get_org_service():
    """The OrgAssignmentService wired by the app factory."""
    return current_app.extensions["org_service"]


def request_json() -> dict:
    return request.get_json(silent=True) or {}


def request_actor(data: dict | None = None) -> str | None:
    if data and data.get("actor"):
        return data["actor"]
    return request.headers.get("X-Actor")


def parse_datetime(value: Any, field: str) -> datetime | None:
    """Parse an ISO-8601 timestamp from a request; naive values are taken as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 timestamp, got {value!r}")
    return ensure_utc(parsed)


def parse_int(value: Any, field: str, required: bool = True) -> int | None:
    if value is None or value == "":
        if required:
            raise ValidationError(f"{field} is required")
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer, got {value!r}")
