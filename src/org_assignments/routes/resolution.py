"""REST API endpoints for effective-assignee resolution and work items."""

import logging

from flask import Blueprint, jsonify, request

from ..errors import ValidationError
from . import get_org_service, parse_datetime, parse_int, request_json

logger = logging.getLogger(__name__)

resolution_bp = Blueprint("resolution", __name__)


def _parse_deadline(data: dict) -> float | None:
    value = data.get("deadline_seconds")
    if value is None:
        return None
    try:
        deadline = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"deadline_seconds must be a number, got {value!r}")
    if deadline <= 0:
        raise ValidationError("deadline_seconds must be positive")
    return deadline


@resolution_bp.route(
    "/api/companies/<int:company_id>/positions/<int:position_id>/effective-assignment",
    methods=["GET"],
)
def api_effective_assignment(company_id: int, position_id: int):
    """Who currently acts for a position, after any active delegation.

    Query params:
        - at: ISO-8601 instant (optional, default now)

    Returns:
        200: {"vacant": bool, "effective_assignment": {...} | null}
        404: Position not found
    """
    at = parse_datetime(request.args.get("at"), "at")
    effective = get_org_service().resolve_effective_assignment(company_id, position_id, at=at)
    return jsonify({
        "position_id": position_id,
        "vacant": effective is None,
        "effective_assignment": effective.to_dict() if effective else None,
    })


@resolution_bp.route("/api/companies/<int:company_id>/work-items/resolve", methods=["POST"])
def api_resolve_work_item(company_id: int):
    """Resolve the effective assignee for one work item.

    Accepts JSON:
        - item_type: task | project | approval | quality_check | safety_inspection
        - item_id (required)
        - position_id, user_id (optional; user_id is the fallback)
        - deadline_seconds (optional)
    """
    data = request_json()
    if data.get("item_id") is None:
        raise ValidationError("item_id is required")
    context = get_org_service().resolve_work_item_assignment(
        company_id,
        data.get("item_type", "task"),
        data["item_id"],
        parse_int(data.get("position_id"), "position_id", required=False),
        data.get("user_id"),
        deadline=_parse_deadline(data),
    )
    return jsonify(context.to_dict())


@resolution_bp.route(
    "/api/companies/<int:company_id>/work-items/resolve-batch", methods=["POST"]
)
def api_resolve_work_items(company_id: int):
    """Resolve many work items; results are returned in request order.

    Accepts JSON:
        - items: list of {item_type, item_id, position_id, user_id}
        - deadline_seconds (optional, applies to the whole batch)
    """
    data = request_json()
    raw_items = data.get("items")
    if not isinstance(raw_items, list):
        raise ValidationError("items must be a list")

    items = []
    for index, raw in enumerate(raw_items):
        if not isinstance(raw, dict) or raw.get("item_id") is None:
            raise ValidationError(f"items[{index}] must be an object with item_id")
        items.append({
            "item_type": raw.get("item_type", "task"),
            "item_id": raw["item_id"],
            "position_id": parse_int(raw.get("position_id"), f"items[{index}].position_id", required=False),
            "user_id": raw.get("user_id"),
        })

    contexts = get_org_service().batch_resolve_work_items(
        company_id, items, deadline=_parse_deadline(data)
    )
    return jsonify({
        "results": [c.to_dict() for c in contexts],
        "count": len(contexts),
        "timed_out": sum(1 for c in contexts if c.timed_out),
    })


@resolution_bp.route("/api/companies/<int:company_id>/work-items", methods=["POST"])
def api_create_work_item(company_id: int):
    """Create a work item owned by a position.

    Returns:
        201: Work item created
        400: Unknown item type or status
    """
    data = request_json()
    position_id = parse_int(data.get("assigned_position_id"), "assigned_position_id", required=False)
    item = get_org_service().create_work_item(
        company_id,
        data.get("item_type", "task"),
        data.get("title"),
        status=data.get("status"),
        assigned_position_id=position_id,
        assignee_user_id=data.get("assignee_user_id"),
    )
    return jsonify(item.to_dict()), 201


@resolution_bp.route(
    "/api/companies/<int:company_id>/work-items/<int:item_id>/assign", methods=["POST"]
)
def api_assign_work_item(company_id: int, item_id: int):
    """Resolve and persist the effective assignee onto a work item.

    Accepts JSON:
        - position_id (optional, default the item's current position)
        - user_id (optional fallback)
    """
    data = request_json()
    service = get_org_service()
    position_id = parse_int(data.get("position_id"), "position_id", required=False)
    if position_id is None:
        position_id = service.reassigner.store.get(company_id, item_id).assigned_position_id
    item, context = service.assign_work_item(
        company_id, item_id, position_id, user_id=data.get("user_id"),
        deadline=_parse_deadline(data),
    )
    return jsonify({"work_item": item.to_dict(), "context": context.to_dict()})


@resolution_bp.route("/api/resolution/stats", methods=["GET"])
def api_resolution_stats():
    """Resolution timing, cache, ledger and event statistics."""
    return jsonify(get_org_service().stats())
