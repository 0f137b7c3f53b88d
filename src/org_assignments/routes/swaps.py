"""REST API endpoints for occupant swaps."""

import logging

from flask import Blueprint, jsonify

from . import get_org_service, parse_datetime, parse_int, request_actor, request_json

logger = logging.getLogger(__name__)

swaps_bp = Blueprint("swaps", __name__)


@swaps_bp.route("/api/companies/<int:company_id>/swaps", methods=["POST"])
def api_swap_occupants(company_id: int):
    """Swap the occupants of two positions and reassign their open work.

    Accepts JSON:
        - position_a_id, position_b_id (required)
        - reason, notes (optional)
        - effective_date: ISO-8601 (optional, default now)

    Returns:
        201: Swap recorded; status is completed or partial_failure
        400: Validation error (same position, vacant position)
        404: Position not found
        409: Could not lock both positions
    """
    data = request_json()
    swap = get_org_service().swap_occupants(
        company_id,
        parse_int(data.get("position_a_id"), "position_a_id"),
        parse_int(data.get("position_b_id"), "position_b_id"),
        reason=data.get("reason"),
        notes=data.get("notes"),
        effective_date=parse_datetime(data.get("effective_date"), "effective_date"),
        requested_by=request_actor(data),
    )
    return jsonify(swap.to_dict()), 201


@swaps_bp.route("/api/companies/<int:company_id>/swaps/<int:swap_id>", methods=["GET"])
def api_get_swap(company_id: int, swap_id: int):
    swap = get_org_service().swaps.get_swap(company_id, swap_id)
    return jsonify(swap.to_dict())
