"""REST API endpoints for position assignments and position history."""

import logging

from flask import Blueprint, jsonify, request

from ..services.assignment_ledger import AssignmentConfig
from . import get_org_service, parse_datetime, parse_int, request_actor, request_json

logger = logging.getLogger(__name__)

assignments_bp = Blueprint("assignments", __name__)


@assignments_bp.route(
    "/api/companies/<int:company_id>/positions/<int:position_id>/assignments",
    methods=["POST"],
)
def api_assign_user(company_id: int, position_id: int):
    """Assign a user to a position, ending the current assignment if any.

    Accepts JSON:
        - user_id (required)
        - assignment_type: permanent | temporary | acting (default permanent)
        - start_at, end_at: ISO-8601 (optional)
        - reason, notes (optional)

    Returns:
        201: Assignment created
        400: Validation error
        404: Position not found
        409: Concurrent assignment conflict
    """
    data = request_json()
    config = AssignmentConfig.from_dict(data)
    config.start_at = parse_datetime(data.get("start_at"), "start_at")
    config.end_at = parse_datetime(data.get("end_at"), "end_at")
    config.previous_assignment_id = parse_int(
        data.get("previous_assignment_id"), "previous_assignment_id", required=False
    )

    assignment = get_org_service().assign_user_to_position(
        company_id,
        position_id,
        data.get("user_id"),
        config=config,
        actor=request_actor(data),
    )
    return jsonify(assignment.to_dict()), 201


@assignments_bp.route(
    "/api/companies/<int:company_id>/positions/<int:position_id>/assignments",
    methods=["GET"],
)
def api_assignment_history(company_id: int, position_id: int):
    """Assignment history for a position, most recent first."""
    history = get_org_service().get_position_assignment_history(company_id, position_id)
    return jsonify({
        "position_id": position_id,
        "assignments": [a.to_dict() for a in history],
    })


@assignments_bp.route(
    "/api/companies/<int:company_id>/assignments/<int:assignment_id>/end",
    methods=["POST"],
)
def api_end_assignment(company_id: int, assignment_id: int):
    """End an active assignment.

    Accepts JSON:
        - end_at: ISO-8601 (optional, default now)
        - reason (optional)

    Returns:
        200: Assignment ended
        404: Assignment not found
        409: Assignment is not active
    """
    data = request_json()
    assignment = get_org_service().end_position_assignment(
        company_id,
        assignment_id,
        end_at=parse_datetime(data.get("end_at"), "end_at"),
        actor=request_actor(data),
        reason=data.get("reason"),
    )
    return jsonify(assignment.to_dict())


@assignments_bp.route(
    "/api/companies/<int:company_id>/assignments/<int:assignment_id>/cancel",
    methods=["POST"],
)
def api_cancel_assignment(company_id: int, assignment_id: int):
    data = request_json()
    assignment = get_org_service().assignments.cancel(
        company_id, assignment_id, actor=request_actor(data), reason=data.get("reason")
    )
    return jsonify(assignment.to_dict())


@assignments_bp.route(
    "/api/companies/<int:company_id>/positions/<int:position_id>/history",
    methods=["GET"],
)
def api_position_history(company_id: int, position_id: int):
    """Position history view; ?at= adds the occupant at that instant."""
    at = parse_datetime(request.args.get("at"), "at")
    view = get_org_service().get_position_history(company_id, position_id, at=at)
    return jsonify(view.to_dict())


@assignments_bp.route(
    "/api/companies/<int:company_id>/users/<user_id>/assignments",
    methods=["GET"],
)
def api_user_assignments(company_id: int, user_id: str):
    active_only = request.args.get("active", "").lower() in ("1", "true", "yes")
    assignments = get_org_service().assignments.get_user_assignments(
        company_id, user_id, active_only=active_only
    )
    return jsonify({"user_id": user_id, "assignments": [a.to_dict() for a in assignments]})
