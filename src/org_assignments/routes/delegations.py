"""REST API endpoints for delegations."""

import logging

from flask import Blueprint, jsonify, request

from ..errors import ValidationError
from . import get_org_service, parse_datetime, parse_int, request_actor, request_json

logger = logging.getLogger(__name__)

delegations_bp = Blueprint("delegations", __name__)


@delegations_bp.route("/api/companies/<int:company_id>/delegations", methods=["POST"])
def api_create_delegation(company_id: int):
    """Create a delegation from a position's current occupant.

    Accepts JSON:
        - delegator_position_id, delegate_user_id (required)
        - start_at, end_at: ISO-8601 (required)
        - reason, notes, delegate_position_id (optional)
        - requires_approval (optional, default false; when true the
          delegation stays pending until approved)

    Returns:
        201: Delegation created
        400: Validation error (vacant position, self-delegation, bad window)
        404: Position not found
    """
    data = request_json()
    delegation = get_org_service().create_delegation(
        company_id,
        actor=request_actor(data),
        delegator_position_id=parse_int(data.get("delegator_position_id"), "delegator_position_id"),
        delegate_user_id=data.get("delegate_user_id"),
        start_at=parse_datetime(data.get("start_at"), "start_at"),
        end_at=parse_datetime(data.get("end_at"), "end_at"),
        reason=data.get("reason"),
        notes=data.get("notes"),
        requires_approval=bool(data.get("requires_approval", False)),
        delegate_position_id=parse_int(
            data.get("delegate_position_id"), "delegate_position_id", required=False
        ),
    )
    return jsonify(delegation.to_dict()), 201


@delegations_bp.route("/api/companies/<int:company_id>/delegations", methods=["GET"])
def api_list_delegations(company_id: int):
    """List delegations.

    Query params (one of):
        - position_id: every delegation granted from the position
        - user_id with direction=outgoing|incoming: delegations the user
          granted or received (active only unless all=true)
    """
    service = get_org_service()
    position_id = parse_int(request.args.get("position_id"), "position_id", required=False)
    user_id = request.args.get("user_id")

    if position_id is not None:
        delegations = service.delegations.list_for_position(company_id, position_id)
    elif user_id:
        direction = request.args.get("direction", "outgoing")
        active_only = request.args.get("all", "").lower() not in ("1", "true", "yes")
        if direction == "outgoing":
            delegations = service.delegations.list_outgoing(company_id, user_id, active_only)
        elif direction == "incoming":
            delegations = service.delegations.list_incoming(company_id, user_id, active_only)
        else:
            raise ValidationError(f"direction must be 'outgoing' or 'incoming', got {direction!r}")
    else:
        raise ValidationError("position_id or user_id is required")

    return jsonify({"delegations": [d.to_dict() for d in delegations]})


@delegations_bp.route(
    "/api/companies/<int:company_id>/delegations/<int:delegation_id>", methods=["GET"]
)
def api_get_delegation(company_id: int, delegation_id: int):
    delegation = get_org_service().delegations.get_delegation(company_id, delegation_id)
    return jsonify(delegation.to_dict())


@delegations_bp.route(
    "/api/companies/<int:company_id>/delegations/<int:delegation_id>/approve", methods=["POST"]
)
def api_approve_delegation(company_id: int, delegation_id: int):
    """Approve a pending delegation.

    Returns:
        200: Delegation active
        404: Delegation not found
        409: Delegation is not pending
    """
    data = request_json()
    delegation = get_org_service().approve_delegation(
        company_id, delegation_id, actor=request_actor(data)
    )
    return jsonify(delegation.to_dict())


@delegations_bp.route(
    "/api/companies/<int:company_id>/delegations/<int:delegation_id>/reject", methods=["POST"]
)
def api_reject_delegation(company_id: int, delegation_id: int):
    data = request_json()
    delegation = get_org_service().reject_delegation(
        company_id, delegation_id, actor=request_actor(data), reason=data.get("reason")
    )
    return jsonify(delegation.to_dict())


@delegations_bp.route(
    "/api/companies/<int:company_id>/delegations/<int:delegation_id>/revoke", methods=["POST"]
)
def api_revoke_delegation(company_id: int, delegation_id: int):
    data = request_json()
    delegation = get_org_service().revoke_delegation(
        company_id, delegation_id, actor=request_actor(data), reason=data.get("reason")
    )
    return jsonify(delegation.to_dict())


@delegations_bp.route("/api/delegations/expire", methods=["POST"])
def api_expire_delegations():
    """Expire every active delegation whose window has closed."""
    data = request_json()
    now = parse_datetime(data.get("now"), "now")
    expired = get_org_service().expire_delegations(now)
    return jsonify({"expired": [d.id for d in expired], "count": len(expired)})
