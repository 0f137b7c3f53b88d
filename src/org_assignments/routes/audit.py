"""Read-only audit log endpoint."""

import logging

from flask import Blueprint, jsonify, request

from . import get_org_service, parse_datetime, parse_int

logger = logging.getLogger(__name__)

audit_bp = Blueprint("audit", __name__)

MAX_LIMIT = 1000


@audit_bp.route("/api/companies/<int:company_id>/audit", methods=["GET"])
def api_audit_log(company_id: int):
    """
    Audit entries for a company in sequence order.

    Query params:
        - entity_type + entity_id: entries for one entity
        - since, until: ISO-8601 bounds on the entry timestamp
        - action: filter by action name
        - limit: max entries (default 100, capped at 1000)
    """
    audit_log = get_org_service().audit_log
    entity_type = request.args.get("entity_type")
    entity_id = parse_int(request.args.get("entity_id"), "entity_id", required=False)

    if entity_type and entity_id is not None:
        entries = [
            e for e in audit_log.list_for_entity(entity_type, entity_id)
            if e.company_id == company_id
        ]
    else:
        limit = parse_int(request.args.get("limit", 100), "limit")
        entries = audit_log.list_for_company(
            company_id,
            since=parse_datetime(request.args.get("since"), "since"),
            until=parse_datetime(request.args.get("until"), "until"),
            action=request.args.get("action"),
            limit=max(1, min(limit, MAX_LIMIT)),
        )

    return jsonify({
        "entries": [e.to_dict() for e in entries],
        "total": audit_log.count(company_id),
    })
