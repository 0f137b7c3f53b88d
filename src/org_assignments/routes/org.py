"""REST API endpoints for companies, departments and positions."""

import logging

from flask import Blueprint, jsonify, request

from . import get_org_service, parse_int, request_actor, request_json

logger = logging.getLogger(__name__)

org_bp = Blueprint("org", __name__)


# --- Companies ---


@org_bp.route("/api/companies", methods=["POST"])
def api_create_company():
    """Create a company.

    Accepts JSON:
        - name (required)
        - description (optional)

    Returns:
        201: Company created {id, name}
        400: Validation error
    """
    data = request_json()
    company = get_org_service().hierarchy.create_company(
        data.get("name", ""), description=data.get("description")
    )
    return jsonify({"id": company.id, "name": company.name}), 201


@org_bp.route("/api/companies/<int:company_id>", methods=["GET"])
def api_get_company(company_id: int):
    company = get_org_service().hierarchy.get_company(company_id)
    return jsonify({
        "id": company.id,
        "name": company.name,
        "description": company.description,
        "status": company.status,
    })


# --- Departments ---


@org_bp.route("/api/companies/<int:company_id>/departments", methods=["GET"])
def api_list_departments(company_id: int):
    include_inactive = request.args.get("include_inactive", "").lower() in ("1", "true", "yes")
    departments = get_org_service().hierarchy.list_departments(
        company_id, include_inactive=include_inactive
    )
    return jsonify({"departments": [d.to_dict() for d in departments]})


@org_bp.route("/api/companies/<int:company_id>/departments", methods=["POST"])
def api_create_department(company_id: int):
    """Create a department.

    Accepts JSON:
        - name, code (required)
        - parent_department_id, location, description (optional)
    """
    data = request_json()
    department = get_org_service().hierarchy.create_department(
        company_id,
        name=data.get("name", ""),
        code=data.get("code", ""),
        parent_department_id=parse_int(
            data.get("parent_department_id"), "parent_department_id", required=False
        ),
        location=data.get("location"),
        description=data.get("description"),
        actor=request_actor(data),
    )
    return jsonify(department.to_dict()), 201


@org_bp.route("/api/companies/<int:company_id>/departments/<int:department_id>", methods=["PATCH"])
def api_update_department(company_id: int, department_id: int):
    data = request_json()
    actor = request_actor(data)
    changes = {k: v for k, v in data.items() if k != "actor"}
    department = get_org_service().hierarchy.update_department(
        company_id, department_id, changes, actor=actor
    )
    return jsonify(department.to_dict())


@org_bp.route(
    "/api/companies/<int:company_id>/departments/<int:department_id>/deactivate",
    methods=["POST"],
)
def api_deactivate_department(company_id: int, department_id: int):
    department = get_org_service().hierarchy.deactivate_department(
        company_id, department_id, actor=request_actor(request_json())
    )
    return jsonify(department.to_dict())


# --- Positions ---


@org_bp.route("/api/companies/<int:company_id>/positions", methods=["GET"])
def api_list_positions(company_id: int):
    department_id = parse_int(request.args.get("department_id"), "department_id", required=False)
    include_inactive = request.args.get("include_inactive", "").lower() in ("1", "true", "yes")
    positions = get_org_service().hierarchy.list_positions(
        company_id, department_id=department_id, include_inactive=include_inactive
    )
    return jsonify({"positions": [p.to_dict() for p in positions]})


@org_bp.route("/api/companies/<int:company_id>/positions", methods=["POST"])
def api_create_position(company_id: int):
    """Create a position.

    Accepts JSON:
        - department_id, title, code (required)
        - level (default 1), reports_to_id, description (optional)
        - expense_ceiling and can_approve_* flags (optional)

    Returns:
        201: Position created
        400: Validation error (duplicate code, level or cycle violation)
        404: Department or manager position not found
    """
    data = request_json()
    actor = request_actor(data)
    authority = {
        key: data[key]
        for key in (
            "expense_ceiling",
            "can_approve_projects",
            "can_approve_budgets",
            "can_approve_quality",
            "can_approve_safety",
            "can_approve_time_off",
        )
        if key in data
    }
    position = get_org_service().hierarchy.create_position(
        company_id,
        department_id=parse_int(data.get("department_id"), "department_id"),
        title=data.get("title", ""),
        code=data.get("code", ""),
        level=parse_int(data.get("level", 1), "level"),
        reports_to_id=parse_int(data.get("reports_to_id"), "reports_to_id", required=False),
        description=data.get("description"),
        actor=actor,
        **authority,
    )
    return jsonify(position.to_dict()), 201


@org_bp.route("/api/companies/<int:company_id>/positions/<int:position_id>", methods=["GET"])
def api_get_position(company_id: int, position_id: int):
    position = get_org_service().hierarchy.get_position(company_id, position_id)
    return jsonify(position.to_dict())


@org_bp.route("/api/companies/<int:company_id>/positions/<int:position_id>", methods=["PATCH"])
def api_update_position(company_id: int, position_id: int):
    data = request_json()
    actor = request_actor(data)
    changes = {k: v for k, v in data.items() if k != "actor"}
    position = get_org_service().hierarchy.update_position(
        company_id, position_id, changes, actor=actor
    )
    return jsonify(position.to_dict())


@org_bp.route(
    "/api/companies/<int:company_id>/positions/<int:position_id>/deactivate",
    methods=["POST"],
)
def api_deactivate_position(company_id: int, position_id: int):
    position = get_org_service().hierarchy.deactivate_position(
        company_id, position_id, actor=request_actor(request_json())
    )
    return jsonify(position.to_dict())


@org_bp.route(
    "/api/companies/<int:company_id>/positions/<int:position_id>/reporting-chain",
    methods=["GET"],
)
def api_reporting_chain(company_id: int, position_id: int):
    chain = get_org_service().hierarchy.get_reporting_chain(company_id, position_id)
    return jsonify({"position_id": position_id, "chain": [p.to_dict() for p in chain]})


@org_bp.route(
    "/api/companies/<int:company_id>/positions/<int:position_id>/direct-reports",
    methods=["GET"],
)
def api_direct_reports(company_id: int, position_id: int):
    reports = get_org_service().hierarchy.get_direct_reports(company_id, position_id)
    return jsonify({"position_id": position_id, "direct_reports": [p.to_dict() for p in reports]})
