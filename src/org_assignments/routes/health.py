"""Health check endpoint."""

import logging

from flask import Blueprint, current_app, jsonify

from ..database import check_database_health

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__)


def get_notification_health() -> dict:
    """
    Get notification dispatcher health status.

    Returns:
        Dictionary with dispatcher health information
    """
    try:
        service = current_app.extensions.get("org_service")
        if service is None or service.notifier is None:
            return {"status": "not_initialized", "running": False}
        stats = service.notifier.stats
        if not stats.get("enabled", True):
            status = "disabled"
        elif stats.get("running"):
            status = "healthy"
        else:
            status = "stopped"
        return {"status": status, **stats}
    except Exception as e:
        logger.error(f"Error getting notification health: {e}")
        return {
            "status": "error",
            "error": str(e),
        }


@health_bp.route("/health")
def health_check():
    """
    Health check endpoint.

    Returns:
        JSON response with status, version, database connectivity and
        the notification dispatcher state
    """
    version = current_app.config.get("APP_VERSION", "unknown")

    # Check database health
    db_connected, db_error = check_database_health()

    notifications = get_notification_health()

    # A stopped dispatcher is expected under test; only an error degrades
    if db_connected and notifications.get("status") != "error":
        overall_status = "healthy"
    else:
        overall_status = "degraded"

    response = {
        "status": overall_status,
        "version": version,
        "database": "connected" if db_connected else "disconnected",
        "notifications": notifications,
    }

    if db_error:
        response["database_error"] = db_error

    return jsonify(response)
