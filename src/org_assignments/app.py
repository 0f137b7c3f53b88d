"""Flask application factory."""

import logging
import logging.config
from pathlib import Path

from flask import Flask, jsonify

from . import __version__
from .config import get_value, load_config
from .database import db, init_database
from .errors import OrgError


def setup_logging(config: dict, app_root: Path) -> None:
    """Configure structured logging to console and file."""
    log_level = get_value(config, "logging", "level", default="INFO")
    log_file = get_value(config, "logging", "file", default="logs/app.log")
    max_bytes = get_value(config, "logging", "max_bytes", default=10_000_000)  # 10MB
    backup_count = get_value(config, "logging", "backup_count", default=5)

    # Ensure logs directory exists
    log_path = app_root / log_file
    log_path.parent.mkdir(parents=True, exist_ok=True)

    logging_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s - %(levelname)s - %(name)s - %(message)s",
                "datefmt": "%Y-%m-%dT%H:%M:%S%z",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": log_level,
                "formatter": "standard",
                "stream": "ext://sys.stdout",
            },
            "file": {
                "class": "logging.handlers.RotatingFileHandler",
                "level": log_level,
                "formatter": "standard",
                "filename": str(log_path),
                "maxBytes": max_bytes,
                "backupCount": backup_count,
            },
        },
        "root": {
            "level": log_level,
            "handlers": ["console", "file"],
        },
    }

    logging.config.dictConfig(logging_config)


def create_app(config_path: str = "config.yaml", testing: bool = False) -> Flask:
    """
    Create and configure the Flask application.

    Args:
        config_path: Path to the YAML configuration file
        testing: If True, background threads (notification delivery) are not
            started; tests drain the notification queue explicitly.

    Returns:
        Configured Flask application instance
    """
    # Determine the application root directory
    app_root = Path(config_path).parent.absolute()
    if not app_root.exists():
        app_root = Path.cwd()

    # Load configuration
    config = load_config(config_path)

    app = Flask(__name__)

    if testing:
        app.config["TESTING"] = True

    # Configure Flask
    app.config["DEBUG"] = get_value(config, "server", "debug", default=False)
    app.config["APP_CONFIG"] = config
    app.config["APP_VERSION"] = __version__
    app.config["APP_ROOT"] = str(app_root)

    # Setup logging
    setup_logging(config, app_root)
    logger = logging.getLogger(__name__)
    logger.info(f"Starting org-assignments v{__version__}")

    # Initialize database (continues even if connection fails)
    db_connected = init_database(app, config)
    app.config["DATABASE_CONNECTED"] = db_connected

    # Import models so every table is registered with the metadata
    from . import models  # noqa: F401

    # Wire the assignment engine
    from .services.org_service import OrgAssignmentService
    org_service = OrgAssignmentService.from_config(config)
    app.extensions["org_service"] = org_service

    if not app.config.get("TESTING") and org_service.notifier is not None:
        org_service.notifier.start()

    # Delegation windows open and close on the clock (not in tests)
    sweeper = None
    if not app.config.get("TESTING"):
        from .services.delegation_sweeper import DelegationSweeper
        sweeper = DelegationSweeper(app=app, service=org_service, config=config)
        sweeper.start()
        app.extensions["delegation_sweeper"] = sweeper

    # Register shutdown cleanup
    import atexit

    @atexit.register
    def cleanup():
        # Wrap in try-except as logging may be shut down during atexit
        try:
            if sweeper is not None:
                sweeper.stop()
            org_service.shutdown()
        except Exception as e:
            logger.warning(f"Error during shutdown cleanup: {e}")

    # Register error handlers
    register_error_handlers(app)

    # Register blueprints
    register_blueprints(app)

    # Register CLI command groups
    register_cli_commands(app)

    return app


def register_error_handlers(app: Flask) -> None:
    """Map domain errors and HTTP errors to JSON responses."""
    from .services.position_lock import PositionLockError

    @app.errorhandler(OrgError)
    def org_error(error: OrgError):
        db.session.rollback()
        return jsonify({"error": str(error), "type": type(error).__name__}), error.status_code

    @app.errorhandler(PositionLockError)
    def lock_error(error: PositionLockError):
        db.session.rollback()
        return jsonify({"error": str(error), "type": "ConflictError"}), 409

    @app.errorhandler(404)
    def not_found_error(error):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({"error": "Method not allowed"}), 405

    @app.errorhandler(500)
    def internal_error(error):
        # In production, don't expose error details
        if not app.debug:
            return jsonify({"error": "Internal server error"}), 500
        # In debug mode, let Flask's default handler show details
        raise error


def register_blueprints(app: Flask) -> None:
    """Register application blueprints."""
    from .routes.assignments import assignments_bp
    from .routes.audit import audit_bp
    from .routes.delegations import delegations_bp
    from .routes.health import health_bp
    from .routes.org import org_bp
    from .routes.resolution import resolution_bp
    from .routes.swaps import swaps_bp

    app.register_blueprint(assignments_bp)
    app.register_blueprint(audit_bp)
    app.register_blueprint(delegations_bp)
    app.register_blueprint(health_bp)
    app.register_blueprint(org_bp)
    app.register_blueprint(resolution_bp)
    app.register_blueprint(swaps_bp)


def register_cli_commands(app: Flask) -> None:
    """Register Flask CLI command groups."""
    from .cli.org_cli import org_cli

    app.cli.add_command(org_cli)
