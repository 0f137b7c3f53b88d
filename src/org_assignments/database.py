"""Database setup and utilities using Flask-SQLAlchemy."""

import logging
from typing import Tuple

from flask import Flask
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import event, text
from sqlalchemy.engine import Engine

from .config import get_database_url, get_value, mask_database_url

logger = logging.getLogger(__name__)

# SQLAlchemy instance - imported by models and app
db = SQLAlchemy()

# Flask-Migrate instance
migrate = Migrate()


def _engine_options(database_url: str, config: dict) -> dict:
    """Build SQLAlchemy engine options for the configured dialect."""
    if database_url.startswith("sqlite"):
        # Worker threads resolve and reassign on their own connections
        return {
            "connect_args": {"check_same_thread": False, "timeout": 30},
        }

    pool_size = get_value(config, "database", "pool_size", default=10)
    pool_timeout = get_value(config, "database", "pool_timeout", default=30)
    return {
        "pool_size": pool_size,
        "pool_timeout": pool_timeout,
        "pool_recycle": 3600,  # Recycle connections after 1 hour
        "pool_pre_ping": True,  # Verify connections before use
        "connect_args": {
            "connect_timeout": 5,
        },
    }


@event.listens_for(Engine, "connect")
def _configure_sqlite(dbapi_connection, connection_record):
    """Enable WAL and foreign keys on SQLite connections."""
    module = type(dbapi_connection).__module__
    if not module.startswith("sqlite3"):
        return
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def init_database(app: Flask, config: dict) -> bool:
    """
    Initialize database connection and Flask-Migrate.

    Args:
        app: Flask application instance
        config: Application configuration dictionary

    Returns:
        True if database connection successful, False otherwise
    """
    database_url = get_database_url(config)
    masked_url = mask_database_url(database_url)

    app.config["SQLALCHEMY_DATABASE_URI"] = database_url
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = _engine_options(database_url, config)

    db.init_app(app)
    migrate.init_app(app, db)

    connected = verify_connection(app)

    if connected:
        logger.info(f"Database connected to {masked_url}")
    else:
        logger.error(f"Database connection failed: {masked_url}")

    return connected


def verify_connection(app: Flask) -> bool:
    """
    Verify database connectivity by executing a simple query.

    Args:
        app: Flask application instance

    Returns:
        True if connection successful, False otherwise
    """
    try:
        with app.app_context():
            db.session.execute(text("SELECT 1"))
            db.session.commit()
        return True
    except Exception as e:
        logger.error(f"Database connection verification failed: {e}")
        return False


def check_database_health() -> Tuple[bool, str | None]:
    """
    Check database connectivity for health checks.

    Returns:
        Tuple of (is_connected, error_message)
    """
    try:
        db.session.execute(text("SELECT 1"))
        db.session.commit()
        return True, None
    except Exception as e:
        error_msg = f"{type(e).__name__}: {str(e)[:100]}"
        return False, error_msg


def is_postgres() -> bool:
    """True when the bound engine speaks PostgreSQL (advisory locks available)."""
    return db.engine.dialect.name == "postgresql"
