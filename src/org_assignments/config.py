"""Service configuration: built-in defaults, config.yaml, then environment."""

import os
from pathlib import Path
from typing import Any

import yaml


def _as_bool(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


# Lowest-precedence values, overridden by config.yaml and the environment
DEFAULTS = {
    "server": {
        "host": "127.0.0.1",
        "port": 5060,
        "debug": False,
    },
    "logging": {
        "level": "INFO",
        "file": "logs/app.log",
    },
    "database": {
        "url": None,
        "host": "localhost",
        "port": 5432,
        "name": "org_assignments",
        "user": "postgres",
        "password": "",
        "pool_size": 10,
        "pool_timeout": 30,
    },
    "ledger": {
        "max_retries": 5,
        "retry_delay_ms": 50,
        "lock_timeout_seconds": 15,
    },
    "resolution": {
        "sla_seconds": 60,
        "cache_enabled": True,
        "cache_ttl_seconds": 300,
        "cache_max_size": 5000,
        "max_workers": 8,
        "deadline_seconds": None,
    },
    "monitor": {
        "window_size": 1000,
    },
    "reassignment": {
        "auto_on_assignment_change": True,
        "auto_on_delegation_change": True,
        "deadline_seconds": 60,
    },
    "notifications": {
        "enabled": True,
        "queue_size": 1000,
    },
    "delegations": {
        "sweep_enabled": True,
        "sweep_interval_seconds": 30,
    },
}

# env var -> (section, key, converter)
ENV_MAPPINGS = {
    "FLASK_SERVER_HOST": ("server", "host", str),
    "FLASK_SERVER_PORT": ("server", "port", int),
    "FLASK_DEBUG": ("server", "debug", _as_bool),
    "FLASK_LOG_LEVEL": ("logging", "level", str),
    "DATABASE_HOST": ("database", "host", str),
    "DATABASE_PORT": ("database", "port", int),
    "DATABASE_NAME": ("database", "name", str),
    "DATABASE_USER": ("database", "user", str),
    "DATABASE_PASSWORD": ("database", "password", str),
    "DATABASE_POOL_SIZE": ("database", "pool_size", int),
    "DATABASE_POOL_TIMEOUT": ("database", "pool_timeout", int),
    "LEDGER_MAX_RETRIES": ("ledger", "max_retries", int),
    "LEDGER_LOCK_TIMEOUT_SECONDS": ("ledger", "lock_timeout_seconds", float),
    "RESOLUTION_SLA_SECONDS": ("resolution", "sla_seconds", float),
    "RESOLUTION_CACHE_ENABLED": ("resolution", "cache_enabled", _as_bool),
    "RESOLUTION_CACHE_TTL_SECONDS": ("resolution", "cache_ttl_seconds", int),
    "RESOLUTION_MAX_WORKERS": ("resolution", "max_workers", int),
    "RESOLUTION_DEADLINE_SECONDS": ("resolution", "deadline_seconds", float),
    "MONITOR_WINDOW_SIZE": ("monitor", "window_size", int),
    "REASSIGNMENT_DEADLINE_SECONDS": ("reassignment", "deadline_seconds", float),
    "NOTIFICATIONS_ENABLED": ("notifications", "enabled", _as_bool),
    "DELEGATION_SWEEP_ENABLED": ("delegations", "sweep_enabled", _as_bool),
    "DELEGATION_SWEEP_INTERVAL_SECONDS": ("delegations", "sweep_interval_seconds", float),
}


def deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into a copy of base."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_yaml_config(config_path: Path) -> dict:
    """Read a YAML config file; a missing or empty file yields {}."""
    if not config_path.exists():
        return {}

    with open(config_path, "r") as f:
        content = yaml.safe_load(f)
        return content if content else {}


def apply_env_overrides(config: dict) -> dict:
    """Overlay every ENV_MAPPINGS variable that is set onto a copy of config."""
    result = {key: dict(value) if isinstance(value, dict) else value for key, value in config.items()}

    for env_var, (section, key, converter) in ENV_MAPPINGS.items():
        value = os.environ.get(env_var)
        if value is not None:
            if section not in result:
                result[section] = {}
            result[section][key] = converter(value)

    return result


def load_config(config_path: str | Path = "config.yaml") -> dict:
    """Load config: env vars > config.yaml > DEFAULTS."""
    if isinstance(config_path, str):
        config_path = Path(config_path)

    config = deep_merge(DEFAULTS, {})

    yaml_config = load_yaml_config(config_path)
    config = deep_merge(config, yaml_config)

    config = apply_env_overrides(config)

    return config


def get_value(config: dict, *keys: str, default: Any = None) -> Any:
    """Walk config by keys; missing keys and None values give default."""
    result = config
    for key in keys:
        if isinstance(result, dict) and key in result:
            result = result[key]
        else:
            return default
    return default if result is None else result


def _extract_db_name(url: str) -> str:
    """Database name from the last path segment of a URL, without the query string."""
    if "/" not in url:
        return ""
    name = url.rsplit("/", 1)[-1]
    if "?" in name:
        name = name.split("?", 1)[0]
    return name


def get_database_url(config: dict) -> str:
    """Build database URL.

    Precedence: DATABASE_URL env var, then ``database.url``, then the
    individual host/port/name/user/password fields.
    """
    database_url = os.environ.get("DATABASE_URL") or get_value(config, "database", "url")
    if database_url:
        _guard_production_db(database_url)
        return database_url

    db = config.get("database", {})
    host = db.get("host", "localhost")
    port = db.get("port", 5432)
    name = db.get("name", "org_assignments")
    user = db.get("user", "postgres")
    password = db.get("password", "")

    if password:
        url = f"postgresql://{user}:{password}@{host}:{port}/{name}"
    else:
        url = f"postgresql://{user}@{host}:{port}/{name}"

    _guard_production_db(url)
    return url


def _guard_production_db(database_url: str) -> None:
    """Raise RuntimeError if tests are trying to connect to a non-test Postgres database.

    Test databases MUST have a name ending with '_test'. SQLite URLs are
    always allowed since they only ever point at local files.
    """
    import sys
    if "_pytest" not in sys.modules and "pytest" not in sys.modules:
        return

    if not database_url.startswith("postgresql"):
        return

    db_name = _extract_db_name(database_url)
    if not db_name:
        return

    if not db_name.endswith("_test"):
        raise RuntimeError(
            f"SAFETY GUARD: tests may not use database '{db_name}'. "
            f"Point DATABASE_URL at a database named like '{db_name}_test', "
            f"or use a SQLite file."
        )


def mask_database_url(url: str) -> str:
    """Replace the password in a PostgreSQL URL with ***."""
    import re
    return re.sub(r"(postgresql://[^:]+:)[^@]+(@)", r"\1***\2", url)


def get_resolution_config(config: dict) -> dict:
    """Get resolution engine configuration with defaults."""
    return {
        "sla_seconds": get_value(config, "resolution", "sla_seconds", default=60),
        "cache_enabled": get_value(config, "resolution", "cache_enabled", default=True),
        "cache_ttl_seconds": get_value(config, "resolution", "cache_ttl_seconds", default=300),
        "cache_max_size": get_value(config, "resolution", "cache_max_size", default=5000),
        "max_workers": get_value(config, "resolution", "max_workers", default=8),
        "deadline_seconds": get_value(config, "resolution", "deadline_seconds", default=None),
    }


def get_ledger_config(config: dict) -> dict:
    """Get assignment/delegation ledger configuration with defaults."""
    return {
        "max_retries": get_value(config, "ledger", "max_retries", default=5),
        "retry_delay_ms": get_value(config, "ledger", "retry_delay_ms", default=50),
        "lock_timeout_seconds": get_value(config, "ledger", "lock_timeout_seconds", default=15),
    }
