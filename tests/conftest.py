"""Pytest fixtures for the org assignment tests.

Every test gets its own SQLite database file under tmp_path, so tests are
isolated without transaction tricks and worker threads (batch resolution,
concurrency tests) see committed data through their own connections.
"""

import pytest
import yaml

from org_assignments.app import create_app
from org_assignments.database import db

from .factories import ALL_FACTORIES

TEST_CONFIG = {
    "logging": {"level": "DEBUG", "file": "logs/test.log"},
    "ledger": {"max_retries": 8, "retry_delay_ms": 10, "lock_timeout_seconds": 10},
    "resolution": {"max_workers": 4, "cache_ttl_seconds": 300},
    "reassignment": {"deadline_seconds": 30},
}


@pytest.fixture
def config_path(tmp_path, monkeypatch):
    """Write a config.yaml and point DATABASE_URL at a per-test SQLite file."""
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'org_test.db'}")
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(TEST_CONFIG))
    return path


@pytest.fixture
def app(config_path):
    """Create a Flask application with a fresh schema."""
    app = create_app(config_path=str(config_path), testing=True)
    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        app.extensions["org_service"].shutdown()
        db.session.remove()
        db.engine.dispose()


@pytest.fixture
def app_context(app):
    with app.app_context():
        yield


@pytest.fixture
def db_session(app_context):
    """db.session, with every factory bound to it."""
    for factory_cls in ALL_FACTORIES:
        factory_cls._meta.sqlalchemy_session = db.session
    yield db.session
    db.session.rollback()


@pytest.fixture
def service(app, db_session):
    """The OrgAssignmentService wired by the app factory."""
    return app.extensions["org_service"]


@pytest.fixture
def client(app):
    """Create a test client."""
    return app.test_client()


@pytest.fixture
def runner(app):
    """Create a test CLI runner."""
    return app.test_cli_runner()


@pytest.fixture
def org(service):
    """A small org chart: one company, one department, three positions.

    manager (level 1) <- analyst (level 2), engineer (level 2)
    """
    from .factories import CompanyFactory, DepartmentFactory, PositionFactory

    company = CompanyFactory()
    department = DepartmentFactory(company=company)
    manager = PositionFactory(company=company, department=department, title="Manager", level=1)
    analyst = PositionFactory(
        company=company, department=department, title="Analyst", level=2, reports_to=manager
    )
    engineer = PositionFactory(
        company=company, department=department, title="Engineer", level=2, reports_to=manager
    )
    return {
        "company": company,
        "department": department,
        "manager": manager,
        "analyst": analyst,
        "engineer": engineer,
    }
