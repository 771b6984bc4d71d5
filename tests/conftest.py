"""
Shared pytest fixtures for the MOC workflow test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - actor: Actor passed into service calls
    - roles / departments: seeded reference rows
    - make_levels: factory for approval levels
"""

import pytest

from mocflow import create_app
from mocflow.auth import Actor
from mocflow.models import db as _db
from mocflow.models.approval_level import ApprovalLevel
from mocflow.models.lookup import Department, Role

ROLE_KEYS = ("Supervisor", "DepartmentManager", "ProcessSafety", "DivisionManager", "A", "B", "C")


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Domain fixtures ──────────────────────────────────────────────────────


@pytest.fixture()
def actor():
    return Actor(id="u-100", name="Jane Operator")


@pytest.fixture()
def roles():
    rows = [Role(key=key, name=key, is_active=True) for key in ROLE_KEYS]
    _db.session.add_all(rows)
    _db.session.commit()
    return {r.key: r for r in rows}


@pytest.fixture()
def departments():
    rows = [
        Department(code="OPS", name="Operations", is_active=True),
        Department(code="MNT", name="Maintenance", is_active=True),
    ]
    _db.session.add_all(rows)
    _db.session.commit()
    return {d.code: d for d in rows}


@pytest.fixture()
def make_levels(roles):
    """Factory: make_levels([(order, role_key), ...], active=True) -> [ApprovalLevel]."""

    def _make(rows, active=True):
        levels = [ApprovalLevel(order=order, role_key=role_key, is_active=active) for order, role_key in rows]
        _db.session.add_all(levels)
        _db.session.commit()
        return levels

    return _make


@pytest.fixture()
def standard_chain(make_levels):
    """Supervisor -> DepartmentManager -> ProcessSafety -> DivisionManager."""
    return make_levels([
        (1, "Supervisor"),
        (2, "DepartmentManager"),
        (3, "ProcessSafety"),
        (4, "DivisionManager"),
    ])
