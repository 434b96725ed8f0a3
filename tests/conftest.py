"""
Shared pytest fixtures for the Test Reporting Service test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - seed: A small project with users, statuses, runs and executions
    - auth_enabled: API-key auth switched on with one key per role
"""

from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from app import create_app
from app.models import db as _db
from app.models.milestone import Milestone
from app.models.project import Project, User
from app.models.testing import (
    Configuration,
    RepositoryCase,
    Status,
    TestExecution,
    TestRun,
)

API_KEYS = "admin-key:admin,editor-key:editor,viewer-key:viewer"


def at(day: int, hour: int = 10, month: int = 3) -> datetime:
    """A UTC instant in 2024 (March by default)."""
    return datetime(2024, month, day, hour, 0, tzinfo=timezone.utc)


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


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


@pytest.fixture()
def auth_enabled(monkeypatch):
    """Turn on API-key auth for one test; keys: admin-key, editor-key, viewer-key."""
    monkeypatch.setenv("API_AUTH_ENABLED", "true")
    monkeypatch.setenv("API_KEYS", API_KEYS)


# ── Builders ─────────────────────────────────────────────────────────────


def make_execution(run, case, status, user=None, executed_at=None, elapsed=None, notes=""):
    execution = TestExecution(
        test_run_id=run.id,
        repository_case_id=case.id,
        status_id=status.id,
        executed_by_id=user.id if user else None,
        executed_at=executed_at,
        elapsed=elapsed,
        notes=notes,
    )
    _db.session.add(execution)
    _db.session.flush()
    return execution


def make_statuses():
    statuses = SimpleNamespace(
        passed=Status(name="Passed", system_name="passed", color="#22c55e", is_success=True),
        failed=Status(name="Failed", system_name="failed", color="#ef4444", is_failure=True),
        blocked=Status(name="Blocked", system_name="blocked", color="#f59e0b"),
        untested=Status(
            name="Untested", system_name="untested", color="#9ca3af", is_completed=False,
        ),
    )
    _db.session.add_all(vars(statuses).values())
    _db.session.flush()
    return statuses


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def seed():
    """
    Project "Checkout" with:
        users       alice (tester), bob (project_admin)
        milestones  Release 1 (started), Old Release (deleted)
        cases       Login works (alice, automated, 3 steps),
                    Cart total (bob, manual, 5 steps)
        runs        Smoke (Release 1, Chrome), Regression (no milestone, Firefox)
        executions  e1 Smoke/Login    passed   alice 2024-03-04 30s
                    e2 Smoke/Cart     failed   alice 2024-03-05 60s
                    e3 Regr./Login    passed   bob   2024-03-11 20s
                    e4 Regr./Cart     blocked  bob   2024-03-12
                    e5 Regr./Cart     untested alice 2024-03-12
    """
    alice = User(id="u1", name="Alice Tester", email="alice@example.com", role="tester")
    bob = User(id="u2", name="Bob Lead", email="bob@example.com", role="project_admin")
    _db.session.add_all([alice, bob])
    statuses = make_statuses()

    project = Project(name="Checkout", created_by_id=alice.id)
    chrome = Configuration(name="Chrome")
    firefox = Configuration(name="Firefox")
    _db.session.add_all([project, chrome, firefox])
    _db.session.flush()

    release = Milestone(
        project_id=project.id, name="Release 1", is_started=True,
        created_by_id=bob.id, created_at=at(1),
    )
    old_release = Milestone(
        project_id=project.id, name="Old Release", is_started=True, is_completed=True,
        created_by_id=bob.id, created_at=at(1),
    )
    old_release.soft_delete()
    login = RepositoryCase(
        project_id=project.id, name="Login works", source="JUNIT", automated=True,
        state="ready", steps_count=3, creator_id=alice.id, created_at=at(2),
    )
    cart = RepositoryCase(
        project_id=project.id, name="Cart total", source="MANUAL", automated=False,
        state="draft", steps_count=5, creator_id=bob.id, created_at=at(2),
    )
    _db.session.add_all([release, old_release, login, cart])
    _db.session.flush()

    smoke = TestRun(
        project_id=project.id, name="Smoke", milestone_id=release.id,
        configuration_id=chrome.id, created_by_id=alice.id, created_at=at(3),
    )
    regression = TestRun(
        project_id=project.id, name="Regression", configuration_id=firefox.id,
        created_by_id=bob.id, created_at=at(10),
    )
    _db.session.add_all([smoke, regression])
    _db.session.flush()

    e1 = make_execution(smoke, login, statuses.passed, alice, at(4), 30)
    e2 = make_execution(smoke, cart, statuses.failed, alice, at(5), 60)
    e3 = make_execution(regression, login, statuses.passed, bob, at(11), 20)
    e4 = make_execution(regression, cart, statuses.blocked, bob, at(12))
    e5 = make_execution(regression, cart, statuses.untested, alice, at(12, 11))
    _db.session.commit()

    return SimpleNamespace(
        project=project, alice=alice, bob=bob, statuses=statuses,
        chrome=chrome, firefox=firefox, release=release, old_release=old_release,
        login=login, cart=cart, smoke=smoke, regression=regression,
        executions=[e1, e2, e3, e4, e5],
    )
