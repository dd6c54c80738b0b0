"""
Shared pytest fixtures for the approval routing test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - org: Two-level department hierarchy with heads, directors and staff
    - request_template: Empty RequestTemplate to hang step templates on
"""

from types import SimpleNamespace

import pytest

from approval_routing import create_app
from approval_routing.models import db as _db
from approval_routing.models.organization import Department, User
from approval_routing.models.workflow import RequestTemplate


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


# ── Convenience fixtures ─────────────────────────────────────────────────


_ORG_USERS = (
    # key, department, department_role
    ("coo", "ops", "director"),
    ("ops_director", "ops", "president"),
    ("fin_head", "finance", "manager"),
    ("fin_sub", "finance", "team_lead"),
    ("fin_director", "finance", "director"),
    ("alice", "finance", "employee"),
    ("bob", "finance", "employee"),
)


@pytest.fixture()
def org():
    """Operations ▶ Finance hierarchy.

    Operations: head=coo (director), director=ops_director (president)
    Finance:    head=fin_head (manager), head substitute=fin_sub (team_lead),
                director=fin_director; staff alice and bob (employees)

    Users are created in the order of _ORG_USERS, so ids ascend in that order.
    """
    ops = Department(name="Operations")
    finance = Department(name="Finance")
    _db.session.add_all([ops, finance])
    _db.session.flush()
    finance.parent_department_id = ops.id

    departments = {"ops": ops, "finance": finance}
    users = {}
    for key, dept_key, role in _ORG_USERS:
        user = User(
            email=f"{key}@example.com",
            full_name=key.replace("_", " ").title(),
            department_id=departments[dept_key].id,
            department_role=role,
        )
        _db.session.add(user)
        _db.session.flush()
        users[key] = user

    ops.head_of_department_id = users["coo"].id
    ops.director_id = users["ops_director"].id
    finance.head_of_department_id = users["fin_head"].id
    finance.head_of_department_substitute_id = users["fin_sub"].id
    finance.director_id = users["fin_director"].id
    _db.session.flush()

    return SimpleNamespace(ops=ops, finance=finance, **users)


@pytest.fixture()
def request_template():
    """A request template with no steps yet."""
    rt = RequestTemplate(name="Leave Request", category="leave")
    _db.session.add(rt)
    _db.session.flush()
    return rt
