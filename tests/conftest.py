"""
Shared pytest fixtures for the Routine Selection Service test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - stable: Pre-created Stable with owner + three active members
    - auth_headers: builds identity headers for API calls
"""

import pytest

from routine_selection import create_app
from routine_selection.models import db as _db
from routine_selection.models.stable import Stable, StableMember

ORG_ID = "org-1"
OTHER_ORG_ID = "org-2"
OWNER_ID = "u-owner"

# user_id, first, last, role
MEMBERS = (
    ("u-alice", "Alice", "Andersson", "member"),
    ("u-bob", "Bob", "Berg", "member"),
    ("u-carol", "Carol", "Carlsson", "schedule_planner"),
)


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


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def stable():
    """Stable owned by u-owner with Alice, Bob (members) and Carol (planner)."""
    s = Stable(
        id="stable-1",
        organization_id=ORG_ID,
        name="Sunny Meadow",
        owner_id=OWNER_ID,
        owner_name="Olivia Owner",
        owner_email="olivia@example.com",
    )
    _db.session.add(s)
    for user_id, first, last, role in MEMBERS:
        _db.session.add(StableMember(
            stable_id=s.id,
            user_id=user_id,
            first_name=first,
            last_name=last,
            email=f"{first.lower()}@example.com",
            role=role,
            status="active",
        ))
    _db.session.commit()
    return s


@pytest.fixture()
def auth_headers():
    """Return a builder for identity headers: auth_headers(user_id, org_id)."""
    def _build(user_id=OWNER_ID, organization_id=ORG_ID):
        return {"X-User-Id": user_id, "X-Organization-Id": organization_id}
    return _build
