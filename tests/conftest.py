"""
Shared pytest fixtures for the curriculum lifecycle test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - tenant: Pre-created default Tenant
    - users: One active user per role in the default tenant
    - *_ctx: ActorContext for each of those users
    - framework / draft_version: A framework with its initial v1.0 draft
"""

import pytest

from curriculum import create_app
from curriculum.core.identity import ActorContext, Role
from curriculum.models import db as _db
from curriculum.models.auth import Campus, Tenant, User


def make_tenant(name="Test Default", slug="test-default") -> Tenant:
    t = Tenant(name=name, slug=slug)
    _db.session.add(t)
    _db.session.commit()
    return t


def make_user(tenant: Tenant, role: Role, email: str | None = None, *, is_active=True) -> User:
    u = User(
        tenant_id=tenant.id,
        email=email or f"{role.value}@example.test",
        full_name=role.value.replace("_", " ").title(),
        role=role.value,
        is_active=is_active,
    )
    _db.session.add(u)
    _db.session.commit()
    return u


def ctx_for(user: User) -> ActorContext:
    return ActorContext(actor_id=user.id, tenant_id=user.tenant_id, role=Role(user.role))


def headers_for(user: User) -> dict:
    """Gateway identity headers for ``user``."""
    return {
        "X-User-Id": str(user.id),
        "X-Tenant-Id": str(user.tenant_id),
        "X-User-Role": user.role,
    }


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
        yield _db.session
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Identity fixtures ────────────────────────────────────────────────────


@pytest.fixture()
def tenant():
    return make_tenant()


@pytest.fixture()
def users(tenant):
    """One active user per role, keyed by role value."""
    return {role.value: make_user(tenant, role) for role in Role}


@pytest.fixture()
def admin_ctx(users):
    return ctx_for(users["admin"])


@pytest.fixture()
def owner_ctx(users):
    return ctx_for(users["program_owner"])


@pytest.fixture()
def designer_ctx(users):
    return ctx_for(users["curriculum_designer"])


@pytest.fixture()
def qa_ctx(users):
    return ctx_for(users["qa"])


@pytest.fixture()
def teacher_ctx(users):
    return ctx_for(users["teacher"])


@pytest.fixture()
def campus(tenant):
    c = Campus(tenant_id=tenant.id, code="IST-1", name="Istanbul Central")
    _db.session.add(c)
    _db.session.commit()
    return c


# ── Curriculum fixtures ──────────────────────────────────────────────────


@pytest.fixture()
def framework(session, designer_ctx):
    """Framework created through the service, with its initial v1.0 draft."""
    from curriculum.services.framework_service import create_framework

    return create_framework(
        session, designer_ctx,
        {"code": "ENG-A1", "name": "English A1", "language": "en", "age_group": "adults"},
    )


@pytest.fixture()
def draft_version(session, framework):
    from curriculum.models.curriculum import Version

    return session.get(Version, framework.latest_version_id)


@pytest.fixture()
def outsider_ctx():
    """Admin of a second tenant; must never see the default tenant's rows."""
    other = make_tenant("Other Tenant", "other-tenant")
    return ctx_for(make_user(other, Role.ADMIN, "admin@other.test"))


@pytest.fixture()
def auth_headers(users):
    """``auth_headers("qa")`` -> gateway headers for that role's user."""
    return lambda role: headers_for(users[role])
