"""
Shared pytest fixtures for the HR Onboarding Platform test suite.

Provides:
    - app: Flask application (session-scoped)
    - session: Per-test DB reset + default role catalog (autouse)
    - client: Flask test client (function-scoped)
    - make_user / make_program / make_template / make_task: row factories
    - auth_headers: Bearer header for a user
    - admin / manager / trainee / viewer: ready-made users
"""

import pytest

from app import create_app
from app.models import db as _db
from app.models.auth import ProgramMembership, Role, User, UserRole
from app.models.program import Program, ProgramTemplateLink, Task, Template
from app.services.jwt_service import generate_access_token
from app.services.permission_service import seed_default_roles


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(autouse=True)
def session(app):
    """Per-test: fresh tables and the default role catalog."""
    with app.app_context():
        _db.drop_all()
        _db.create_all()
        seed_default_roles()
        _db.session.commit()
        yield
        _db.session.rollback()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Factories ────────────────────────────────────────────────────────────


@pytest.fixture()
def make_user():
    def _make(username, roles=(), status="active", email=None):
        user = User(
            username=username,
            email=email or f"{username}@acme.io",
            full_name=username.replace("_", " ").title(),
            status=status,
        )
        _db.session.add(user)
        _db.session.flush()
        for role in Role.query.filter(Role.name.in_(list(roles))).all():
            _db.session.add(UserRole(user_id=user.id, role_id=role.id))
        _db.session.commit()
        return user

    return _make


@pytest.fixture()
def make_program():
    def _make(program_id, title=None, status="draft", managers=(), members=()):
        program = Program(id=program_id, title=title or program_id.title(), status=status)
        _db.session.add(program)
        _db.session.flush()
        for user in managers:
            _db.session.add(ProgramMembership(user_id=user.id, program_id=program_id, role="manager"))
        for user in members:
            _db.session.add(ProgramMembership(user_id=user.id, program_id=program_id, role="member"))
        _db.session.commit()
        return program

    return _make


@pytest.fixture()
def make_template():
    def _make(label, link_to=None, link_overrides=None, **fields):
        template = Template(label=label, status=fields.pop("status", "draft"), **fields)
        _db.session.add(template)
        _db.session.flush()
        if link_to is not None:
            _db.session.add(ProgramTemplateLink(
                program_id=link_to, template_id=template.id, **(link_overrides or {})
            ))
        _db.session.commit()
        return template

    return _make


@pytest.fixture()
def make_task():
    def _make(owner, label="Collect badge", program_id=None, **fields):
        task = Task(user_id=owner.id, label=label, program_id=program_id, **fields)
        _db.session.add(task)
        _db.session.commit()
        return task

    return _make


@pytest.fixture()
def auth_headers():
    def _headers(user):
        return {"Authorization": f"Bearer {generate_access_token(user.id)}"}

    return _headers


# ── Ready-made actors ────────────────────────────────────────────────────


@pytest.fixture()
def admin(make_user):
    return make_user("ada_admin", roles=["admin"])


@pytest.fixture()
def manager(make_user):
    return make_user("mona_manager", roles=["manager"])


@pytest.fixture()
def trainee(make_user):
    return make_user("tom_trainee", roles=["trainee"])


@pytest.fixture()
def viewer(make_user):
    return make_user("vic_viewer", roles=["viewer"])
