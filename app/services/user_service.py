"""
User Service — user CRUD, role assignment, program memberships, login.

Transaction policy: public functions commit on success.

Role assignment rules:
  - admins may assign any role
  - managers may only hand out ``viewer`` and ``trainee``, and only to
    users who hold nothing above that
"""

import logging
from datetime import datetime, timezone

from email_validator import EmailNotValidError, validate_email
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError

from app.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from app.models import db
from app.models.audit import write_audit
from app.models.auth import (
    MEMBERSHIP_ROLES,
    USER_STATUSES,
    ProgramMembership,
    Role,
    User,
    UserRole,
)
from app.models.program import Program
from app.services.permission_catalog import ROLE_KEYS
from app.utils.crypto import hash_password, verify_password

logger = logging.getLogger(__name__)

MANAGER_ASSIGNABLE_ROLES = frozenset({"viewer", "trainee"})


class AuthenticationError(Exception):
    """Raised when login credentials are rejected (401) or the account is not active (403)."""

    def __init__(self, message, status_code=401):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


def _normalize_email(email):
    if email is None or str(email).strip() == "":
        return None
    try:
        return validate_email(str(email).strip(), check_deliverability=False).normalized
    except EmailNotValidError as e:
        raise ValidationError("invalid_email", details={"email": str(e)}) from e


def _normalize_username(username):
    value = (username or "").strip()
    if not value:
        raise ValidationError("username_required", details={"username": "required"})
    if len(value) > 100:
        raise ValidationError("username_too_long", details={"username": "max 100 characters"})
    return value


def _ensure_unique(username=None, email=None, exclude_id=None):
    if username is not None:
        q = User.query.filter(func.lower(User.username) == username.lower())
        if exclude_id is not None:
            q = q.filter(User.id != exclude_id)
        if q.first():
            raise ConflictError("User", "username", username)
    if email is not None:
        q = User.query.filter(func.lower(User.email) == email.lower())
        if exclude_id is not None:
            q = q.filter(User.id != exclude_id)
        if q.first():
            raise ConflictError("User", "email", email)


def _commit_unique(user):
    """Commit, turning a lost uniqueness race into a 409."""
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Duplicate user on commit: %s", exc.orig)
        raise ConflictError("User", "username_or_email", user.username) from exc


def _validate_roles(role_names):
    roles = sorted(set(role_names or ()))
    unknown = [r for r in roles if r not in ROLE_KEYS]
    if unknown:
        raise ValidationError("invalid_role", details={"roles": unknown})
    return roles


def get_user_or_404(user_id) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError(resource="User", resource_id=user_id)
    return user


def ensure_manageable(actor, user: User, role_names=None) -> None:
    """Non-admins may only touch users holding nothing above viewer/trainee,
    and may only hand out those roles."""
    if actor.is_admin:
        return
    requested = set(role_names or ())
    if not requested <= MANAGER_ASSIGNABLE_ROLES:
        raise ForbiddenError("role_not_assignable", sorted(requested - MANAGER_ASSIGNABLE_ROLES))
    if user is not None and not set(user.role_names) <= MANAGER_ASSIGNABLE_ROLES:
        raise ForbiddenError("target_user_not_manageable")


# ═══════════════════════════════════════════════════════════════
# User CRUD
# ═══════════════════════════════════════════════════════════════
def create_user(
    username: str,
    email: str = None,
    password: str = None,
    full_name: str = None,
    role_names: list[str] = None,
    status: str = "active",
    created_by: int = None,
) -> User:
    """Create a user. Duplicate username or email raises ``ConflictError``."""
    username = _normalize_username(username)
    email = _normalize_email(email)
    if status not in USER_STATUSES:
        raise ValidationError("invalid_status", details={"status": status})
    roles = _validate_roles(role_names)
    _ensure_unique(username=username, email=email)

    user = User(
        username=username,
        email=email,
        password_hash=hash_password(password) if password else None,
        full_name=full_name,
        status=status,
    )
    db.session.add(user)
    db.session.flush()

    for role in Role.query.filter(Role.name.in_(roles)).all():
        db.session.add(UserRole(user_id=user.id, role_id=role.id, assigned_by=created_by))

    write_audit(entity_type="user", entity_id=user.id, action="user.create",
                actor_user_id=created_by, diff={"username": username, "roles": roles})
    _commit_unique(user)
    logger.info("Created user %s (%s) roles=%s", user.id, username, roles)
    return user


def update_user(user_id: int, *, actor_id: int = None, **kwargs) -> User:
    """Update profile fields. ``username``/``email`` stay unique (409)."""
    user = get_user_or_404(user_id)

    if "username" in kwargs:
        username = _normalize_username(kwargs["username"])
        _ensure_unique(username=username, exclude_id=user.id)
        user.username = username
    if "email" in kwargs:
        email = _normalize_email(kwargs["email"])
        _ensure_unique(email=email, exclude_id=user.id)
        user.email = email
    if "full_name" in kwargs:
        user.full_name = kwargs["full_name"]
    if kwargs.get("password"):
        user.password_hash = hash_password(kwargs["password"])

    write_audit(entity_type="user", entity_id=user.id, action="user.update",
                actor_user_id=actor_id,
                diff={"fields": sorted(k for k in kwargs if k != "password")})
    _commit_unique(user)
    return user


def set_user_status(user_id: int, status: str, *, actor_id: int = None) -> dict:
    """Move a user between active / suspended / archived. Idempotent."""
    if status not in USER_STATUSES:
        raise ValidationError("invalid_status", details={"status": status})
    user = get_user_or_404(user_id)
    previous = user.status
    if previous != status:
        user.status = status
        write_audit(entity_type="user", entity_id=user.id, action="user.status",
                    actor_user_id=actor_id, diff={"status": {"old": previous, "new": status}})
        db.session.commit()
        logger.info("User %s status %s → %s", user.id, previous, status)
    return {"id": user.id, "status": user.status, "previous_status": previous,
            "changed": previous != status}


def list_users(status: str = None, search: str = None, page: int = 1, per_page: int = 50) -> dict:
    """List users with pagination."""
    q = User.query
    if status:
        q = q.filter_by(status=status)
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(User.username.ilike(like), User.email.ilike(like),
                         User.full_name.ilike(like)))
    q = q.order_by(User.username)

    total = q.count()
    users = q.offset((page - 1) * per_page).limit(per_page).all()
    return {
        "items": [u.to_dict(include_roles=True) for u in users],
        "total": total,
        "page": page,
        "per_page": per_page,
        "pages": (total + per_page - 1) // per_page,
    }


# ═══════════════════════════════════════════════════════════════
# Role assignment
# ═══════════════════════════════════════════════════════════════
def set_user_roles(actor, user_id: int, role_names: list[str]) -> User:
    """Replace the roles of ``user_id``.

    ``actor`` is the requesting ``Actor``; a manager may only grant
    viewer/trainee to users that hold nothing else.
    """
    roles = _validate_roles(role_names)
    user = get_user_or_404(user_id)
    current = set(user.role_names)

    ensure_manageable(actor, user, roles)

    UserRole.query.filter_by(user_id=user.id).delete()
    for role in Role.query.filter(Role.name.in_(roles)).all():
        db.session.add(UserRole(user_id=user.id, role_id=role.id, assigned_by=actor.user_id))

    write_audit(entity_type="user", entity_id=user.id, action="user.roles",
                actor_user_id=actor.user_id,
                diff={"roles": {"old": sorted(current), "new": roles}})
    db.session.commit()
    logger.info("User %s roles %s → %s by %s", user.id, sorted(current), roles, actor.user_id)
    return user


# ═══════════════════════════════════════════════════════════════
# Program Membership
# ═══════════════════════════════════════════════════════════════
def assign_to_program(user_id: int, program_id: str, role: str = "member",
                      assigned_by: int = None) -> dict:
    """Add or update a membership. Returns ``{"membership", "created"}``."""
    if role not in MEMBERSHIP_ROLES:
        raise ValidationError("invalid_membership_role", details={"role": role})
    get_user_or_404(user_id)
    if db.session.get(Program, program_id) is None:
        raise NotFoundError(resource="Program", resource_id=program_id)

    pm = ProgramMembership.query.filter_by(user_id=user_id, program_id=program_id).first()
    created = pm is None
    if created:
        pm = ProgramMembership(user_id=user_id, program_id=program_id, role=role,
                               assigned_by=assigned_by)
        db.session.add(pm)
    else:
        pm.role = role
    write_audit(entity_type="membership", entity_id=f"{user_id}:{program_id}",
                action="membership.assign", actor_user_id=assigned_by,
                program_id=program_id, diff={"role": role, "created": created})
    db.session.commit()
    return {"membership": pm.to_dict(), "created": created}


def remove_from_program(user_id: int, program_id: str, removed_by: int = None) -> dict:
    """Remove a membership. Removing a missing membership is a success."""
    deleted = ProgramMembership.query.filter_by(user_id=user_id, program_id=program_id).delete()
    if deleted:
        write_audit(entity_type="membership", entity_id=f"{user_id}:{program_id}",
                    action="membership.remove", actor_user_id=removed_by, program_id=program_id)
    db.session.commit()
    return {"removed": True, "wasMember": deleted > 0}


def get_user_programs(user_id: int) -> list[dict]:
    return [
        pm.to_dict()
        for pm in ProgramMembership.query.filter_by(user_id=user_id)
        .order_by(ProgramMembership.program_id)
        .all()
    ]


# ═══════════════════════════════════════════════════════════════
# Login helpers
# ═══════════════════════════════════════════════════════════════
def authenticate_user(login: str, password: str) -> User:
    """Authenticate by username or email + password. Returns User on success."""
    login = (login or "").strip()
    user = User.query.filter(
        or_(func.lower(User.username) == login.lower(), func.lower(User.email) == login.lower())
    ).first()
    if not user or not verify_password(password or "", user.password_hash):
        raise AuthenticationError("Invalid username or password", 401)

    if user.status != "active":
        raise AuthenticationError(f"Account is {user.status}", 403)

    user.last_login_at = datetime.now(timezone.utc)
    db.session.commit()
    return user
