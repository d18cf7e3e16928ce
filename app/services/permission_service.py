"""
Permission Service — DB-backed role catalog and actor loading.

The role → permission mapping is stored in ``role_permissions`` and read
fresh on every request, so a grant or revoke takes effect on the next
call. ``seed_default_roles`` fills the tables from
``app.services.permission_catalog.DEFAULT_ROLE_PERMISSIONS``.

Evaluation is deny-by-default:
  - unknown role names contribute nothing
  - ``admin`` holds every permission regardless of the stored catalog
"""

import logging

from app.core.exceptions import NotFoundError, ValidationError
from app.models import db
from app.models.auth import (
    Permission,
    ProgramMembership,
    Role,
    RolePermission,
    User,
    UserRole,
)
from app.services.authorization import AuthorizationRequest, enforce
from app.services.permission_catalog import (
    ALL_PERMISSIONS,
    DEFAULT_ROLE_PERMISSIONS,
    ROLE_DESCRIPTIONS,
    ROLE_KEYS,
)
from app.services.scope_resolver import Actor

logger = logging.getLogger(__name__)


def load_role_catalog() -> dict[str, frozenset]:
    """Current role → permission mapping from the database."""
    rows = (
        db.session.query(Role.name, Permission.codename)
        .join(RolePermission, RolePermission.role_id == Role.id)
        .join(Permission, Permission.id == RolePermission.permission_id)
        .all()
    )
    catalog: dict[str, set] = {}
    for role_name, codename in rows:
        catalog.setdefault(role_name, set()).add(codename)
    return {name: frozenset(perms) for name, perms in catalog.items()}


def get_user_role_names(user_id: int) -> list[str]:
    rows = (
        db.session.query(Role.name)
        .join(UserRole, UserRole.role_id == Role.id)
        .filter(UserRole.user_id == user_id)
        .all()
    )
    return sorted({r[0] for r in rows})


def get_managed_program_ids(user_id: int) -> frozenset:
    rows = (
        db.session.query(ProgramMembership.program_id)
        .filter_by(user_id=user_id, role="manager")
        .all()
    )
    return frozenset(r[0] for r in rows)


def load_actor(user_id: int) -> Actor:
    """Build the ``Actor`` for ``user_id`` from users, user_roles and program_memberships."""
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError(resource="User", resource_id=user_id)
    return Actor(
        user_id=user.id,
        roles=frozenset(get_user_role_names(user.id)),
        managed_program_ids=get_managed_program_ids(user.id),
        status=user.status,
    )


def authorize_actor(actor: Actor, action: str, **target):
    """Run the decision point for ``actor`` against the stored catalog.

    ``target`` takes the remaining ``AuthorizationRequest`` fields
    (``resource_owner_id``, ``resource_program_id``, ``requested_fields``...).
    Raises ``ForbiddenError`` / ``ConflictError`` on denial.
    """
    request = AuthorizationRequest(
        actor_id=actor.user_id,
        action=action,
        actor_roles=actor.roles,
        actor_program_ids=actor.managed_program_ids,
        actor_status=actor.status,
        **target,
    )
    return enforce(request, load_role_catalog())


# ── Catalog maintenance ──────────────────────────────────────────────────────


def _get_or_create_permission(codename: str) -> Permission:
    perm = Permission.query.filter_by(codename=codename).first()
    if perm is None:
        category, _, verb = codename.partition(".")
        perm = Permission(codename=codename, category=category,
                          display_name=f"{verb.capitalize()} {category}")
        db.session.add(perm)
        db.session.flush()
    return perm


def _get_role_or_404(role_name: str) -> Role:
    role = Role.query.filter_by(name=role_name).first()
    if role is None:
        raise NotFoundError(resource="Role", resource_id=role_name)
    return role


def seed_default_roles() -> dict:
    """Create the system roles, permissions and default grants. Idempotent."""
    created = {"roles": 0, "permissions": 0, "grants": 0}
    perms = {}
    for codename in sorted(ALL_PERMISSIONS):
        perm = Permission.query.filter_by(codename=codename).first()
        if perm is None:
            perm = _get_or_create_permission(codename)
            created["permissions"] += 1
        perms[codename] = perm

    for role_name in ROLE_KEYS:
        role = Role.query.filter_by(name=role_name).first()
        if role is None:
            role = Role(name=role_name, display_name=role_name.capitalize(),
                        description=ROLE_DESCRIPTIONS.get(role_name), is_system=True)
            db.session.add(role)
            db.session.flush()
            created["roles"] += 1
        granted = {rp.permission_id for rp in role.role_permissions.all()}
        for codename in sorted(DEFAULT_ROLE_PERMISSIONS[role_name]):
            if perms[codename].id not in granted:
                db.session.add(RolePermission(role_id=role.id, permission_id=perms[codename].id))
                created["grants"] += 1
    db.session.flush()
    logger.info("RBAC seed: %s", created)
    return created


def grant_permission(role_name: str, codename: str) -> bool:
    """Grant ``codename`` to ``role_name``. Returns False if it was already granted."""
    if codename not in ALL_PERMISSIONS:
        raise ValidationError("unknown_permission", details={"permission": codename})
    role = _get_role_or_404(role_name)
    perm = _get_or_create_permission(codename)
    exists = RolePermission.query.filter_by(role_id=role.id, permission_id=perm.id).first()
    if exists:
        return False
    db.session.add(RolePermission(role_id=role.id, permission_id=perm.id))
    db.session.flush()
    logger.info("Granted %s to role %s", codename, role_name)
    return True


def revoke_permission(role_name: str, codename: str) -> bool:
    """Revoke ``codename`` from ``role_name``. Returns False if it was not granted."""
    role = _get_role_or_404(role_name)
    perm = Permission.query.filter_by(codename=codename).first()
    if perm is None:
        return False
    deleted = RolePermission.query.filter_by(role_id=role.id, permission_id=perm.id).delete()
    db.session.flush()
    if deleted:
        logger.info("Revoked %s from role %s", codename, role_name)
    return deleted > 0
