"""
Static role → permission catalog and pure resolver functions.

The catalog is a closed set: a permission exists only if it is listed in
``ALL_PERMISSIONS``, and a role holds only what ``DEFAULT_ROLE_PERMISSIONS``
(or a database-loaded catalog with the same shape) grants it. Unknown
roles contribute nothing.

Nothing in this module touches the database, so it is usable from unit
tests and from ``app.services.authorization`` alike.

Usage:
    from app.services.permission_catalog import has_permission

    has_permission(["manager"], "task.assign")        # True
    has_permission(["trainee"], "task.update")        # False
"""

PROGRAM_PERMISSIONS = ("program.create", "program.read", "program.update", "program.delete")
TEMPLATE_PERMISSIONS = ("template.create", "template.read", "template.update", "template.delete")
TASK_PERMISSIONS = ("task.create", "task.read", "task.update", "task.assign", "task.delete")
USER_PERMISSIONS = ("user.read", "user.manage")
AUDIT_PERMISSIONS = ("audit.read",)

ALL_PERMISSIONS = frozenset(
    PROGRAM_PERMISSIONS
    + TEMPLATE_PERMISSIONS
    + TASK_PERMISSIONS
    + USER_PERMISSIONS
    + AUDIT_PERMISSIONS
)

ROLE_KEYS = ("admin", "manager", "viewer", "trainee", "auditor")

_READ_ONLY = frozenset({"program.read", "template.read", "task.read"})

DEFAULT_ROLE_PERMISSIONS: dict[str, frozenset[str]] = {
    "admin": ALL_PERMISSIONS,
    "manager": frozenset(
        PROGRAM_PERMISSIONS
        + TEMPLATE_PERMISSIONS
        + TASK_PERMISSIONS
        + USER_PERMISSIONS
    ),
    "viewer": _READ_ONLY,
    "trainee": _READ_ONLY,
    "auditor": _READ_ONLY | {"user.read", "audit.read"},
}

ROLE_DESCRIPTIONS = {
    "admin": "Full access; bypasses scope checks",
    "manager": "Manages the programs they are a manager of",
    "viewer": "Read-only access",
    "trainee": "Works through their own onboarding tasks",
    "auditor": "Read-only access plus the audit trail",
}

# An action is allowed when the actor holds ANY of the listed permissions.
# Actions not listed here map to themselves.
ACTION_PERMISSIONS: dict[str, tuple[str, ...]] = {
    "task.update": ("task.update", "task.assign"),
    "task.restore": ("task.delete",),
    "program.publish": ("program.update",),
    "program.deprecate": ("program.update",),
    "program.archive": ("program.delete",),
    "program.restore": ("program.delete",),
    "template.publish": ("template.update",),
    "template.deprecate": ("template.update",),
    "template.archive": ("template.delete",),
    "template.restore": ("template.delete",),
    "link.read": ("template.read",),
    "link.attach": ("template.update",),
    "link.detach": ("template.update",),
    "link.update": ("template.update",),
    "link.reorder": ("template.update",),
    "link.archive": ("template.delete",),
    "link.restore": ("template.delete",),
    "membership.manage": ("user.manage",),
    # Instantiating into the actor's own task list only needs task.read;
    # scope decides whether another user's list is in reach.
    "task.instantiate": ("task.create", "task.read"),
}


def permissions_for(roles, catalog=None) -> frozenset:
    """Union of the permissions granted by ``roles``.

    ``admin`` always resolves to the full set, even against an edited catalog.
    """
    catalog = DEFAULT_ROLE_PERMISSIONS if catalog is None else catalog
    granted = set()
    for role in roles or ():
        if role == "admin":
            return ALL_PERMISSIONS
        granted.update(catalog.get(role, ()))
    return frozenset(granted & ALL_PERMISSIONS)


def has_permission(roles, key: str, catalog=None) -> bool:
    return key in permissions_for(roles, catalog)


def permissions_for_action(action: str) -> tuple[str, ...]:
    """Permission keys any one of which satisfies ``action``."""
    return ACTION_PERMISSIONS.get(action, (action,))


def granted_for_action(roles, action: str, catalog=None) -> frozenset:
    """The subset of ``action``'s permission keys that ``roles`` actually hold."""
    held = permissions_for(roles, catalog)
    return frozenset(p for p in permissions_for_action(action) if p in held)
