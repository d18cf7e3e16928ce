"""
Auth Models — users, roles, permissions, program memberships.

The role → permission mapping lives in ``role_permissions`` so it can be
edited at runtime; ``app.services.permission_service.seed_default_roles``
fills it from the static catalog in ``app.services.permission_catalog``.
"""

from datetime import datetime, timezone

from app.models import db

USER_STATUSES = ("active", "suspended", "archived")
MEMBERSHIP_ROLES = ("manager", "member")


# ═══════════════════════════════════════════════════════════════
# 1. USERS
# ═══════════════════════════════════════════════════════════════
class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(100), unique=True, nullable=False)
    email = db.Column(db.String(200), unique=True, nullable=True)
    password_hash = db.Column(db.String(256))
    full_name = db.Column(db.String(200))
    status = db.Column(db.String(20), nullable=False, default="active")  # active, suspended, archived
    last_login_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    user_roles = db.relationship(
        "UserRole", back_populates="user", lazy="dynamic",
        cascade="all, delete-orphan", foreign_keys="UserRole.user_id",
    )
    program_memberships = db.relationship(
        "ProgramMembership", back_populates="user", lazy="dynamic",
        cascade="all, delete-orphan",
    )

    def to_dict(self, include_roles=False):
        d = {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "full_name": self.full_name,
            "status": self.status,
            "last_login_at": self.last_login_at.isoformat() if self.last_login_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_roles:
            d["roles"] = self.role_names
        return d

    @property
    def role_names(self):
        """Sorted role names for this user."""
        return sorted(ur.role.name for ur in self.user_roles.all())

    @property
    def is_active(self):
        return self.status == "active"

    def __repr__(self):
        return f"<User {self.id}: {self.username}>"


# ═══════════════════════════════════════════════════════════════
# 2. ROLES
# ═══════════════════════════════════════════════════════════════
class Role(db.Model):
    __tablename__ = "roles"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(50), unique=True, nullable=False)  # admin, manager, ...
    display_name = db.Column(db.String(200))
    description = db.Column(db.Text)
    is_system = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    role_permissions = db.relationship(
        "RolePermission", back_populates="role", lazy="dynamic", cascade="all, delete-orphan"
    )
    user_roles = db.relationship("UserRole", back_populates="role", lazy="dynamic")

    def to_dict(self, include_permissions=False):
        d = {
            "id": self.id,
            "name": self.name,
            "display_name": self.display_name,
            "description": self.description,
            "is_system": self.is_system,
        }
        if include_permissions:
            d["permissions"] = sorted(
                rp.permission.codename for rp in self.role_permissions.all()
            )
        return d


# ═══════════════════════════════════════════════════════════════
# 3. PERMISSIONS
# ═══════════════════════════════════════════════════════════════
class Permission(db.Model):
    __tablename__ = "permissions"

    id = db.Column(db.Integer, primary_key=True)
    codename = db.Column(db.String(100), unique=True, nullable=False)  # e.g. "task.assign"
    category = db.Column(db.String(50), nullable=False)  # e.g. "task"
    display_name = db.Column(db.String(200))
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    role_permissions = db.relationship("RolePermission", back_populates="permission", lazy="dynamic")

    def to_dict(self):
        return {
            "id": self.id,
            "codename": self.codename,
            "category": self.category,
            "display_name": self.display_name,
        }


# ═══════════════════════════════════════════════════════════════
# 4. ROLE_PERMISSIONS (Junction table)
# ═══════════════════════════════════════════════════════════════
class RolePermission(db.Model):
    __tablename__ = "role_permissions"

    id = db.Column(db.Integer, primary_key=True)
    role_id = db.Column(
        db.Integer, db.ForeignKey("roles.id", ondelete="CASCADE"), nullable=False
    )
    permission_id = db.Column(
        db.Integer, db.ForeignKey("permissions.id", ondelete="CASCADE"), nullable=False
    )

    __table_args__ = (
        db.UniqueConstraint("role_id", "permission_id", name="uq_role_permission"),
    )

    role = db.relationship("Role", back_populates="role_permissions")
    permission = db.relationship("Permission", back_populates="role_permissions")


# ═══════════════════════════════════════════════════════════════
# 5. USER_ROLES (Junction table)
# ═══════════════════════════════════════════════════════════════
class UserRole(db.Model):
    __tablename__ = "user_roles"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    role_id = db.Column(
        db.Integer, db.ForeignKey("roles.id", ondelete="CASCADE"), nullable=False
    )
    assigned_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    assigned_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.UniqueConstraint("user_id", "role_id", name="uq_user_role"),
    )

    user = db.relationship("User", back_populates="user_roles", foreign_keys=[user_id])
    role = db.relationship("Role", back_populates="user_roles")


# ═══════════════════════════════════════════════════════════════
# 6. PROGRAM_MEMBERSHIPS (User ↔ Program assignment)
# ═══════════════════════════════════════════════════════════════
class ProgramMembership(db.Model):
    """A user's role inside one program. ``role == "manager"`` grants manager scope."""

    __tablename__ = "program_memberships"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    program_id = db.Column(
        db.String(64), db.ForeignKey("programs.id", ondelete="CASCADE"), nullable=False
    )
    role = db.Column(db.String(20), nullable=False, default="member")  # manager, member
    assigned_by = db.Column(db.Integer, nullable=True)
    joined_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.UniqueConstraint("user_id", "program_id", name="uq_program_membership"),
        db.Index("ix_program_memberships_program", "program_id"),
    )

    user = db.relationship("User", back_populates="program_memberships")

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "program_id": self.program_id,
            "role": self.role,
            "joined_at": self.joined_at.isoformat() if self.joined_at else None,
        }
