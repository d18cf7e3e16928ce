"""
Admin Blueprint — user administration, roles and program memberships.

API Endpoints (JSON):
  GET    /api/v1/admin/users                          — List users (status, q, page, per_page)
  POST   /api/v1/admin/users                          — Create user
  GET    /api/v1/admin/users/<id>                     — User detail
  PATCH  /api/v1/admin/users/<id>                     — Update profile
  PUT    /api/v1/admin/users/<id>/roles               — Replace roles
  POST   /api/v1/admin/users/<id>/status              — active / suspended / archived
  GET    /api/v1/admin/users/<id>/programs            — List memberships
  POST   /api/v1/admin/users/<id>/programs            — Add / update membership
  DELETE /api/v1/admin/users/<id>/programs/<pid>      — Remove membership
  GET    /api/v1/admin/roles                          — Roles + permission matrix
  PUT    /api/v1/admin/roles/<name>/permissions/<key> — Grant (admin only)
  DELETE /api/v1/admin/roles/<name>/permissions/<key> — Revoke (admin only)

Managers hold ``user.manage`` but may only hand out viewer/trainee, only
touch users holding nothing above that, and only manage memberships of
programs they manage.
"""

import logging

from flask import Blueprint, g, jsonify, request

from app.blueprints import json_body
from app.core.exceptions import ForbiddenError, ValidationError
from app.middleware.permission_required import require_actor, require_permission
from app.models import db
from app.models.auth import Role
from app.services import user_service
from app.services.permission_service import authorize_actor, grant_permission, revoke_permission
from app.services.program_service import get_program

logger = logging.getLogger(__name__)

admin_bp = Blueprint("admin", __name__, url_prefix="/api/v1/admin")


def _role_list(data):
    roles = data.get("roles", [])
    if isinstance(roles, str):
        roles = [roles]
    if not isinstance(roles, list):
        raise ValidationError("invalid_role", details={"roles": roles})
    return roles


# ═══════════════════════════════════════════════════════════════
# Users
# ═══════════════════════════════════════════════════════════════
@admin_bp.route("/users", methods=["GET"])
@require_permission("user.read")
def list_users():
    page = max(1, request.args.get("page", 1, type=int))
    per_page = min(200, max(1, request.args.get("per_page", 50, type=int)))
    result = user_service.list_users(
        status=request.args.get("status"),
        search=request.args.get("q"),
        page=page,
        per_page=per_page,
    )
    return jsonify(result), 200


@admin_bp.route("/users", methods=["POST"])
@require_permission("user.manage")
def create_user():
    """Body: { username, password?, email?, full_name?, roles?: [...], status? }"""
    data = json_body()
    roles = _role_list(data)
    user_service.ensure_manageable(g.actor, None, roles)
    user = user_service.create_user(
        username=data.get("username"),
        email=data.get("email"),
        password=data.get("password"),
        full_name=data.get("full_name"),
        role_names=roles,
        status=data.get("status", "active"),
        created_by=g.actor.user_id,
    )
    return jsonify(user.to_dict(include_roles=True)), 201


@admin_bp.route("/users/<int:user_id>", methods=["GET"])
@require_permission("user.read")
def get_user(user_id):
    user = user_service.get_user_or_404(user_id)
    data = user.to_dict(include_roles=True)
    data["programs"] = user_service.get_user_programs(user.id)
    return jsonify(data), 200


@admin_bp.route("/users/<int:user_id>", methods=["PATCH"])
@require_permission("user.manage")
def update_user(user_id):
    user = user_service.get_user_or_404(user_id)
    user_service.ensure_manageable(g.actor, user)
    data = json_body()
    allowed = {k: data[k] for k in ("username", "email", "full_name", "password") if k in data}
    user = user_service.update_user(user.id, actor_id=g.actor.user_id, **allowed)
    return jsonify(user.to_dict(include_roles=True)), 200


@admin_bp.route("/users/<int:user_id>/roles", methods=["PUT"])
@require_permission("user.manage")
def set_roles(user_id):
    """Body: { "roles": ["trainee"] } — replaces the user's roles."""
    user = user_service.set_user_roles(g.actor, user_id, _role_list(json_body()))
    return jsonify(user.to_dict(include_roles=True)), 200


@admin_bp.route("/users/<int:user_id>/status", methods=["POST"])
@require_permission("user.manage")
def set_status(user_id):
    """Body: { "status": "suspended" }"""
    user = user_service.get_user_or_404(user_id)
    user_service.ensure_manageable(g.actor, user)
    if user.id == g.actor.user_id:
        raise ForbiddenError("cannot_change_own_status")
    result = user_service.set_user_status(user.id, json_body().get("status"),
                                          actor_id=g.actor.user_id)
    return jsonify(result), 200


# ═══════════════════════════════════════════════════════════════
# Program memberships
# ═══════════════════════════════════════════════════════════════
@admin_bp.route("/users/<int:user_id>/programs", methods=["GET"])
@require_permission("user.read")
def list_user_programs(user_id):
    user = user_service.get_user_or_404(user_id)
    return jsonify(user_service.get_user_programs(user.id)), 200


@admin_bp.route("/users/<int:user_id>/programs", methods=["POST"])
@require_actor
def assign_program(user_id):
    """Body: { "program_id": "...", "role": "member" | "manager" }"""
    data = json_body()
    user = user_service.get_user_or_404(user_id)
    program = get_program(data.get("program_id"))
    role = data.get("role", "member")
    authorize_actor(g.actor, "membership.manage", resource_program_id=program.id)
    if role != "member" and not g.actor.is_admin:
        raise ForbiddenError("role_not_assignable", [role])

    result = user_service.assign_to_program(user.id, program.id, role, assigned_by=g.actor.user_id)
    return jsonify(result), 201 if result["created"] else 200


@admin_bp.route("/users/<int:user_id>/programs/<program_id>", methods=["DELETE"])
@require_actor
def remove_program(user_id, program_id):
    user = user_service.get_user_or_404(user_id)
    program = get_program(program_id)
    authorize_actor(g.actor, "membership.manage", resource_program_id=program.id)
    result = user_service.remove_from_program(user.id, program.id, removed_by=g.actor.user_id)
    return jsonify(result), 200


# ═══════════════════════════════════════════════════════════════
# Roles
# ═══════════════════════════════════════════════════════════════
@admin_bp.route("/roles", methods=["GET"])
@require_permission("user.read")
def list_roles():
    roles = Role.query.order_by(Role.name).all()
    return jsonify([r.to_dict(include_permissions=True) for r in roles]), 200


@admin_bp.route("/roles/<role_name>/permissions/<codename>", methods=["PUT", "DELETE"])
@require_actor
def change_role_permission(role_name, codename):
    """Edit the role catalog. Takes effect on the next request."""
    if not g.actor.is_admin:
        raise ForbiddenError("admin_only")
    if request.method == "PUT":
        changed = grant_permission(role_name, codename)
    else:
        changed = revoke_permission(role_name, codename)
    db.session.commit()
    logger.info("Role %s permission %s %s by %s", role_name, codename,
                "granted" if request.method == "PUT" else "revoked", g.actor.user_id)
    return jsonify({"role": role_name, "permission": codename, "changed": changed}), 200
