"""
Auth Blueprint — JWT authentication endpoints.

  POST /api/v1/auth/register    — Create account (no roles) → access token
  POST /api/v1/auth/login       — Username or email + password → access token
  GET  /api/v1/auth/me          — Current user profile, roles, permissions
"""

import logging

from flask import Blueprint, current_app, g, jsonify, request

from app.middleware.permission_required import require_actor
from app.services.jwt_service import token_response
from app.services.permission_catalog import permissions_for
from app.services.permission_service import load_role_catalog
from app.services.user_service import (
    AuthenticationError,
    authenticate_user,
    create_user,
    get_user_or_404,
    get_user_programs,
)

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth_bp", __name__, url_prefix="/api/v1/auth")


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/register
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/register", methods=["POST"])
def register():
    """
    Self-registration. New accounts hold no role until an admin or
    manager assigns one.

    Body: { "username": "...", "password": "...", "email": "...", "full_name": "..." }
    """
    data = request.get_json(silent=True) or {}
    password = data.get("password") or ""
    if len(password) < 8:
        return jsonify({"error": "Password must be at least 8 characters"}), 400

    user = create_user(
        username=data.get("username"),
        email=data.get("email"),
        password=password,
        full_name=data.get("full_name"),
    )
    body = token_response(user.id)
    body["user"] = user.to_dict(include_roles=True)
    return jsonify(body), 201


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/login
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/login", methods=["POST"])
def login():
    """
    Authenticate with username (or email) + password, return an access token.

    Body: { "username": "...", "password": "..." }
    """
    data = request.get_json(silent=True) or {}
    login_name = (data.get("username") or data.get("email") or "").strip()
    password = data.get("password") or ""
    if not login_name or not password:
        return jsonify({"error": "Username and password are required"}), 400

    try:
        user = authenticate_user(login_name, password)
    except AuthenticationError as e:
        logger.info("Login failed for %s: %s", login_name, e.message)
        return jsonify({"error": e.message}), e.status_code

    body = token_response(user.id)
    body["user"] = user.to_dict(include_roles=True)
    return jsonify(body), 200


# ═══════════════════════════════════════════════════════════════
# GET /api/v1/auth/me
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/me", methods=["GET"])
@require_actor
def me():
    actor = g.actor
    user = get_user_or_404(actor.user_id)
    data = user.to_dict(include_roles=True)
    data["permissions"] = sorted(permissions_for(actor.roles, load_role_catalog()))
    data["managed_program_ids"] = sorted(actor.managed_program_ids)
    data["programs"] = get_user_programs(user.id)
    data["client_settings"] = {
        "metadata_save_delay_ms": current_app.config["METADATA_SAVE_DELAY_MS"],
        "reorder_save_delay_ms": current_app.config["REORDER_SAVE_DELAY_MS"],
    }
    return jsonify(data), 200
