"""
Route decorators — authentication and simple permission checks.

``require_actor`` loads the requesting user's roles and managed programs
fresh from the database into ``g.actor``. ``require_permission`` adds a
decision-point check for actions that are not bound to a specific record
(creating a program, reading the audit trail, ...). Record-level checks
happen inside the view once the target row is loaded.

Usage:
    @program_bp.route("/programs", methods=["POST"])
    @require_permission("program.create")
    def create_program():
        actor = g.actor
        ...
"""

import functools
import logging

from flask import g, jsonify

from app.core.exceptions import NotFoundError
from app.services.permission_service import authorize_actor, load_actor

logger = logging.getLogger(__name__)


def require_actor(f):
    """Decorator: 401 unless a valid JWT identifies an existing user."""

    @functools.wraps(f)
    def decorated(*args, **kwargs):
        user_id = getattr(g, "jwt_user_id", None)
        if user_id is None:
            return jsonify({"error": "auth_required"}), 401
        try:
            g.actor = load_actor(user_id)
        except NotFoundError:
            logger.warning("Token for unknown user %s on %s", user_id, f.__name__)
            return jsonify({"error": "auth_required"}), 401
        return f(*args, **kwargs)

    return decorated


def require_permission(action: str):
    """
    Decorator: authenticate, then require ``action`` from the decision point.

    Args:
        action: Action key, e.g. "program.create"
    """

    def decorator(f):
        @functools.wraps(f)
        @require_actor
        def decorated(*args, **kwargs):
            authorize_actor(g.actor, action)
            return f(*args, **kwargs)

        return decorated

    return decorator
