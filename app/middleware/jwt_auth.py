"""
JWT Auth Middleware — parses the Bearer token and sets ``g.jwt_user_id``.

Invalid or expired tokens leave ``g.jwt_user_id`` unset; endpoints guarded
by ``app.middleware.permission_required.require_actor`` then answer 401.
"""

import logging

import jwt as pyjwt
from flask import g, request

from app.services.jwt_service import decode_access_token

logger = logging.getLogger(__name__)

# Paths that skip JWT auth entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/auth/login",
    "/api/v1/auth/register",
    "/api/v1/health",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.jwt_user_id = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        if path.startswith(JWT_SKIP_PREFIXES):
            return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        try:
            payload = decode_access_token(auth_header[7:])
            g.jwt_user_id = int(payload["sub"])
        except pyjwt.ExpiredSignatureError:
            logger.info("Expired access token on %s", path)
        except (pyjwt.InvalidTokenError, KeyError, ValueError):
            logger.warning("Invalid access token on %s", path)
