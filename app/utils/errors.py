"""JSON error envelope for the onboarding API.

Every error response has the shape ``{"error", "code", "details"?}``.
``error`` is the short machine reason raised by the service layer
(``label_required``, ``resource_archived``...), ``code`` is one of the
``E`` constants below and ``details`` carries the denial reason or the
rejected fields.

    return api_error(E.FORBIDDEN, "forbidden",
                     details={"reason": "field_not_allowed", "fields": ["label"]})
"""

from __future__ import annotations

from flask import jsonify


class E:
    """Error codes; the HTTP status follows from ``_DEFAULT_STATUS``."""

    # 400: missing or malformed input
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # 401: no usable bearer token
    AUTH_REQUIRED = "ERR_AUTH_REQUIRED"

    # 403: permission, scope or field gate denial
    FORBIDDEN = "ERR_FORBIDDEN"

    # 404: program, template, task or user absent
    NOT_FOUND = "ERR_NOT_FOUND"

    # 409: unique value taken, or lifecycle does not allow the action
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"

    # 500
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.AUTH_REQUIRED: 401,
    E.FORBIDDEN: 403,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STATE: 409,
    E.DATABASE: 500,
    E.INTERNAL: 500,
}


def api_error(code: str, message: str, *, status: int | None = None, details: dict | None = None):
    """Build ``(response, status)`` for ``code``.

    ``status`` overrides the code's default; unknown codes answer 400.
    ``details`` is left out of the body when empty.
    """
    body: dict = {"error": message, "code": code}
    if details:
        body["details"] = details
    return jsonify(body), status or _DEFAULT_STATUS.get(code, 400)
