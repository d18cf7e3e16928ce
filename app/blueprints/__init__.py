"""
HR Onboarding Platform
Blueprint registry.
"""

from flask import request

from app.core.exceptions import ValidationError


def json_body() -> dict:
    """The request's JSON object, ``{}`` when there is no body.

    Raises ``ValidationError("invalid_payload")`` for a JSON body that is
    not an object.
    """
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("invalid_payload", details={"body": "expected a JSON object"})
    return data
