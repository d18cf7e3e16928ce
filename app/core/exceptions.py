"""
Service-layer exception hierarchy.

Services raise these; ``create_app`` registers one JSON handler per type so
every blueprint gets the same status codes:

    NotFoundError    -> 404
    ValidationError  -> 400
    ForbiddenError   -> 403
    ConflictError    -> 409

Usage:
    from app.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Program", resource_id="prog1")
    raise ValidationError("invalid_status", details={"status": "archived"})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable model name (e.g. "Program", "Template").
        resource_id: The key that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is malformed (bad enum value, malformed id, wrong type).

    Args:
        message: Short machine-friendly code or human-readable explanation.
        details: Optional field-level breakdown. Keys are field names.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ForbiddenError(Exception):
    """Raised when the authorization decision denies a request.

    Args:
        reason: Denial reason reported by the decision point.
        fields: Fields that were rejected by the field gate, if any.
    """

    def __init__(self, reason: str, fields: list[str] | None = None) -> None:
        self.reason = reason
        self.fields = fields or []
        super().__init__(reason)


class ConflictError(Exception):
    """Raised on a duplicate unique value or an invalid lifecycle transition.

    Args:
        resource: Model name.
        field: The unique field (or ``status``) in conflict.
        value: The conflicting value.
        reason: Optional code overriding the default ``duplicate`` reason.
    """

    def __init__(
        self,
        resource: str,
        field: str,
        value: str | None = None,
        reason: str = "duplicate",
    ) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        self.reason = reason
        if reason == "duplicate":
            msg = f"{resource} with {field}={value!r} already exists"
        else:
            msg = f"{resource} {field}={value!r}: {reason}"
        super().__init__(msg)
