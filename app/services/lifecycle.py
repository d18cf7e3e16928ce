"""
Program / Template lifecycle.

Two orthogonal axes:

  status     draft → published → deprecated   (forward only)
  archived   derived from ``deleted_at``       (archive / restore, idempotent)

Transitions:
  publish    draft → published. For programs, also restores every
             soft-deleted template linked to the program.
  deprecate  published → deprecated.
  archive    any status; a no-op when already archived.
  restore    any status; a no-op when not archived.

Repeating a transition on a resource already in its target state is a
successful no-op so clients can retry; any other move is a conflict.

Usage:
    from app.services.lifecycle import transition_resource

    result = transition_resource(program, "publish", actor_id=user.id)
    result["restored_templates"]   # template ids brought back by the cascade
"""

import logging

from app.core.exceptions import ConflictError, ValidationError
from app.models import db
from app.models.audit import write_audit
from app.models.program import Program, ProgramTemplateLink, Template

logger = logging.getLogger(__name__)

STATUS_TRANSITIONS = {
    "publish": {"from": ["draft"], "to": "published"},
    "deprecate": {"from": ["published"], "to": "deprecated"},
}
ARCHIVE_ACTIONS = ("archive", "restore")
LIFECYCLE_ACTIONS = tuple(STATUS_TRANSITIONS) + ARCHIVE_ACTIONS


def validate_transition(current_status: str | None, action: str) -> dict:
    """Check ``action`` against ``current_status`` without touching the database.

    Returns ``{"valid", "changed", "from", "to", "reason"}``.
    """
    if action in ARCHIVE_ACTIONS:
        return {"valid": True, "changed": None, "from": current_status,
                "to": current_status, "reason": None}

    rule = STATUS_TRANSITIONS.get(action)
    if not rule:
        return {"valid": False, "changed": False, "from": current_status, "to": None,
                "reason": f"Unknown action: {action}"}

    if current_status == rule["to"]:
        return {"valid": True, "changed": False, "from": current_status,
                "to": rule["to"], "reason": None}

    if current_status not in rule["from"]:
        return {"valid": False, "changed": False, "from": current_status, "to": rule["to"],
                "reason": f"Cannot '{action}' from status '{current_status}'"}

    return {"valid": True, "changed": True, "from": current_status,
            "to": rule["to"], "reason": None}


def _entity_type(resource) -> str:
    return "program" if isinstance(resource, Program) else "template"


def restore_program_templates(program_id: str) -> list[int]:
    """Un-delete every soft-deleted template linked to ``program_id``."""
    templates = (
        Template.query
        .join(ProgramTemplateLink, ProgramTemplateLink.template_id == Template.id)
        .filter(
            ProgramTemplateLink.program_id == program_id,
            Template.deleted_at.isnot(None),
        )
        .all()
    )
    restored = []
    for template in templates:
        if template.restore():
            restored.append(template.id)
    if restored:
        logger.info("Program %s publish restored templates %s", program_id, restored)
    return restored


def transition_resource(resource, action: str, *, actor_id: int | None = None) -> dict:
    """Apply a lifecycle ``action`` to a Program or Template.

    Commits on success. Raises ``ValidationError`` for an unknown action
    and ``ConflictError`` for a move the state machine forbids.
    """
    if action not in LIFECYCLE_ACTIONS:
        raise ValidationError("invalid_action", details={"action": action})

    entity_type = _entity_type(resource)
    result = {"id": resource.id, "action": action}

    if action in ARCHIVE_ACTIONS:
        was_archived = resource.is_deleted
        changed = resource.soft_delete() if action == "archive" else resource.restore()
        result.update({"changed": changed, "wasArchived": was_archived,
                       "archived": resource.is_deleted})
    else:
        check = validate_transition(resource.status, action)
        if not check["valid"]:
            raise ConflictError(entity_type.capitalize(), "status", resource.status,
                                reason="invalid_transition")
        previous = resource.status
        resource.status = check["to"]
        result.update({"changed": check["changed"], "previous_status": previous,
                       "status": resource.status})
        if action == "publish" and isinstance(resource, Program):
            # Runs on a repeated publish too, so a retried call finishes the cascade.
            result["restored_templates"] = restore_program_templates(resource.id)

    if result["changed"] or result.get("restored_templates"):
        write_audit(
            entity_type=entity_type,
            entity_id=resource.id,
            action=f"{entity_type}.{action}",
            actor_user_id=actor_id,
            program_id=resource.id if entity_type == "program" else None,
            diff={k: v for k, v in result.items() if k not in ("id", "action")},
        )
    db.session.commit()
    logger.info("%s %s %s changed=%s", entity_type, resource.id, action, result["changed"])
    return result
