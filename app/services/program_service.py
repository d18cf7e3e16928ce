"""Program service layer — program CRUD.

Transaction policy: public functions commit on success.
Lifecycle moves (publish / deprecate / archive / restore) live in
``app.services.lifecycle``.
"""
import logging
import re

from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.models import db
from app.models.audit import write_audit
from app.models.auth import ProgramMembership
from app.models.program import RESOURCE_STATUSES, Program
from app.services.field_gate import PROGRAM_FIELDS
from app.utils.helpers import to_nullable_int, to_nullable_str

logger = logging.getLogger(__name__)

_PROGRAM_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]{0,63}$")


def normalize_program_id(value) -> str:
    """Program ids are slugs: letters, digits, ``-`` and ``_``, at most 64 chars."""
    if not isinstance(value, str) or not _PROGRAM_ID_RE.match(value.strip()):
        raise ValidationError("invalid_program_id", details={"program_id": value})
    return value.strip()


def _total_weeks(value):
    weeks = to_nullable_int(value, "total_weeks")
    if weeks is not None and weeks < 1:
        raise ValidationError("invalid_total_weeks", details={"total_weeks": value})
    return weeks


def _program_changes(data: dict) -> dict:
    changes = {}
    if "title" in data:
        title = to_nullable_str(data["title"])
        if not title:
            raise ValidationError("title_required", details={"title": "must not be blank"})
        if len(title) > 200:
            raise ValidationError("title_too_long", details={"title": "max 200 characters"})
        changes["title"] = title
    if "description" in data:
        changes["description"] = data["description"]
    if "total_weeks" in data:
        changes["total_weeks"] = _total_weeks(data["total_weeks"])
    return changes


def get_program(program_id) -> Program:
    program = db.session.get(Program, program_id) if program_id else None
    if program is None:
        raise NotFoundError(resource="Program", resource_id=program_id)
    return program


def list_programs(*, include_deleted=False, status=None) -> list[dict]:
    q = Program.query if include_deleted else Program.query_active()
    if status:
        if status not in RESOURCE_STATUSES:
            raise ValidationError("invalid_status", details={"status": status})
        q = q.filter(Program.status == status)
    return [p.to_dict() for p in q.order_by(Program.title.is_(None), Program.title, Program.id).all()]


def create_program(data: dict, actor) -> Program:
    """Create a draft program. A manager creating it becomes its manager member."""
    if "title" not in data:
        raise ValidationError("title_required", details={"title": "required"})
    changes = _program_changes(data)

    program_id = data.get("program_id") or data.get("id")
    if program_id is not None:
        program_id = normalize_program_id(program_id)
        if db.session.get(Program, program_id) is not None:
            raise ConflictError("Program", "id", program_id)

    program = Program(created_by=actor.user_id, status="draft", **changes)
    if program_id is not None:
        program.id = program_id
    db.session.add(program)
    db.session.flush()

    if actor.is_manager and not actor.is_admin:
        db.session.add(ProgramMembership(user_id=actor.user_id, program_id=program.id,
                                         role="manager", assigned_by=actor.user_id))

    write_audit(entity_type="program", entity_id=program.id, action="program.create",
                actor_user_id=actor.user_id, program_id=program.id, diff=changes)
    db.session.commit()
    logger.info("Created program %s by user %s", program.id, actor.user_id)
    return program


def update_program(program: Program, data: dict, *, actor_id=None) -> Program:
    """Apply editable fields. Callers have already run the field gate."""
    changes = _program_changes({k: v for k, v in data.items() if k in PROGRAM_FIELDS})
    diff = {}
    for name, value in changes.items():
        if getattr(program, name) != value:
            diff[name] = {"old": getattr(program, name), "new": value}
            setattr(program, name, value)
    if diff:
        write_audit(entity_type="program", entity_id=program.id, action="program.update",
                    actor_user_id=actor_id, program_id=program.id, diff=diff)
    db.session.commit()
    return program
