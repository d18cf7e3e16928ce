"""
Task service — onboarding task rows.

Tasks are never removed: delete flips ``deleted`` and restore flips it
back. Authorization (ownership, program scope, field gate) runs in the
blueprint before any of these functions is called.

Transaction policy: public functions commit on success.
"""

import logging
import re

from app.core.exceptions import NotFoundError, ValidationError
from app.models import db
from app.models.audit import write_audit
from app.models.auth import User
from app.models.program import Program, Task
from app.services.field_gate import FIELD_ALIASES, TASK_FIELDS
from app.services.scope_resolver import apply_task_scope
from app.utils.helpers import parse_date_input, to_nullable_int, to_nullable_str

logger = logging.getLogger(__name__)

_TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d(:[0-5]\d)?$")


def get_task(task_id) -> Task:
    task = db.session.get(Task, task_id)
    if task is None:
        raise NotFoundError(resource="Task", resource_id=task_id)
    return task


def list_tasks(scope, *, start=None, end=None, program_id=None, user_id=None,
               include_deleted=False) -> list[dict]:
    """Tasks visible to ``scope``, ordered by scheduled_for (NULLs last) then id."""
    start = parse_date_input(start, "start")
    end = parse_date_input(end, "end")

    q = apply_task_scope(Task.query, scope, Task)
    if not include_deleted:
        q = q.filter(Task.deleted.is_(False))
    if start:
        q = q.filter(Task.scheduled_for >= start)
    if end:
        q = q.filter(Task.scheduled_for <= end)
    if program_id:
        q = q.filter(Task.program_id == program_id)
    if user_id is not None:
        q = q.filter(Task.user_id == to_nullable_int(user_id, "user_id"))

    rows = q.order_by(Task.scheduled_for.is_(None), Task.scheduled_for, Task.id).all()
    return [t.to_dict() for t in rows]


def requested_task_fields(data: dict) -> frozenset:
    """Field names a task body asks to change, aliases applied."""
    return frozenset(FIELD_ALIASES.get(k, k) for k in (data or {}))


def build_task_changes(data: dict) -> dict:
    """Coerce a task body into column values.

    Only keys present in ``data`` are returned. ``time`` wins over
    ``scheduled_time`` when both are sent. Unknown keys are ignored here;
    the field gate has already rejected them.
    """
    data = dict(data or {})
    if "time" in data:
        data["scheduled_time"] = data.pop("time")

    changes = {}
    for name in TASK_FIELDS:
        if name not in data:
            continue
        value = data[name]
        if name == "label":
            value = to_nullable_str(value)
            if not value:
                raise ValidationError("label_required", details={"label": "must not be blank"})
        elif name == "scheduled_for":
            value = parse_date_input(value, "scheduled_for")
        elif name == "scheduled_time":
            value = to_nullable_str(value)
            if value is not None and not _TIME_RE.match(value):
                raise ValidationError("invalid_time", details={"scheduled_time": value})
        elif name == "done":
            if not isinstance(value, bool):
                raise ValidationError("invalid_boolean", details={"done": value})
        elif name == "week_number":
            value = to_nullable_int(value, "week_number")
        elif name == "program_id":
            value = to_nullable_str(value)
            if value is not None and db.session.get(Program, value) is None:
                raise NotFoundError(resource="Program", resource_id=value)
        changes[name] = value
    return changes


def create_task(data: dict, *, owner_id: int, actor_id: int) -> Task:
    changes = build_task_changes(data)
    if "label" not in changes:
        raise ValidationError("label_required", details={"label": "required"})
    if db.session.get(User, owner_id) is None:
        raise NotFoundError(resource="User", resource_id=owner_id)

    changes.setdefault("done", False)
    task = Task(user_id=owner_id, **changes)
    db.session.add(task)
    db.session.flush()
    write_audit(entity_type="task", entity_id=task.id, action="task.create",
                actor_user_id=actor_id, program_id=task.program_id,
                diff={"user_id": owner_id, "label": task.label})
    db.session.commit()
    logger.info("Created task %s for user %s by %s", task.id, owner_id, actor_id)
    return task


def update_task(task: Task, data: dict, *, actor_id: int) -> Task:
    changes = build_task_changes(data)
    if not changes:
        raise ValidationError("no_fields", details={"body": "no fields to update"})
    diff = {}
    for name, value in changes.items():
        old = getattr(task, name)
        if old != value:
            diff[name] = {"old": str(old) if old is not None else None,
                          "new": str(value) if value is not None else None}
            setattr(task, name, value)
    if diff:
        write_audit(entity_type="task", entity_id=task.id, action="task.update",
                    actor_user_id=actor_id, program_id=task.program_id, diff=diff)
    db.session.commit()
    return task


def set_task_deleted(task: Task, deleted: bool, *, actor_id: int) -> dict:
    """Soft delete or restore. Idempotent; reports the prior state."""
    was_deleted = bool(task.deleted)
    if was_deleted != deleted:
        task.deleted = deleted
        write_audit(entity_type="task", entity_id=task.id,
                    action="task.delete" if deleted else "task.restore",
                    actor_user_id=actor_id, program_id=task.program_id)
        db.session.commit()
    key = "deleted" if deleted else "restored"
    return {key: True, "wasDeleted": was_deleted, "task": task.to_dict()}
