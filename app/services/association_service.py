"""
Program ↔ Template association manager.

All operations are idempotent and safe to retry:

    attach   insert-or-no-op on the (program_id, template_id) unique pair
    detach   delete-if-present; a missing link is a success
    update   allow-listed link columns only; unknown keys are dropped

Authorization happens before these functions are called (see
``app.services.authorization``). Transaction policy: public functions
commit on success; batch operations commit row by row so a failed row
never takes the successful ones down with it.

Usage:
    from app.services import association_service as links

    result = links.attach("prog1", 12, overrides={"required": True}, actor_id=3)
    result["alreadyAttached"]   # True on the second call
"""

import logging
from datetime import timedelta

from sqlalchemy import or_
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError

from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.models import db
from app.models.audit import write_audit
from app.models.program import Program, ProgramTemplateLink, Task, Template
from app.services.metadata import (
    merge_metadata,
    normalize_status,
    sanitize_link_metadata,
    sanitize_template_payload,
)
from app.utils.helpers import (
    normalize_limit,
    normalize_offset,
    normalize_template_id,
    parse_date_input,
)

logger = logging.getLogger(__name__)


# ── Lookups ──────────────────────────────────────────────────────────────────


def get_program_or_404(program_id) -> Program:
    program = db.session.get(Program, program_id) if program_id else None
    if program is None:
        raise NotFoundError(resource="Program", resource_id=program_id)
    return program


def get_template_or_404(template_id) -> Template:
    template = db.session.get(Template, normalize_template_id(template_id))
    if template is None:
        raise NotFoundError(resource="Template", resource_id=template_id)
    return template


def _find_link(program_id, template_id):
    return ProgramTemplateLink.query.filter_by(
        program_id=program_id, template_id=template_id
    ).first()


def is_linked(program_id, template_id) -> bool:
    return _find_link(program_id, normalize_template_id(template_id)) is not None


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _link_sort_key(row: dict):
    week, order = row.get("week_number"), row.get("sort_order")
    return (week is None, week or 0, order is None, order or 0, row.get("template_id") or 0)


# ── Attach / detach ──────────────────────────────────────────────────────────


def _insert_link_ignoring_conflict(values: dict) -> bool:
    """INSERT ... ON CONFLICT DO NOTHING. Returns True when a row was created."""
    dialect = db.engine.dialect.name
    if dialect in ("postgresql", "sqlite"):
        insert = pg_insert if dialect == "postgresql" else sqlite_insert
        stmt = (
            insert(ProgramTemplateLink)
            .values(**values)
            .on_conflict_do_nothing(index_elements=["program_id", "template_id"])
        )
        return db.session.execute(stmt).rowcount > 0

    nested = db.session.begin_nested()
    try:
        db.session.add(ProgramTemplateLink(**values))
        db.session.flush()
    except IntegrityError:
        nested.rollback()
        return False
    nested.commit()
    return True


def attach(program_id, template_id, overrides=None, *, actor_id=None) -> dict:
    """Link ``template_id`` to ``program_id``.

    Returns ``{"attached": True, "alreadyAttached", "linked_at", "template"}``.
    Overrides are only applied when the link is created; a repeated attach
    leaves the existing row untouched.
    """
    program = get_program_or_404(program_id)
    template = get_template_or_404(template_id)
    if template.is_deleted:
        raise ConflictError("Template", "deleted_at", template.id, reason="resource_archived")

    values = {"program_id": program.id, "template_id": template.id}
    values.update(sanitize_link_metadata(overrides))
    values.setdefault("visible", True)
    if actor_id is not None:
        values["created_by"] = actor_id
        values["updated_by"] = actor_id

    created = _insert_link_ignoring_conflict(values)
    link = _find_link(program.id, template.id)
    if created:
        write_audit(
            entity_type="link", entity_id=f"{program.id}:{template.id}",
            action="link.attach", actor_user_id=actor_id, program_id=program.id,
            diff={k: v for k, v in values.items() if k not in ("program_id", "template_id")},
        )
        logger.info("Attached template %s to program %s", template.id, program.id,
                    extra={"program_id": program.id, "template_id": template.id})
        db.session.commit()

    merged = merge_metadata(link, template)
    return {
        "attached": True,
        "alreadyAttached": not created,
        "linked_at": merged["linked_at"],
        "template": merged,
    }


def detach(program_id, template_id, *, actor_id=None) -> dict:
    """Remove the link if present. Returns ``{"detached": True, "wasAttached"}``."""
    program = get_program_or_404(program_id)
    tid = normalize_template_id(template_id)
    deleted = (
        ProgramTemplateLink.query
        .filter_by(program_id=program.id, template_id=tid)
        .delete(synchronize_session="fetch")
    )
    if deleted:
        write_audit(
            entity_type="link", entity_id=f"{program.id}:{tid}",
            action="link.detach", actor_user_id=actor_id, program_id=program.id,
        )
        logger.info("Detached template %s from program %s", tid, program.id)
        db.session.commit()
    return {"detached": True, "wasAttached": deleted > 0}


def create_linked_template(program_id, data, *, actor_id=None) -> dict:
    """Create a catalog template and link it to ``program_id`` in one transaction.

    The new link carries no overrides, so the row inherits everything from
    the template; only ``visible`` is taken from the body.
    """
    program = get_program_or_404(program_id)
    fields = sanitize_template_payload(data, require_label=True)
    fields.setdefault("status", "draft")
    link_fields = sanitize_link_metadata({"visible": (data or {}).get("visible")})

    template = Template(**fields)
    db.session.add(template)
    db.session.flush()
    link = ProgramTemplateLink(
        program_id=program.id,
        template_id=template.id,
        visible=link_fields.get("visible", True),
        created_by=actor_id,
        updated_by=actor_id,
    )
    db.session.add(link)
    db.session.flush()

    write_audit(
        entity_type="template", entity_id=template.id, action="template.create",
        actor_user_id=actor_id, program_id=program.id,
        diff={k: v for k, v in fields.items() if v is not None},
    )
    db.session.commit()
    logger.info("Created template %s linked to program %s", template.id, program.id,
                extra={"program_id": program.id, "template_id": template.id})
    return merge_metadata(link, template)


# ── Metadata updates ─────────────────────────────────────────────────────────


def update_link(program_id, template_id, patch, *, actor_id=None) -> dict:
    """Apply the allow-listed part of ``patch`` to one link.

    Returns ``{"updated": False, "template": None}`` when nothing in the
    patch is a link column. Raises ``NotFoundError`` when the pair is not
    linked.
    """
    tid = normalize_template_id(template_id)
    changes = sanitize_link_metadata(patch)
    if not changes:
        return {"updated": False, "template": None}

    link = _find_link(program_id, tid)
    if link is None:
        raise NotFoundError(resource="Link", resource_id=f"{program_id}:{tid}")

    diff = {}
    for name, value in changes.items():
        old = getattr(link, name)
        if old != value:
            diff[name] = {"old": old, "new": value}
        setattr(link, name, value)
    if actor_id is not None:
        link.updated_by = actor_id

    if diff:
        write_audit(
            entity_type="link", entity_id=f"{program_id}:{tid}",
            action="link.update", actor_user_id=actor_id, program_id=program_id, diff=diff,
        )
    db.session.commit()
    return {"updated": True, "template": merge_metadata(link, link.template)}


def bulk_update_links(program_id, updates, *, actor_id=None) -> dict:
    """Apply a batch of ``{"template_id", ...fields}`` entries row by row.

    Each row is validated before anything is written to it, so a bad row
    leaves no trace while the good rows still apply. The response lists
    the outcome per row so the caller can revert exactly the failed ones.
    """
    if not isinstance(updates, list):
        raise ValidationError("updates_must_be_list")
    get_program_or_404(program_id)

    results = []
    for entry in updates:
        if not isinstance(entry, dict):
            results.append({"template_id": None, "updated": False, "error": "invalid_entry"})
            continue
        raw_id = entry.get("template_id")
        try:
            fields = {k: v for k, v in entry.items() if k != "template_id"}
            outcome = update_link(program_id, raw_id, fields, actor_id=actor_id)
        except (ValidationError, NotFoundError) as exc:
            logger.warning("Bulk link update row failed: program=%s template=%s: %s",
                           program_id, raw_id, exc)
            results.append({"template_id": raw_id, "updated": False, "error": str(exc)})
            continue
        results.append({"template_id": raw_id, **outcome})

    return {
        "updated": sum(1 for r in results if r["updated"]),
        "failed": sum(1 for r in results if "error" in r),
        "results": results,
    }


def reorder(program_id, order, *, actor_id=None) -> dict:
    """Set ``sort_order = position + 1`` for each template id in ``order``."""
    if not isinstance(order, list):
        raise ValidationError("order_must_be_list")
    get_program_or_404(program_id)

    results = []
    for position, raw_id in enumerate(order, start=1):
        try:
            tid = normalize_template_id(raw_id)
        except ValidationError as exc:
            results.append({"template_id": raw_id, "updated": False, "error": str(exc)})
            continue
        link = _find_link(program_id, tid)
        if link is None:
            results.append({"template_id": tid, "updated": False, "error": "not_linked"})
            continue
        link.sort_order = position
        if actor_id is not None:
            link.updated_by = actor_id
        db.session.commit()
        results.append({"template_id": tid, "updated": True, "sort_order": position})

    reordered = [r["template_id"] for r in results if r["updated"]]
    if reordered:
        write_audit(
            entity_type="link", entity_id=program_id, action="link.reorder",
            actor_user_id=actor_id, program_id=program_id, diff={"order": reordered},
        )
        db.session.commit()
    return {"reordered": len(reordered), "results": results}


# ── Program-scoped archive ───────────────────────────────────────────────────


def set_linked_template_archived(program_id, template_id, archived: bool, *, actor_id=None) -> dict:
    """Archive or restore a template through one of the programs that links it."""
    get_program_or_404(program_id)
    template = get_template_or_404(template_id)
    if _find_link(program_id, template.id) is None:
        raise NotFoundError(resource="Link", resource_id=f"{program_id}:{template.id}")

    was_archived = template.is_deleted
    changed = template.soft_delete() if archived else template.restore()
    if changed:
        write_audit(
            entity_type="template", entity_id=template.id,
            action="template.archive" if archived else "template.restore",
            actor_user_id=actor_id, program_id=program_id,
        )
    db.session.commit()
    return {
        "archived" if archived else "restored": True,
        "wasArchived": was_archived,
        "template": merge_metadata(_find_link(program_id, template.id), template),
    }


# ── Listings ─────────────────────────────────────────────────────────────────


def list_templates_for_program(
    program_id,
    *,
    include_deleted=False,
    status=None,
    search=None,
    limit=None,
    offset=None,
) -> dict:
    """Effective metadata of every template linked to ``program_id``.

    Ordering is (week_number, sort_order, template id) with NULLs last, on
    the merged values. Program template sets are small, so rows are merged
    and sorted in Python and then paged.
    """
    get_program_or_404(program_id)
    limit = normalize_limit(limit)
    offset = normalize_offset(offset)

    query = (
        db.session.query(ProgramTemplateLink, Template)
        .join(Template, ProgramTemplateLink.template_id == Template.id)
        .filter(ProgramTemplateLink.program_id == program_id)
    )
    if not include_deleted:
        query = query.filter(Template.deleted_at.is_(None))
    if status:
        query = query.filter(Template.status == normalize_status(status))
    if search and search.strip():
        pattern = f"%{_escape_like(search.strip())}%"
        query = query.filter(or_(
            Template.label.ilike(pattern, escape="\\"),
            Template.notes.ilike(pattern, escape="\\"),
        ))

    rows = sorted((merge_metadata(link, tpl) for link, tpl in query.all()), key=_link_sort_key)
    return {
        "data": rows[offset:offset + limit],
        "meta": {"total": len(rows), "limit": limit, "offset": offset},
    }


def list_programs_for_template(
    template_id,
    *,
    include_deleted=False,
    limit=None,
    offset=None,
) -> dict:
    """Programs linking ``template_id``, ordered by (title, id) with NULLs last."""
    template = get_template_or_404(template_id)
    limit = normalize_limit(limit)
    offset = normalize_offset(offset)

    query = (
        db.session.query(Program, ProgramTemplateLink)
        .join(ProgramTemplateLink, ProgramTemplateLink.program_id == Program.id)
        .filter(ProgramTemplateLink.template_id == template.id)
    )
    if not include_deleted:
        query = query.filter(Program.deleted_at.is_(None))

    total = query.count()
    page = (
        query.order_by(Program.title.is_(None), Program.title, Program.id)
        .offset(offset)
        .limit(limit)
        .all()
    )
    data = []
    for program, link in page:
        row = program.to_dict()
        row["link"] = merge_metadata(link, template)
        data.append(row)
    return {"data": data, "meta": {"total": total, "limit": limit, "offset": offset}}


# ── Instantiation ────────────────────────────────────────────────────────────


def _schedule_for(start, meta):
    if start is None:
        return None
    if meta.get("due_offset_days") is not None:
        return start + timedelta(days=meta["due_offset_days"])
    if meta.get("week_number") is not None:
        return start + timedelta(weeks=max(meta["week_number"] - 1, 0))
    return None


def instantiate(program_id, user_id, *, start_date=None, actor_id=None) -> dict:
    """Create the user's tasks from the program's visible, active templates.

    Templates that already produced a live task for this user in this
    program are skipped, so the call can be repeated safely.
    """
    program = get_program_or_404(program_id)
    start = parse_date_input(start_date, "start_date")

    pairs = (
        db.session.query(ProgramTemplateLink, Template)
        .join(Template, ProgramTemplateLink.template_id == Template.id)
        .filter(
            ProgramTemplateLink.program_id == program.id,
            ProgramTemplateLink.visible.is_(True),
            Template.deleted_at.is_(None),
        )
        .all()
    )
    existing = {
        tid for (tid,) in db.session.query(Task.template_id).filter(
            Task.user_id == user_id,
            Task.program_id == program.id,
            Task.deleted.is_(False),
            Task.template_id.isnot(None),
        )
    }

    created = []
    for meta in sorted((merge_metadata(link, tpl) for link, tpl in pairs), key=_link_sort_key):
        if meta["template_id"] in existing:
            continue
        task = Task(
            user_id=user_id,
            program_id=program.id,
            template_id=meta["template_id"],
            label=meta["label"],
            week_number=meta["week_number"],
            notes=meta["notes"],
            scheduled_for=_schedule_for(start, meta),
        )
        db.session.add(task)
        created.append(task)
    db.session.flush()

    if created:
        write_audit(
            entity_type="task", entity_id=program.id, action="task.instantiate",
            actor_user_id=actor_id, program_id=program.id,
            diff={"user_id": user_id, "count": len(created)},
        )
    db.session.commit()
    logger.info("Instantiated %d tasks for user %s from program %s",
                len(created), user_id, program.id)
    return {
        "created": len(created),
        "skipped": len(pairs) - len(created),
        "tasks": [t.to_dict() for t in created],
    }
