"""Template catalog service.

Transaction policy: public functions commit on success.
"""
import logging

from sqlalchemy import or_

from app.core.exceptions import NotFoundError
from app.models import db
from app.models.audit import write_audit
from app.models.program import Template
from app.services.field_gate import TEMPLATE_FIELDS
from app.services.metadata import normalize_status, sanitize_template_payload
from app.utils.helpers import normalize_limit, normalize_offset, normalize_template_id

logger = logging.getLogger(__name__)


def get_template(template_id) -> Template:
    template = db.session.get(Template, normalize_template_id(template_id))
    if template is None:
        raise NotFoundError(resource="Template", resource_id=template_id)
    return template


def list_templates(*, include_deleted=False, status=None, search=None,
                   limit=None, offset=None) -> dict:
    """Catalog listing ordered by (week_number, sort_order, id), NULLs last."""
    limit = normalize_limit(limit)
    offset = normalize_offset(offset)

    q = Template.query if include_deleted else Template.query_active()
    if status:
        q = q.filter(Template.status == normalize_status(status))
    if search and search.strip():
        term = search.strip().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        pattern = f"%{term}%"
        q = q.filter(or_(Template.label.ilike(pattern, escape="\\"),
                         Template.notes.ilike(pattern, escape="\\")))

    total = q.count()
    rows = (
        q.order_by(
            Template.week_number.is_(None), Template.week_number,
            Template.sort_order.is_(None), Template.sort_order,
            Template.id,
        )
        .offset(offset)
        .limit(limit)
        .all()
    )
    return {"data": [t.to_dict() for t in rows],
            "meta": {"total": total, "limit": limit, "offset": offset}}


def create_template(data: dict, *, actor_id=None) -> Template:
    """Create a catalog template. New templates start as drafts unless told otherwise."""
    fields = sanitize_template_payload(data, require_label=True)
    fields.setdefault("status", "draft")
    template = Template(**fields)
    db.session.add(template)
    db.session.flush()
    write_audit(entity_type="template", entity_id=template.id, action="template.create",
                actor_user_id=actor_id, diff={k: v for k, v in fields.items() if v is not None})
    db.session.commit()
    logger.info("Created template %s (%s)", template.id, template.label)
    return template


def update_template(template: Template, data: dict, *, actor_id=None) -> Template:
    """Apply editable fields. Callers have already run the field gate."""
    fields = sanitize_template_payload({k: v for k, v in data.items() if k in TEMPLATE_FIELDS})
    diff = {}
    for name, value in fields.items():
        if getattr(template, name) != value:
            diff[name] = {"old": getattr(template, name), "new": value}
            setattr(template, name, value)
    if diff:
        write_audit(entity_type="template", entity_id=template.id, action="template.update",
                    actor_user_id=actor_id, diff=diff)
    db.session.commit()
    return template
