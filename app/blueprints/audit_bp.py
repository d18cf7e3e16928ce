"""
HR Onboarding Platform
Audit blueprint.

Endpoints:
    GET  /api/v1/admin/audit               — list / filter audit logs
    GET  /api/v1/admin/audit/<int:log_id>  — single audit entry
"""

from flask import Blueprint, jsonify, request

from app.core.exceptions import NotFoundError, ValidationError
from app.middleware.permission_required import require_permission
from app.models import db
from app.models.audit import AUDIT_ENTITY_TYPES, AuditLog

audit_bp = Blueprint("audit", __name__, url_prefix="/api/v1/admin")


# ── List / filter ────────────────────────────────────────────────────────────

@audit_bp.route("/audit", methods=["GET"])
@require_permission("audit.read")
def list_audit_logs():
    """
    Return paginated audit logs with optional filters.

    Query params:
        program_id   — filter by program
        entity_type  — filter by entity type
        entity_id    — filter by entity key
        action       — filter by action string (prefix match)
        actor_id     — filter by acting user
        page         — page number (default 1)
        per_page     — items per page (default 50, max 200)
    """
    q = AuditLog.query

    # ── Filters ──────────────────────────────────────────────────────────
    program_id = request.args.get("program_id")
    if program_id:
        q = q.filter(AuditLog.program_id == program_id)

    entity_type = request.args.get("entity_type")
    if entity_type:
        if entity_type not in AUDIT_ENTITY_TYPES:
            raise ValidationError("invalid_entity_type",
                                  details={"entity_type": sorted(AUDIT_ENTITY_TYPES)})
        q = q.filter(AuditLog.entity_type == entity_type)

    entity_id = request.args.get("entity_id")
    if entity_id:
        q = q.filter(AuditLog.entity_id == entity_id)

    action = request.args.get("action")
    if action:
        q = q.filter(AuditLog.action.startswith(action))

    actor_id = request.args.get("actor_id", type=int)
    if actor_id is not None:
        q = q.filter(AuditLog.actor_user_id == actor_id)

    # ── Ordering ─────────────────────────────────────────────────────────
    q = q.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())

    # ── Pagination ───────────────────────────────────────────────────────
    page = max(1, request.args.get("page", 1, type=int))
    per_page = min(200, max(1, request.args.get("per_page", 50, type=int)))

    paginated = q.paginate(page=page, per_page=per_page, error_out=False)

    return jsonify({
        "audit_logs": [log.to_dict() for log in paginated.items],
        "total": paginated.total,
        "page": paginated.page,
        "per_page": paginated.per_page,
        "pages": paginated.pages,
    })


@audit_bp.route("/audit/<int:log_id>", methods=["GET"])
@require_permission("audit.read")
def get_audit_log(log_id):
    log = db.session.get(AuditLog, log_id)
    if log is None:
        raise NotFoundError(resource="AuditLog", resource_id=log_id)
    return jsonify(log.to_dict())
