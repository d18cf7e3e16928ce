"""
HR Onboarding Platform
Program Blueprint — programs, their template links and instantiation.

Endpoints:
    Programs:
        GET    /api/v1/programs                                   — List
        POST   /api/v1/programs                                   — Create (draft)
        GET    /api/v1/programs/<pid>                             — Detail
        PATCH  /api/v1/programs/<pid>                             — Update fields
        DELETE /api/v1/programs/<pid>                             — Archive
        POST   /api/v1/programs/<pid>/restore                     — Un-archive
        POST   /api/v1/programs/<pid>/publish                     — draft → published
        POST   /api/v1/programs/<pid>/deprecate                   — published → deprecated

    Template links:
        GET    /api/v1/programs/<pid>/templates                   — Effective metadata list
        POST   /api/v1/programs/<pid>/templates                   — Create template + link
        POST   /api/v1/programs/<pid>/templates/attach            — Link existing template
        POST   /api/v1/programs/<pid>/templates/detach            — Unlink
        PATCH  /api/v1/programs/<pid>/templates/metadata          — Bulk link metadata
        POST   /api/v1/programs/<pid>/templates/reorder           — Bulk sort_order
        PATCH  /api/v1/programs/<pid>/templates/<tid>             — Link metadata
        DELETE /api/v1/programs/<pid>/templates/<tid>             — Archive template
        POST   /api/v1/programs/<pid>/templates/<tid>/archive     — Archive template
        POST   /api/v1/programs/<pid>/templates/<tid>/restore     — Restore template

    Instantiation:
        POST   /api/v1/programs/<pid>/instantiate                 — Program templates → tasks

Every record-level route loads the target first (404), then asks the
authorization decision point (403 / 409), then validates the body (400).
"""

import logging

from flask import Blueprint, g, jsonify, request

from app.blueprints import json_body
from app.core.exceptions import ValidationError
from app.middleware.permission_required import require_actor, require_permission
from app.services import association_service, program_service
from app.services.lifecycle import transition_resource
from app.services.permission_service import authorize_actor
from app.services.user_service import get_user_or_404
from app.utils.helpers import parse_bool_param, to_nullable_int

logger = logging.getLogger(__name__)

program_bp = Blueprint("program", __name__, url_prefix="/api/v1")


# ── Helpers ──────────────────────────────────────────────────────────────────


def _authorize_on_program(program, action, **target):
    return authorize_actor(
        g.actor,
        action,
        resource_program_id=program.id,
        resource_status=program.status,
        resource_archived=program.is_deleted,
        **target,
    )


def _listing_args():
    return {
        "include_deleted": parse_bool_param(request.args.get("include_deleted")),
        "limit": request.args.get("limit"),
        "offset": request.args.get("offset"),
    }


# ═════════════════════════════════════════════════════════════════════════════
# PROGRAMS
# ═════════════════════════════════════════════════════════════════════════════


@program_bp.route("/programs", methods=["GET"])
@require_permission("program.read")
def list_programs():
    """List programs. Query: include_deleted, status."""
    items = program_service.list_programs(
        include_deleted=parse_bool_param(request.args.get("include_deleted")),
        status=request.args.get("status"),
    )
    return jsonify(items), 200


@program_bp.route("/programs", methods=["POST"])
@require_permission("program.create")
def create_program():
    """Create a program. Body: { title, description?, total_weeks?, program_id? }"""
    data = json_body()
    program = program_service.create_program(data, g.actor)
    return jsonify(program.to_dict()), 201


@program_bp.route("/programs/<program_id>", methods=["GET"])
@require_actor
def get_program(program_id):
    program = program_service.get_program(program_id)
    _authorize_on_program(program, "program.read")
    return jsonify(program.to_dict()), 200


@program_bp.route("/programs/<program_id>", methods=["PATCH"])
@require_actor
def update_program(program_id):
    program = program_service.get_program(program_id)
    data = json_body()
    _authorize_on_program(program, "program.update", requested_fields=frozenset(data))
    program = program_service.update_program(program, data, actor_id=g.actor.user_id)
    return jsonify(program.to_dict()), 200


@program_bp.route("/programs/<program_id>", methods=["DELETE"])
@require_actor
def archive_program(program_id):
    program = program_service.get_program(program_id)
    _authorize_on_program(program, "program.archive")
    result = transition_resource(program, "archive", actor_id=g.actor.user_id)
    return jsonify({"archived": True, "wasArchived": result["wasArchived"]}), 200


@program_bp.route("/programs/<program_id>/<any(restore, publish, deprecate):action>",
                  methods=["POST"])
@require_actor
def transition_program(program_id, action):
    """Lifecycle move. A repeated move to the current state is a no-op success."""
    program = program_service.get_program(program_id)
    _authorize_on_program(program, f"program.{action}")
    result = transition_resource(program, action, actor_id=g.actor.user_id)
    result["program"] = program.to_dict()
    return jsonify(result), 200


# ═════════════════════════════════════════════════════════════════════════════
# TEMPLATE LINKS
# ═════════════════════════════════════════════════════════════════════════════


@program_bp.route("/programs/<program_id>/templates", methods=["GET"])
@require_actor
def list_program_templates(program_id):
    """Query: include_deleted, status, q, limit (default 25, max 100), offset."""
    program = program_service.get_program(program_id)
    _authorize_on_program(program, "link.read")
    result = association_service.list_templates_for_program(
        program.id,
        status=request.args.get("status"),
        search=request.args.get("q") or request.args.get("search"),
        **_listing_args(),
    )
    return jsonify(result), 200


@program_bp.route("/programs/<program_id>/templates", methods=["POST"])
@require_actor
def create_program_template(program_id):
    """Create a catalog template and link it to the program."""
    program = program_service.get_program(program_id)
    authorize_actor(g.actor, "template.create")
    _authorize_on_program(program, "link.attach")
    row = association_service.create_linked_template(
        program.id, json_body(), actor_id=g.actor.user_id
    )
    return jsonify(row), 201


@program_bp.route("/programs/<program_id>/templates/attach", methods=["POST"])
@require_actor
def attach_template(program_id):
    """Body: { template_id, ...link overrides }. 201 when linked now, 200 when already linked."""
    program = program_service.get_program(program_id)
    data = json_body()
    if data.get("template_id") is None:
        raise ValidationError("template_id_required", details={"template_id": "required"})
    association_service.get_template_or_404(data["template_id"])
    _authorize_on_program(program, "link.attach")

    overrides = data.get("metadata") if isinstance(data.get("metadata"), dict) else {
        k: v for k, v in data.items() if k != "template_id"
    }
    result = association_service.attach(
        program.id, data["template_id"], overrides, actor_id=g.actor.user_id
    )
    return jsonify(result), 200 if result["alreadyAttached"] else 201


@program_bp.route("/programs/<program_id>/templates/detach", methods=["POST"])
@require_actor
def detach_template(program_id):
    """Body: { template_id }. Detaching an unlinked template is a success."""
    program = program_service.get_program(program_id)
    data = json_body()
    if data.get("template_id") is None:
        raise ValidationError("template_id_required", details={"template_id": "required"})
    _authorize_on_program(program, "link.detach")
    result = association_service.detach(program.id, data["template_id"], actor_id=g.actor.user_id)
    return jsonify(result), 200


@program_bp.route("/programs/<program_id>/templates/metadata", methods=["PATCH"])
@require_actor
def bulk_update_metadata(program_id):
    """
    Bulk link metadata. Rows are applied independently.

    Body: { "updates": [ { "template_id": 1, "week_number": 2 }, ... ] }
    """
    program = program_service.get_program(program_id)
    data = request.get_json(silent=True)
    updates = data.get("updates") if isinstance(data, dict) else data
    _authorize_on_program(program, "link.update")
    result = association_service.bulk_update_links(program.id, updates, actor_id=g.actor.user_id)
    return jsonify(result), 200


@program_bp.route("/programs/<program_id>/templates/reorder", methods=["POST"])
@require_actor
def reorder_templates(program_id):
    """Body: { "order": [template_id, ...] } → sort_order 1..n."""
    program = program_service.get_program(program_id)
    data = request.get_json(silent=True)
    order = data.get("order") if isinstance(data, dict) else data
    _authorize_on_program(program, "link.reorder")
    result = association_service.reorder(program.id, order, actor_id=g.actor.user_id)
    return jsonify(result), 200


@program_bp.route("/programs/<program_id>/templates/<int:template_id>", methods=["PATCH"])
@require_actor
def update_link(program_id, template_id):
    """Link metadata PATCH. Unknown keys, including ``status``, are dropped."""
    program = program_service.get_program(program_id)
    association_service.get_template_or_404(template_id)
    _authorize_on_program(program, "link.update")
    result = association_service.update_link(
        program.id, template_id, json_body(), actor_id=g.actor.user_id
    )
    return jsonify(result), 200


@program_bp.route("/programs/<program_id>/templates/<int:template_id>", methods=["DELETE"])
@program_bp.route("/programs/<program_id>/templates/<int:template_id>/archive", methods=["POST"])
@require_actor
def archive_linked_template(program_id, template_id):
    program = program_service.get_program(program_id)
    _authorize_on_program(program, "link.archive")
    result = association_service.set_linked_template_archived(
        program.id, template_id, True, actor_id=g.actor.user_id
    )
    return jsonify(result), 200


@program_bp.route("/programs/<program_id>/templates/<int:template_id>/restore", methods=["POST"])
@require_actor
def restore_linked_template(program_id, template_id):
    program = program_service.get_program(program_id)
    _authorize_on_program(program, "link.restore")
    result = association_service.set_linked_template_archived(
        program.id, template_id, False, actor_id=g.actor.user_id
    )
    return jsonify(result), 200


# ═════════════════════════════════════════════════════════════════════════════
# INSTANTIATION
# ═════════════════════════════════════════════════════════════════════════════


@program_bp.route("/programs/<program_id>/instantiate", methods=["POST"])
@require_actor
def instantiate_program(program_id):
    """
    Copy the program's visible templates into a user's task list.

    Body: { "user_id": <defaults to caller>, "start_date": "YYYY-MM-DD" }
    """
    program = program_service.get_program(program_id)
    data = json_body()
    user_id = to_nullable_int(data.get("user_id"), "user_id") or g.actor.user_id
    get_user_or_404(user_id)
    authorize_actor(
        g.actor,
        "task.instantiate",
        resource_owner_id=user_id,
        resource_program_id=program.id,
    )
    result = association_service.instantiate(
        program.id, user_id, start_date=data.get("start_date"), actor_id=g.actor.user_id
    )
    return jsonify(result), 201 if result["created"] else 200
