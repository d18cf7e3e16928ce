"""
HR Onboarding Platform
Template Blueprint — the template catalog.

Endpoints:
    GET    /api/v1/templates                          — List (q, status, include_deleted, limit, offset)
    POST   /api/v1/templates                          — Create (draft)
    GET    /api/v1/templates/<tid>                    — Detail
    PATCH  /api/v1/templates/<tid>                    — Update fields
    DELETE /api/v1/templates/<tid>                    — Archive
    POST   /api/v1/templates/<tid>/restore            — Un-archive
    POST   /api/v1/templates/<tid>/publish            — draft → published
    POST   /api/v1/templates/<tid>/deprecate          — published → deprecated
    GET    /api/v1/templates/<tid>/programs           — Programs linking this template

Catalog operations are not bound to a program: the permission alone decides.
"""

import logging

from flask import Blueprint, g, jsonify, request

from app.blueprints import json_body
from app.middleware.permission_required import require_actor, require_permission
from app.services import association_service, template_service
from app.services.lifecycle import transition_resource
from app.services.permission_service import authorize_actor
from app.utils.helpers import parse_bool_param

logger = logging.getLogger(__name__)

template_bp = Blueprint("template", __name__, url_prefix="/api/v1")


def _authorize_on_template(template, action, **target):
    return authorize_actor(
        g.actor,
        action,
        resource_status=template.status,
        resource_archived=template.is_deleted,
        **target,
    )


@template_bp.route("/templates", methods=["GET"])
@require_permission("template.read")
def list_templates():
    result = template_service.list_templates(
        include_deleted=parse_bool_param(request.args.get("include_deleted")),
        status=request.args.get("status"),
        search=request.args.get("q") or request.args.get("search"),
        limit=request.args.get("limit"),
        offset=request.args.get("offset"),
    )
    return jsonify(result), 200


@template_bp.route("/templates", methods=["POST"])
@require_permission("template.create")
def create_template():
    template = template_service.create_template(json_body(), actor_id=g.actor.user_id)
    return jsonify(template.to_dict()), 201


@template_bp.route("/templates/<int:template_id>", methods=["GET"])
@require_actor
def get_template(template_id):
    template = template_service.get_template(template_id)
    _authorize_on_template(template, "template.read")
    return jsonify(template.to_dict()), 200


@template_bp.route("/templates/<int:template_id>", methods=["PATCH"])
@require_actor
def update_template(template_id):
    template = template_service.get_template(template_id)
    data = json_body()
    _authorize_on_template(template, "template.update", requested_fields=frozenset(data))
    template = template_service.update_template(template, data, actor_id=g.actor.user_id)
    return jsonify(template.to_dict()), 200


@template_bp.route("/templates/<int:template_id>", methods=["DELETE"])
@require_actor
def archive_template(template_id):
    template = template_service.get_template(template_id)
    _authorize_on_template(template, "template.archive")
    result = transition_resource(template, "archive", actor_id=g.actor.user_id)
    return jsonify({"archived": True, "wasArchived": result["wasArchived"]}), 200


@template_bp.route("/templates/<int:template_id>/<any(restore, publish, deprecate):action>",
                   methods=["POST"])
@require_actor
def transition_template(template_id, action):
    template = template_service.get_template(template_id)
    _authorize_on_template(template, f"template.{action}")
    result = transition_resource(template, action, actor_id=g.actor.user_id)
    result["template"] = template.to_dict()
    return jsonify(result), 200


@template_bp.route("/templates/<int:template_id>/programs", methods=["GET"])
@require_permission("program.read")
def list_template_programs(template_id):
    """Programs linking the template, each with the link's effective metadata."""
    result = association_service.list_programs_for_template(
        template_id,
        include_deleted=parse_bool_param(request.args.get("include_deleted")),
        limit=request.args.get("limit"),
        offset=request.args.get("offset"),
    )
    return jsonify(result), 200
