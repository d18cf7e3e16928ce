"""
HR Onboarding Platform
Task Blueprint — onboarding task rows.

Endpoints:
    GET    /api/v1/tasks                 — List tasks in reach (start, end, program_id, user_id, include_deleted)
    POST   /api/v1/tasks                 — Create (for self, or for a user in a managed program)
    GET    /api/v1/tasks/<id>            — Detail
    PATCH  /api/v1/tasks/<id>            — Update; the field gate decides which keys are allowed
    DELETE /api/v1/tasks/<id>            — Soft delete
    POST   /api/v1/tasks/<id>/restore    — Undo soft delete

Listing is filtered to the caller's scope and may be empty. A single task
outside the caller's scope is a 403, never a silent empty result.
"""

import logging

from flask import Blueprint, g, jsonify, request

from app.blueprints import json_body
from app.middleware.permission_required import require_actor
from app.services import task_service
from app.services.permission_service import authorize_actor
from app.services.scope_resolver import resolve_scope
from app.utils.helpers import parse_bool_param, to_nullable_int, to_nullable_str

logger = logging.getLogger(__name__)

task_bp = Blueprint("task", __name__, url_prefix="/api/v1")


def _authorize_on_task(task, action, **target):
    return authorize_actor(
        g.actor,
        action,
        resource_owner_id=task.user_id,
        resource_program_id=task.program_id,
        resource_archived=bool(task.deleted),
        **target,
    )


@task_bp.route("/tasks", methods=["GET"])
@require_actor
def list_tasks():
    authorize_actor(g.actor, "task.read", resource_owner_id=g.actor.user_id)
    items = task_service.list_tasks(
        resolve_scope(g.actor, "task"),
        start=request.args.get("start"),
        end=request.args.get("end"),
        program_id=request.args.get("program_id"),
        user_id=request.args.get("user_id"),
        include_deleted=parse_bool_param(request.args.get("include_deleted")),
    )
    return jsonify(items), 200


@task_bp.route("/tasks", methods=["POST"])
@require_actor
def create_task():
    """
    Body: { label, scheduled_for?, time|scheduled_time?, done?, program_id?,
            week_number?, notes?, journal_entry?, responsible_person?, user_id? }
    """
    data = json_body()
    owner_id = to_nullable_int(data.get("user_id"), "user_id") or g.actor.user_id
    authorize_actor(
        g.actor,
        "task.create",
        resource_owner_id=owner_id,
        resource_program_id=to_nullable_str(data.get("program_id")),
    )
    body = {k: v for k, v in data.items() if k != "user_id"}
    task = task_service.create_task(body, owner_id=owner_id, actor_id=g.actor.user_id)
    return jsonify(task.to_dict()), 201


@task_bp.route("/tasks/<int:task_id>", methods=["GET"])
@require_actor
def get_task(task_id):
    task = task_service.get_task(task_id)
    _authorize_on_task(task, "task.read")
    return jsonify(task.to_dict()), 200


@task_bp.route("/tasks/<int:task_id>", methods=["PATCH"])
@require_actor
def update_task(task_id):
    task = task_service.get_task(task_id)
    data = json_body()
    _authorize_on_task(
        task,
        "task.update",
        requested_fields=task_service.requested_task_fields(data),
        target_program_id=to_nullable_str(data.get("program_id")),
    )
    task = task_service.update_task(task, data, actor_id=g.actor.user_id)
    return jsonify(task.to_dict()), 200


@task_bp.route("/tasks/<int:task_id>", methods=["DELETE"])
@require_actor
def delete_task(task_id):
    task = task_service.get_task(task_id)
    _authorize_on_task(task, "task.delete")
    return jsonify(task_service.set_task_deleted(task, True, actor_id=g.actor.user_id)), 200


@task_bp.route("/tasks/<int:task_id>/restore", methods=["POST"])
@require_actor
def restore_task(task_id):
    task = task_service.get_task(task_id)
    _authorize_on_task(task, "task.restore")
    return jsonify(task_service.set_task_deleted(task, False, actor_id=g.actor.user_id)), 200
