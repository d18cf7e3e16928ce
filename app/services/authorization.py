"""
Authorization decision point.

``authorize`` composes the permission catalog, scope resolver, field gate
and lifecycle rules into one decision per request:

    0. inactive actor                       → 403 actor_inactive
    1. no permission for the action         → 403 missing_permission
       (owners may read, restore and tick ``done`` on their own task rows
       without any task permission)
    2. target outside the actor's scope     → 403 out_of_scope
    3. PATCH names a field outside the gate → 403 field_not_allowed /
                                              status_requires_transition /
                                              target_program_out_of_scope
    4. lifecycle constraint                 → 409 invalid_transition /
                                              resource_archived

It is a pure function of its input: the caller loads the actor (roles,
managed programs) and the role catalog fresh for every request and passes
them in.

Usage:
    decision = authorize(AuthorizationRequest(
        actor_id=7, actor_roles={"manager"}, actor_program_ids={"prog1"},
        action="task.update", resource_owner_id=9, resource_program_id="prog1",
        requested_fields={"scheduled_for"},
    ))
    if not decision.allowed:
        ...
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from app.core.exceptions import ConflictError, ForbiddenError
from app.services.field_gate import (
    LIFECYCLE_FIELDS,
    allowed_fields,
    disallowed_fields,
    normalize_fields,
)
from app.services.lifecycle import STATUS_TRANSITIONS, validate_transition
from app.services.permission_catalog import granted_for_action
from app.services.scope_resolver import Actor, resolve_scope

logger = logging.getLogger(__name__)

# Verbs an owner may perform on their own task row without a task permission.
SELF_SERVICE_TASK_VERBS = frozenset({"read", "update", "restore"})

# Program-bound resource classes whose non-global verbs need a managed program.
PROGRAM_BOUND = frozenset({"program", "link", "membership"})
GLOBAL_VERBS = frozenset({"create", "read"})

# Generic mutations that are refused while the target is archived.
BLOCKED_WHEN_ARCHIVED = frozenset({"update", "attach", "reorder"})


@dataclass(frozen=True)
class AuthorizationRequest:
    actor_id: int
    action: str
    actor_roles: frozenset = field(default_factory=frozenset)
    actor_program_ids: frozenset = field(default_factory=frozenset)
    resource_owner_id: int | None = None
    resource_program_id: str | None = None
    requested_fields: frozenset | None = None
    target_program_id: str | None = None
    resource_status: str | None = None
    resource_archived: bool = False
    actor_status: str = "active"


@dataclass(frozen=True)
class Decision:
    allowed: bool
    http_status: int
    reason: str
    allowed_fields: frozenset | None = None
    rejected_fields: tuple = ()

    def to_dict(self) -> dict:
        d = {"allowed": self.allowed, "httpStatus": self.http_status, "reason": self.reason}
        if self.allowed_fields is not None:
            d["allowedFields"] = sorted(self.allowed_fields)
        if self.rejected_fields:
            d["rejectedFields"] = list(self.rejected_fields)
        return d


def _deny(status: int, reason: str, rejected=()) -> Decision:
    return Decision(False, status, reason, rejected_fields=tuple(rejected))


def authorize(req: AuthorizationRequest, catalog=None) -> Decision:
    """Decide whether ``req`` may proceed. ``catalog`` defaults to the static table."""
    if req.actor_status != "active":
        return _deny(403, "actor_inactive")

    resource_class, _, verb = req.action.partition(".")
    owns = req.resource_owner_id is not None and req.resource_owner_id == req.actor_id

    # 1. permission
    granted = granted_for_action(req.actor_roles, req.action, catalog)
    self_service = resource_class == "task" and verb in SELF_SERVICE_TASK_VERBS and owns
    if not granted and not self_service:
        return _deny(403, "missing_permission")

    # 2. scope
    actor = Actor(
        user_id=req.actor_id,
        roles=frozenset(req.actor_roles),
        managed_program_ids=frozenset(req.actor_program_ids),
    )
    scope = resolve_scope(actor, resource_class)
    manages = scope.covers_program(req.resource_program_id)

    if resource_class == "task":
        owner = req.actor_id if req.resource_owner_id is None else req.resource_owner_id
        if not scope.covers_record(req.resource_program_id, owner):
            return _deny(403, "out_of_scope")
    elif resource_class in PROGRAM_BOUND and verb not in GLOBAL_VERBS:
        if not manages:
            return _deny(403, "out_of_scope")

    # 3. field gate
    gate = None
    if req.requested_fields is not None and resource_class in ("task", "program", "template"):
        gate = allowed_fields(resource_class, granted, manages_target=manages, owns_target=owns)
        rejected = disallowed_fields(req.requested_fields, gate)
        if rejected:
            reason = ("status_requires_transition"
                      if LIFECYCLE_FIELDS.intersection(rejected) else "field_not_allowed")
            return _deny(403, reason, rejected)
        requested = normalize_fields(req.requested_fields)
        if "program_id" in requested and req.target_program_id != req.resource_program_id:
            # a task without a program is only in reach of admins and its owner
            if req.target_program_id is None:
                in_reach = scope.covers_record(None, req.resource_owner_id)
            else:
                in_reach = scope.covers_program(req.target_program_id)
            if not in_reach:
                return _deny(403, "target_program_out_of_scope", ["program_id"])

    # 4. lifecycle
    if verb in STATUS_TRANSITIONS:
        if not validate_transition(req.resource_status, verb)["valid"]:
            return _deny(409, "invalid_transition")
    elif verb in BLOCKED_WHEN_ARCHIVED and req.resource_archived:
        return _deny(409, "resource_archived")

    return Decision(True, 200, "ok", allowed_fields=gate)


def enforce(req: AuthorizationRequest, catalog=None) -> Decision:
    """``authorize`` and raise the matching service exception on denial."""
    decision = authorize(req, catalog)
    if decision.allowed:
        return decision

    logger.warning(
        "Authorization denied: actor=%s action=%s reason=%s",
        req.actor_id, req.action, decision.reason,
        extra={"actor_id": req.actor_id, "action": req.action, "reason": decision.reason},
    )
    if decision.http_status == 409:
        raise ConflictError(
            req.action.partition(".")[0].capitalize(), "status",
            req.resource_status, reason=decision.reason,
        )
    raise ForbiddenError(decision.reason, list(decision.rejected_fields))
