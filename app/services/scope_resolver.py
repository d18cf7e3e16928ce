"""
Scope resolution — which programs and task rows an actor may touch.

    admin            → Scope.ALL
    manager role     → OWNED_PROGRAMS (programs where the actor's membership
                       role is "manager"), plus the actor's own task rows
    everybody else   → OWN_RECORDS (the actor's own task rows only)

Resolution is pure: it works on an ``Actor`` value. Loading an actor from
the database is ``app.services.permission_service.load_actor``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from sqlalchemy import or_


class ScopeKind(str, Enum):
    ALL = "all"
    OWNED_PROGRAMS = "owned_programs"
    OWN_RECORDS = "own_records"


@dataclass(frozen=True)
class Actor:
    """Everything authorization needs to know about the requesting user."""

    user_id: int
    roles: frozenset = field(default_factory=frozenset)
    managed_program_ids: frozenset = field(default_factory=frozenset)
    status: str = "active"

    @property
    def is_admin(self) -> bool:
        return "admin" in self.roles

    @property
    def is_manager(self) -> bool:
        return "manager" in self.roles


@dataclass(frozen=True)
class Scope:
    kind: ScopeKind
    actor_id: int | None = None
    program_ids: frozenset = field(default_factory=frozenset)

    def covers_program(self, program_id) -> bool:
        """True if the actor manages ``program_id``."""
        if self.kind is ScopeKind.ALL:
            return True
        if self.kind is ScopeKind.OWNED_PROGRAMS:
            return program_id is not None and program_id in self.program_ids
        return False

    def covers_record(self, program_id, owner_id) -> bool:
        """True if a row owned by ``owner_id`` inside ``program_id`` is in reach."""
        if self.covers_program(program_id):
            return True
        return owner_id is not None and owner_id == self.actor_id

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "actor_id": self.actor_id,
            "program_ids": sorted(self.program_ids),
        }


def resolve_scope(actor: Actor, resource_class: str = "task") -> Scope:
    """Compute the scope of ``actor`` for ``resource_class``.

    ``resource_class`` is one of ``task``, ``program`` or ``link``. For
    programs and links there are no "own records": a non-manager resolves
    to an OWN_RECORDS scope that covers no program.
    """
    if actor.is_admin:
        return Scope(ScopeKind.ALL, actor_id=actor.user_id)
    if actor.is_manager:
        return Scope(
            ScopeKind.OWNED_PROGRAMS,
            actor_id=actor.user_id,
            program_ids=frozenset(actor.managed_program_ids),
        )
    return Scope(ScopeKind.OWN_RECORDS, actor_id=actor.user_id)


def apply_task_scope(query, scope: Scope, model):
    """Intersect a Task query with ``scope``. Reads may legitimately end up empty."""
    if scope.kind is ScopeKind.ALL:
        return query

    own = model.user_id == scope.actor_id
    if scope.kind is ScopeKind.OWNED_PROGRAMS and scope.program_ids:
        return query.filter(or_(own, model.program_id.in_(sorted(scope.program_ids))))
    return query.filter(own)
