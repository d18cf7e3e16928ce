"""
Field gate — which record fields a PATCH may change.

Policy table (task):

    manages the task's program + task.update   → every task field
    manages the task's program + task.assign   → scheduling fields only
    owns the task, does not manage its program → {done}
    anything else                              → nothing

Programs and templates expose a fixed editable set when the update
permission is held. Lifecycle columns (``status``, ``deleted_at``,
``deleted``) are never editable through a PATCH; they move only through
the dedicated transition actions.

A PATCH naming any field outside the allowed set is rejected as a whole.
"""

TASK_FIELDS = frozenset({
    "label",
    "scheduled_for",
    "scheduled_time",
    "done",
    "program_id",
    "week_number",
    "notes",
    "journal_entry",
    "responsible_person",
})
TASK_ASSIGN_FIELDS = frozenset({"scheduled_for", "scheduled_time"})
TASK_SELF_SERVICE_FIELDS = frozenset({"done"})

PROGRAM_FIELDS = frozenset({"title", "description", "total_weeks"})
TEMPLATE_FIELDS = frozenset({
    "label",
    "week_number",
    "due_offset_days",
    "required",
    "visibility",
    "sort_order",
    "notes",
    "external_link",
})

LIFECYCLE_FIELDS = frozenset({"status", "deleted_at", "deleted"})

# Request-body aliases accepted on task payloads.
FIELD_ALIASES = {"time": "scheduled_time"}

_EDITABLE = {
    "program": (PROGRAM_FIELDS, "program.update"),
    "template": (TEMPLATE_FIELDS, "template.update"),
}


def normalize_fields(fields) -> frozenset:
    """Apply ``FIELD_ALIASES`` to a collection of requested field names."""
    return frozenset(FIELD_ALIASES.get(f, f) for f in fields or ())


def allowed_fields(resource_class: str, permissions, *, manages_target=False, owns_target=False) -> frozenset:
    """Return the set of fields the holder of ``permissions`` may PATCH."""
    permissions = frozenset(permissions or ())
    if resource_class == "task":
        if manages_target:
            if "task.update" in permissions:
                return TASK_FIELDS
            if "task.assign" in permissions:
                return TASK_ASSIGN_FIELDS
        if owns_target:
            return TASK_SELF_SERVICE_FIELDS
        return frozenset()

    editable, required = _EDITABLE.get(resource_class, (frozenset(), None))
    if required and required in permissions:
        return editable
    return frozenset()


def disallowed_fields(requested, allowed) -> list[str]:
    """Sorted list of requested fields not covered by ``allowed``."""
    return sorted(normalize_fields(requested) - frozenset(allowed))
