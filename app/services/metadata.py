"""
Effective link metadata.

A ProgramTemplateLink row stores nullable overrides; a Template stores the
defaults. ``merge_metadata`` is the one place that resolves them: for each
field independently, the link value wins when it is not None.

Every caller (program template listing, instantiation, API responses)
goes through this function. There is no COALESCE in SQL.
"""

from app.core.exceptions import ValidationError
from app.models.program import RESOURCE_STATUSES
from app.utils.helpers import to_nullable_bool, to_nullable_int, to_nullable_str

# Fields a link may override. Order is the response order.
METADATA_FIELDS = (
    "week_number",
    "due_offset_days",
    "required",
    "visibility",
    "sort_order",
    "notes",
    "external_link",
)

# Link columns a PATCH may write.
LINK_FIELDS = METADATA_FIELDS + ("visible",)

_INT_FIELDS = {"week_number", "due_offset_days", "sort_order"}
_BOOL_FIELDS = {"required", "visible"}


def _get(obj, name):
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def merge_metadata(link, template) -> dict:
    """Per-field coalesce of ``link`` overrides over ``template`` defaults.

    Accepts model instances or plain dicts. Returns a dict with the
    template's identity fields and the effective metadata.
    """
    merged = {
        "id": _get(template, "id"),
        "template_id": _get(template, "id"),
        "label": _get(template, "label"),
        "status": _get(template, "status"),
        "deleted_at": _get(template, "deleted_at"),
    }
    for name in METADATA_FIELDS:
        override = _get(link, name)
        merged[name] = override if override is not None else _get(template, name)

    visible = _get(link, "visible")
    merged["visible"] = True if visible is None else bool(visible)
    merged["program_id"] = _get(link, "program_id")
    merged["link_id"] = _get(link, "id")
    merged["linked_at"] = _get(link, "created_at")

    for key in ("deleted_at", "linked_at"):
        value = merged[key]
        if value is not None and hasattr(value, "isoformat"):
            merged[key] = value.isoformat()
    return merged


def sanitize_link_metadata(raw) -> dict:
    """Keep only ``LINK_FIELDS`` from ``raw`` and coerce their types.

    Unknown keys are dropped. Blank notes become None. Raises
    ``ValidationError`` for values that cannot be coerced.
    """
    raw = raw if isinstance(raw, dict) else {}
    clean = {}
    for name in LINK_FIELDS:
        if name not in raw:
            continue
        value = raw[name]
        if name in _INT_FIELDS:
            clean[name] = to_nullable_int(value, name)
        elif name in _BOOL_FIELDS:
            clean[name] = to_nullable_bool(value, name)
        elif name == "notes":
            clean[name] = None if value is None or str(value).strip() == "" else str(value)
        else:
            clean[name] = to_nullable_str(value)
    if "external_link" not in raw and "hyperlink" in raw:
        clean["external_link"] = to_nullable_str(raw["hyperlink"])
    if clean.get("visible") is None and "visible" in clean:
        # visible is NOT NULL; a blank value resets it to the default
        clean["visible"] = True
    return clean


def sanitize_template_payload(raw, *, require_label=False) -> dict:
    """Coerce template catalog fields. ``status`` is validated but left to the caller."""
    raw = raw if isinstance(raw, dict) else {}
    clean = {
        name: value
        for name, value in sanitize_link_metadata(raw).items()
        if name != "visible"
    }
    if "label" in raw:
        clean["label"] = to_nullable_str(raw["label"])
    if "status" in raw:
        clean["status"] = normalize_status(raw["status"])
    if require_label and not clean.get("label"):
        raise ValidationError("label_required", details={"label": "required"})
    if "label" in clean and clean["label"] is None:
        raise ValidationError("label_required", details={"label": "must not be blank"})
    return clean


def normalize_status(value) -> str:
    if not isinstance(value, str) or value.strip().lower() not in RESOURCE_STATUSES:
        raise ValidationError("invalid_status", details={"status": value})
    return value.strip().lower()
