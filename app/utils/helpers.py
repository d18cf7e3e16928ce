"""Shared input coercion and persistence helpers.

parse_date_input:    ISO / DD.MM.YYYY date parsing (raises ValidationError)
parse_bool_param:    query-string booleans (?include_deleted=1)
to_nullable_*:       JSON body coercion used by link and template payloads
normalize_limit/offset: page window clamping for list endpoints
"""
import math
from datetime import date, datetime

from flask import current_app, has_app_context

from app.core.exceptions import ValidationError


DEFAULT_LIMIT = 25
MAX_LIMIT = 100

_TRUE_STRINGS = {"true", "t", "yes", "y", "1", "on", "required"}
_FALSE_STRINGS = {"false", "f", "no", "n", "0", "off", "optional"}


def _is_blank(value):
    return value is None or (isinstance(value, str) and value.strip() == "")


def parse_date_input(value, field="date"):
    """Parse a date string, raising ValidationError on bad input.

    Supports: YYYY-MM-DD, full ISO datetimes, DD.MM.YYYY, date objects.
    Blank input returns None.
    """
    if _is_blank(value):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        pass
    try:
        return datetime.strptime(text, "%d.%m.%Y").date()
    except ValueError as exc:
        raise ValidationError("invalid_date", details={field: text}) from exc


def parse_bool_param(value, default=False):
    """Lenient boolean for query parameters: unknown strings fall back to ``default``."""
    if isinstance(value, bool):
        return value
    if not isinstance(value, str):
        return default
    normalized = value.strip().lower()
    if normalized in _TRUE_STRINGS:
        return True
    if normalized in _FALSE_STRINGS:
        return False
    return default


def to_nullable_int(value, field="value"):
    if _is_blank(value):
        return None
    if isinstance(value, bool):
        raise ValidationError("invalid_number", details={field: value})
    if isinstance(value, int):
        return value
    try:
        numeric = float(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError("invalid_number", details={field: value}) from exc
    if not math.isfinite(numeric):
        raise ValidationError("invalid_number", details={field: value})
    return math.trunc(numeric)


def to_nullable_bool(value, field="value"):
    if _is_blank(value):
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in _TRUE_STRINGS:
            return True
        if normalized in _FALSE_STRINGS:
            return False
    raise ValidationError("invalid_boolean", details={field: value})


def to_nullable_str(value):
    if value is None:
        return None
    trimmed = str(value).strip()
    return trimmed or None


def normalize_limit(value, default=None, maximum=None):
    """Invalid or non-positive → ``default``; otherwise capped at ``maximum``.

    Both bounds default to ``DEFAULT_PAGE_LIMIT`` / ``MAX_PAGE_LIMIT`` from the
    app config, or the module constants outside an app context.
    """
    if has_app_context():
        default = default or current_app.config.get("DEFAULT_PAGE_LIMIT", DEFAULT_LIMIT)
        maximum = maximum or current_app.config.get("MAX_PAGE_LIMIT", MAX_LIMIT)
    default = default or DEFAULT_LIMIT
    maximum = maximum or MAX_LIMIT
    try:
        numeric = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return default
    if numeric <= 0:
        return default
    return min(numeric, maximum)


def normalize_offset(value):
    try:
        numeric = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return 0
    return max(numeric, 0)


def normalize_template_id(value):
    """Template ids are non-negative integers; strings of digits are accepted."""
    if isinstance(value, bool):
        raise ValidationError("invalid_template_id", details={"template_id": value})
    if isinstance(value, int) and value >= 0:
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    raise ValidationError("invalid_template_id", details={"template_id": value})
