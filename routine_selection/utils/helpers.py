"""Shared request-parsing helpers for blueprints."""
from datetime import date, datetime

from routine_selection.core.exceptions import ValidationError


def parse_date(value):
    """Parse a date string (ISO or DD.MM.YYYY) to a date object.

    Returns None for empty/invalid input. Supports:
    - YYYY-MM-DD (ISO format)
    - YYYY-MM-DDTHH:MM:SS (datetime ISO → .date())
    - DD.MM.YYYY (European format)
    """
    if not value:
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (ValueError, TypeError):
        pass
    try:
        return datetime.fromisoformat(str(value)).date()
    except (ValueError, TypeError):
        pass
    try:
        return datetime.strptime(str(value), "%d.%m.%Y").date()
    except (ValueError, TypeError):
        return None


def require_date(data, field):
    """Parse a mandatory date field from a request payload.

    Raises ValidationError when the field is missing or unparsable.
    """
    raw = data.get(field)
    if raw in (None, ""):
        raise ValidationError(f"{field} is required", details={field: "required"})
    parsed = parse_date(raw)
    if parsed is None:
        raise ValidationError(
            f"{field} must be a date (YYYY-MM-DD)", details={field: "invalid"},
        )
    return parsed
