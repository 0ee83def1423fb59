# utils/helpers.py
from datetime import datetime, timezone


def utc_now():
    """Timezone-aware current time; the default clock for every DJ component"""
    return datetime.now(timezone.utc)


def safe_strip(value):
    """Safely strip a string value, handling None"""
    if value is None:
        return None
    if isinstance(value, str):
        stripped = value.strip()
        return stripped if stripped else None
    return value


def safe_int(value, default=None, minimum=None, maximum=None):
    """Parse an int from request input, clamping to [minimum, maximum]"""
    try:
        result = int(value)
    except (TypeError, ValueError):
        return default
    if minimum is not None:
        result = max(minimum, result)
    if maximum is not None:
        result = min(maximum, result)
    return result
