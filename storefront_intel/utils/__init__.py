"""Shared utility helpers used across capture, services and destinations."""


def safe_int(v):
    """Safely convert a value to int, returning None on failure."""
    if v is None:
        return None
    try:
        return int(v)
    except (ValueError, TypeError):
        return None


def safe_float(v):
    """Safely convert a value to float, returning None on failure."""
    if v is None:
        return None
    try:
        return float(v)
    except (ValueError, TypeError):
        return None


def clean_str(v) -> str:
    """str() with None -> '' and surrounding whitespace removed."""
    if v is None:
        return ""
    return str(v).strip()
