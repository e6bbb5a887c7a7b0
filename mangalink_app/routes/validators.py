"""Lightweight request validation helpers."""

import re
from typing import Any, Dict, List, Tuple, Optional, Set


Rule = Tuple[str, type, Optional[int]]

# Allowed platform IDs - populated at startup from the PlatformRegistry
_allowed_platform_ids: Set[str] = set()

# Safe characters for platform IDs (alphanumeric, dash, underscore)
PLATFORM_ID_PATTERN = re.compile(r'^[a-zA-Z0-9_-]+$')

MAX_SLUG_LENGTH = 255
MAX_TITLE_LENGTH = 500
MAX_TITLES = 50
MAX_URL_LENGTH = 2000


def set_allowed_platforms(platform_ids: List[str]) -> None:
    """Set the list of valid platform IDs (called during app init)."""
    global _allowed_platform_ids
    _allowed_platform_ids = set(platform_ids)


def validate_fields(payload: Dict[str, Any], rules: List[Rule]) -> Optional[str]:
    """
    Validate required fields with optional max length.

    Args:
        payload: Incoming JSON dict.
        rules: List of (field, type, max_length or None).

    Returns:
        None if valid, or error message string.
    """
    for field, expected_type, max_len in rules:
        if field not in payload:
            return f"Missing required field: {field}"
        value = payload.get(field)
        if not isinstance(value, expected_type):
            return f"Field '{field}' must be {expected_type.__name__}"
        if max_len is not None and len(str(value)) > max_len:
            return f"Field '{field}' exceeds max length {max_len}"
    return None


def validate_platform_id(platform_id: Optional[str]) -> Optional[str]:
    """
    Validate a platform ID against known platforms and safe character pattern.

    Returns:
        None if valid, or error message string.
    """
    if not platform_id:
        return "Missing platform ID"

    if not PLATFORM_ID_PATTERN.match(platform_id):
        return "Invalid platform ID format"

    if _allowed_platform_ids and platform_id not in _allowed_platform_ids:
        return f"Unknown platform: {platform_id}"

    return None


def validate_titles(titles: Any) -> Tuple[List[str], Optional[str]]:
    """Optional list of title strings."""
    if titles is None:
        return [], None
    if not isinstance(titles, list):
        return [], "Field 'titles' must be a list"
    if len(titles) > MAX_TITLES:
        return [], f"At most {MAX_TITLES} titles allowed"
    for title in titles:
        if not isinstance(title, str):
            return [], "Every title must be a string"
        if len(title) > MAX_TITLE_LENGTH:
            return [], f"Title exceeds max length {MAX_TITLE_LENGTH}"
    return titles, None


def parse_units(value: Any, field: str) -> Tuple[Optional[float], Optional[str]]:
    """Optional non-negative number."""
    if value is None:
        return None, None
    if isinstance(value, bool):
        return None, f"Field '{field}' must be a number"
    try:
        units = float(value)
    except (TypeError, ValueError):
        return None, f"Field '{field}' must be a number"
    if units < 0:
        return None, f"Field '{field}' cannot be negative"
    return units, None


def parse_flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).lower() in ('1', 'true', 'yes', 'on')
