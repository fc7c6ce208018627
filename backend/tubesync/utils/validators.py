"""
Input validation helpers
"""
import re
from typing import Any, Optional, Tuple

SYNC_KINDS = ('full', 'videos', 'comments')

_REMOTE_ID_PATTERN = re.compile(r'^[a-zA-Z0-9_-]+$')


def validate_channel_id(channel_id: Any) -> Tuple[bool, Optional[str]]:
    """
    Validate an upstream channel identifier

    Returns:
        (is_valid, error_message)
    """
    if not channel_id:
        return False, 'Channel ID must not be empty'

    if not isinstance(channel_id, str):
        return False, 'Channel ID must be a string'

    channel_id = channel_id.strip()

    if len(channel_id) < 3:
        return False, 'Channel ID must be at least 3 characters'

    if len(channel_id) > 64:
        return False, 'Channel ID must be at most 64 characters'

    if not _REMOTE_ID_PATTERN.match(channel_id):
        return False, 'Channel ID may only contain letters, digits, underscores and hyphens'

    return True, None


def validate_sync_kind(kind: Any) -> Tuple[bool, Optional[str], str]:
    """
    Validate a sync kind

    Returns:
        (is_valid, error_message, cleaned_kind)
    """
    if not kind:
        return True, None, 'full'

    if not isinstance(kind, str):
        return False, 'Sync kind must be a string', ''

    kind = kind.lower().strip()

    if kind not in SYNC_KINDS:
        return False, f"Invalid sync kind, must be one of {list(SYNC_KINDS)}", ''

    return True, None, kind


def parse_bool(value: Any, default: bool = False) -> bool:
    """Parse a query-string style boolean"""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ('1', 'true', 'yes', 'on')


def validate_interval(value: Any, minimum: float = 60.0) -> Tuple[bool, Optional[str], Optional[float]]:
    """
    Validate a periodic sync interval in seconds

    Returns:
        (is_valid, error_message, interval or None when not supplied)
    """
    if value is None or value == '':
        return True, None, None
    try:
        interval = float(value)
    except (TypeError, ValueError):
        return False, 'Interval must be a number of seconds', None
    if interval < minimum:
        return False, f'Interval must be at least {int(minimum)} seconds', None
    return True, None, interval


def sanitize_string(value: Any, max_length: int = 255, default: str = '') -> str:
    """
    Strip and truncate a string input
    """
    if not value:
        return default

    if not isinstance(value, str):
        value = str(value)

    value = value.strip()

    if len(value) > max_length:
        value = value[:max_length]

    return value
