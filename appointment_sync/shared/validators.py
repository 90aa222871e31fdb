"""Shared validation and time utilities"""

import re
from datetime import datetime, timezone
from typing import Optional

# Host user ids are opaque strings (usually UUIDs)
USER_ID_PATTERN = re.compile(r"[A-Za-z0-9_.:@-]{1,64}")


def validate_user_id(value: Optional[str]) -> bool:
    """Validate a host user id before binding it to a credential or webhook"""
    if not value:
        return False
    return USER_ID_PATTERN.fullmatch(value) is not None


def utcnow() -> datetime:
    """Naive UTC now, matching how timestamps are stored"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_provider_time(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO 8601 timestamp from Calendly into naive UTC.

    Returns None for empty or unparseable values.
    """
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def format_provider_time(value: datetime) -> str:
    """Format a naive UTC datetime the way Calendly expects in query params"""
    return value.replace(microsecond=0).isoformat() + "Z"
