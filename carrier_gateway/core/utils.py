"""
Core Utilities

Shared time helpers used across the application.
"""
from datetime import datetime, timezone
from typing import Any, Optional


def utcnow() -> datetime:
    """
    Return timezone-aware UTC datetime.

    Use this instead of datetime.utcnow() which returns naive datetime.
    """
    return datetime.now(timezone.utc)


def epoch_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(utcnow().timestamp() * 1000)


def parse_datetime(value: Any) -> Optional[datetime]:
    """
    Parse a carrier-supplied ISO-8601 timestamp.

    Returns None for empty or unparseable values; naive results are assumed UTC.
    """
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
