"""
Time Utilities
==============

Common timestamp parsing and formatting functions.
All internal timestamps are integer milliseconds since the Unix epoch (UTC).
Upstream feeds mix ISO 8601 ('2026-01-11T12:00:00Z') and NOAA's
space-separated form ('2026-01-11 12:00:00.000'); both are accepted.
"""

import math
from datetime import datetime, timezone
from typing import Optional

MS_PER_MINUTE = 60_000


def parse_iso_timestamp(ts: str) -> Optional[datetime]:
    """
    Parse ISO 8601 timestamp to timezone-aware datetime.

    Handles common formats:
    - '2026-01-11T12:00:00Z'
    - '2026-01-11T12:00:00+00:00'
    - '2026-01-11 12:00:00.000' (NOAA products, assumes UTC)
    - '2026-01-11T12:00:00' (assumes UTC)

    Args:
        ts: ISO timestamp string

    Returns:
        Timezone-aware datetime (UTC) or None if parsing fails
    """
    if not ts or not isinstance(ts, str):
        return None

    # Handle 'Z' suffix (common in APIs) and NOAA's space separator
    ts = ts.strip().replace('Z', '+00:00')
    if len(ts) > 10 and ts[10] == ' ':
        ts = ts[:10] + 'T' + ts[11:]

    try:
        dt = datetime.fromisoformat(ts)
        # Ensure timezone awareness (default to UTC)
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt
    except (ValueError, TypeError):
        return None


def to_epoch_ms(dt: datetime) -> int:
    """Convert an aware datetime to epoch milliseconds."""
    return int(round(dt.timestamp() * 1000))


def parse_time_ms(ts) -> Optional[int]:
    """
    Parse a feed timestamp into epoch milliseconds.

    Numeric inputs are taken as epoch milliseconds already; NaN and
    infinities (which json.loads accepts) are unparseable.
    """
    if isinstance(ts, bool):
        return None
    if isinstance(ts, (int, float)):
        return int(ts) if math.isfinite(ts) else None
    dt = parse_iso_timestamp(ts)
    return to_epoch_ms(dt) if dt is not None else None


def from_epoch_ms(ms: int) -> datetime:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


def format_timestamp(dt: datetime, fmt: str = 'iso') -> str:
    """
    Format datetime for display or storage.

    Args:
        dt: Datetime object
        fmt: Format type ('iso', 'display', 'compact')

    Returns:
        Formatted timestamp string
    """
    if dt is None:
        return ''

    if fmt == 'iso':
        return dt.isoformat()
    elif fmt == 'display':
        return dt.strftime('%Y-%m-%d %H:%M:%S UTC')
    elif fmt == 'compact':
        return dt.strftime('%Y%m%d_%H%M%S')
    else:
        return dt.isoformat()


def now_utc() -> datetime:
    """Get current time as timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def now_ms() -> int:
    """Get current time as epoch milliseconds."""
    return to_epoch_ms(now_utc())
