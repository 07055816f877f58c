"""
Aurora Sentinel Utilities
=========================

Common utility functions used across the library.
"""

from .time import (
    MS_PER_MINUTE,
    parse_iso_timestamp,
    parse_time_ms,
    to_epoch_ms,
    from_epoch_ms,
    format_timestamp,
    now_utc,
    now_ms,
)

__all__ = [
    'MS_PER_MINUTE',
    'parse_iso_timestamp',
    'parse_time_ms',
    'to_epoch_ms',
    'from_epoch_ms',
    'format_timestamp',
    'now_utc',
    'now_ms',
]
