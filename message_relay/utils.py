"""
Time helpers shared by the store, the cache and the API layer.
"""

import time
from datetime import datetime, timezone

SENT_AT_FORMAT = "%Y-%m-%d %H:%M:%S"


def utc_now() -> datetime:
    """
    Current time as a naive UTC datetime.

    All timestamps in the database and the cache are naive UTC, so values read back
    from SQLite compare and sort against values produced here.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def format_sent_at(value: datetime) -> str:
    """Format a send timestamp for API responses (e.g. 2025-01-15 10:00:00)."""
    return value.strftime(SENT_AT_FORMAT)


def current_timestamp_ns() -> int:
    """Unix timestamp in nanoseconds, used in response envelopes."""
    return time.time_ns()
