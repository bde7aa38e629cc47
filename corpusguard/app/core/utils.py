"""Utility functions for corpusguard."""

import time
from datetime import datetime, timedelta, timezone


def now_millis() -> int:
    """Current wall-clock time as integer epoch milliseconds."""
    return time.time_ns() // 1_000_000


def millis_to_iso(epoch_ms: int) -> str:
    """Format epoch milliseconds as an ISO-8601 UTC timestamp.

    The output matches the ``YYYY-MM-DDTHH:MM:SS.mmmZ`` shape that browser
    clients produce with ``Date.prototype.toISOString``.

    Examples:
        >>> millis_to_iso(0)
        '1970-01-01T00:00:00.000Z'
        >>> millis_to_iso(1700000000123)
        '2023-11-14T22:13:20.123Z'
    """
    seconds, millis = divmod(epoch_ms, 1000)
    dt = datetime.fromtimestamp(seconds, tz=timezone.utc) + timedelta(milliseconds=millis)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")
