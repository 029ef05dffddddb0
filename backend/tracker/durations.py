"""Conversions between interval endpoints and whole-second durations.

Every write path, server and client alike, goes through these two functions
so a stored duration never disagrees with its own endpoints.
"""

from __future__ import annotations

import datetime as dt
import math


def duration_seconds(start: dt.datetime, end: dt.datetime) -> int:
    """Return ``end - start`` in whole seconds, halves rounded up.

    Raises ``ValueError`` when ``end`` lies before ``start``.
    """
    if end < start:
        raise ValueError("end must not be before start")
    return int(math.floor((end - start).total_seconds() + 0.5))


def end_from_duration(start: dt.datetime, seconds: int) -> dt.datetime:
    if seconds < 0:
        raise ValueError("duration must not be negative")
    return start + dt.timedelta(seconds=int(seconds))


__all__ = ["duration_seconds", "end_from_duration"]
