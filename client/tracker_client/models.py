"""Data models for the timeline client."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional

from tracker.durations import duration_seconds


@dataclass(slots=True)
class TimeEntry:
    """A time entry as shown on the timeline."""

    entry_id: int
    task_id: int
    start_time: datetime
    end_time: Optional[datetime] = None
    duration: Optional[int] = None
    task_name: Optional[str] = None
    project_name: Optional[str] = None
    project_color: Optional[str] = None
    project_icon_type: Optional[str] = None
    project_icon_value: Optional[str] = None

    @property
    def is_running(self) -> bool:
        return self.end_time is None

    def with_interval(self, start: datetime, end: datetime) -> "TimeEntry":
        """Copy with new endpoints and a duration derived from them."""
        return replace(self, start_time=start, end_time=end, duration=duration_seconds(start, end))

    def same_interval(self, other: "TimeEntry") -> bool:
        return self.start_time == other.start_time and self.end_time == other.end_time


@dataclass(slots=True)
class ActiveTimer:
    """The running timer as reported by the server."""

    entry_id: int
    task_id: int
    started_at: datetime
    task_name: Optional[str] = None
    project_name: Optional[str] = None
    client_name: Optional[str] = None


__all__ = ["ActiveTimer", "TimeEntry"]
