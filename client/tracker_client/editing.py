"""Optimistic editing of the entries shown on a day timeline.

The editor owns the local view of one day. Drags change the view while the
pointer moves and talk to the API once, when the gesture ends. Deletes are
applied immediately and can be taken back for a short while by re-creating
the entry.
"""

from __future__ import annotations

import bisect
import enum
import logging
import time
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, List, Optional, Union

from tracker.durations import duration_seconds, end_from_duration

from .api_client import ApiClient, ApiError
from .models import TimeEntry
from .timeline import TimelineLayout

logger = logging.getLogger(__name__)

DRAG_THRESHOLD_PX = 3


class EditError(ValueError):
    """Raised for edits rejected before anything is sent to the API."""


class EditKind(str, enum.Enum):
    RESIZE_START = "resize-start"
    RESIZE_END = "resize-end"
    MOVE = "move"


class ClickResult(str, enum.Enum):
    IGNORED = "ignored"
    ARMED = "armed"
    DELETED = "deleted"


@dataclass(slots=True)
class Idle:
    pass


@dataclass(slots=True)
class Dragging:
    kind: EditKind
    snapshot: TimeEntry
    candidate: TimeEntry
    origin_x: float
    dragged: bool = False


@dataclass(slots=True)
class Committing:
    snapshot: TimeEntry
    candidate: TimeEntry


EditState = Union[Idle, Dragging, Committing]


@dataclass(slots=True)
class PendingUndo:
    entry: TimeEntry
    expires_at: float


class TimelineEditor:
    def __init__(
        self,
        api: ApiClient,
        layout: TimelineLayout,
        day: date,
        *,
        undo_seconds: float = 10,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.api = api
        self.layout = layout
        self.day = day
        self.undo_seconds = undo_seconds
        self._clock = clock
        self.entries: List[TimeEntry] = []
        self.state: EditState = Idle()
        self._pending_undo: Optional[PendingUndo] = None
        self._armed_id: Optional[int] = None
        self._suppress_click = False

    # ------------------------------------------------------------------
    # View
    # ------------------------------------------------------------------
    def load(self) -> List[TimeEntry]:
        self.entries = sorted(self.api.list_time_entries(day=self.day), key=lambda entry: entry.start_time)
        return self.entries

    def entry(self, entry_id: int) -> TimeEntry:
        for entry in self.entries:
            if entry.entry_id == entry_id:
                return entry
        raise EditError(f"Time entry {entry_id} is not on this timeline")

    def _replace(self, updated: TimeEntry) -> None:
        self.entries = [updated if entry.entry_id == updated.entry_id else entry for entry in self.entries]

    def _insert(self, entry: TimeEntry) -> None:
        starts = [item.start_time for item in self.entries]
        self.entries.insert(bisect.bisect_right(starts, entry.start_time), entry)

    def _remove(self, entry_id: int) -> None:
        self.entries = [entry for entry in self.entries if entry.entry_id != entry_id]

    # ------------------------------------------------------------------
    # Drag gestures
    # ------------------------------------------------------------------
    def begin_drag(self, entry_id: int, kind: Union[EditKind, str], pointer_x: float) -> Dragging:
        if not isinstance(self.state, Idle):
            raise EditError("Another edit is still in progress")
        entry = self.entry(entry_id)
        if entry.is_running:
            raise EditError("Running time entries cannot be edited; stop the timer first.")
        self.state = Dragging(kind=EditKind(kind), snapshot=entry, candidate=entry, origin_x=pointer_x)
        self._armed_id = None
        return self.state

    def drag_to(self, pointer_x: float) -> TimeEntry:
        state = self._dragging()
        delta = pointer_x - state.origin_x
        if abs(delta) > DRAG_THRESHOLD_PX:
            state.dragged = True
        if not state.dragged:
            return state.candidate
        candidate = self._candidate(state.kind, state.snapshot, delta)
        if candidate is not None:
            state.candidate = candidate
            self._replace(candidate)
        return state.candidate

    def end_drag(self) -> Optional[TimeEntry]:
        """Finish the gesture. Returns the saved entry, or None when nothing changed."""
        state = self._dragging()
        self._suppress_click = state.dragged
        if state.candidate.same_interval(state.snapshot):
            self._replace(state.snapshot)
            self.state = Idle()
            return None

        self.state = Committing(snapshot=state.snapshot, candidate=state.candidate)
        try:
            saved = self.api.update_time_entry(state.candidate)
        except Exception:
            logger.warning("Reverting %s of time entry %s", state.kind.value, state.snapshot.entry_id)
            self._replace(state.snapshot)
            raise
        finally:
            self.state = Idle()
        logger.info("Saved %s of time entry %s", state.kind.value, saved.entry_id)
        self._replace(saved)
        return saved

    def cancel_drag(self) -> None:
        state = self._dragging()
        self._replace(state.snapshot)
        self.state = Idle()

    def _dragging(self) -> Dragging:
        if not isinstance(self.state, Dragging):
            raise EditError("No drag in progress")
        return self.state

    def _candidate(self, kind: EditKind, snapshot: TimeEntry, delta: float) -> Optional[TimeEntry]:
        layout = self.layout
        start, end = snapshot.start_time, snapshot.end_time
        if kind is EditKind.RESIZE_START:
            new_start = layout.position_to_time(layout.time_to_position(start, self.day) + delta, self.day)
            if new_start >= end:
                return None
            return snapshot.with_interval(new_start, end)
        if kind is EditKind.RESIZE_END:
            new_end = layout.position_to_time(layout.time_to_position(end, self.day) + delta, self.day)
            if new_end <= start:
                return None
            return snapshot.with_interval(start, new_end)

        length = duration_seconds(start, end)
        window_start, window_end = layout.window_bounds(self.day)
        new_start = layout.position_to_time(layout.time_to_position(start, self.day) + delta, self.day)
        new_end = end_from_duration(new_start, length)
        if new_end > window_end:
            new_end = window_end
            new_start = window_end - timedelta(seconds=length)
        if new_start < window_start:
            return None
        return snapshot.with_interval(new_start, new_end)

    # ------------------------------------------------------------------
    # Clicks
    # ------------------------------------------------------------------
    def click(self, entry_id: int) -> ClickResult:
        """First click arms an entry for deletion, a second click deletes it.

        The click that ends a drag is swallowed.
        """
        if self._suppress_click:
            self._suppress_click = False
            return ClickResult.IGNORED
        if self._armed_id != entry_id:
            self._armed_id = entry_id
            return ClickResult.ARMED
        self._armed_id = None
        self.delete(entry_id)
        return ClickResult.DELETED

    # ------------------------------------------------------------------
    # Manual create
    # ------------------------------------------------------------------
    def create_manual(
        self,
        task_id: Optional[int],
        start: Optional[datetime],
        end: Optional[datetime] = None,
        duration: Optional[int] = None,
    ) -> TimeEntry:
        """Create a finished entry. With ``end`` given the duration is taken from the endpoints."""
        if task_id is None:
            raise EditError("A task is required.")
        if start is None:
            raise EditError("A start time is required.")
        if end is None and duration is None:
            raise EditError("Either an end time or a duration (in seconds) is required.")
        if end is None:
            if duration < 0:
                raise EditError("Invalid duration.")
            end = end_from_duration(start, duration)
        if end < start:
            raise EditError("The end time cannot be before the start time.")
        created = self.api.create_time_entry(task_id, start, end_time=end, duration=duration_seconds(start, end))
        logger.info("Created time entry %s for task %s", created.entry_id, task_id)
        if self.layout.local_day(created.start_time) == self.day:
            self._insert(created)
        return created

    def create_at(self, task_id: int, pointer_x: float, minutes: int = 60) -> TimeEntry:
        """Create an entry where the timeline was clicked, nudged clear of its neighbours."""
        start = self.layout.position_to_time(pointer_x, self.day)
        end = end_from_duration(start, minutes * 60)
        start, end = self.layout.find_non_overlapping_slot(start, end, self.entries)
        return self.create_manual(task_id, start, end)

    # ------------------------------------------------------------------
    # Delete / undo
    # ------------------------------------------------------------------
    def delete(self, entry_id: int) -> TimeEntry:
        entry = self.entry(entry_id)
        if entry.is_running:
            raise EditError("Running time entries cannot be deleted here; stop the timer first.")
        self._remove(entry_id)
        try:
            self.api.delete_time_entry(entry_id)
        except ApiError:
            logger.warning("Restoring time entry %s after failed delete", entry_id)
            self._insert(entry)
            raise
        logger.info("Deleted time entry %s", entry_id)
        self._pending_undo = PendingUndo(entry=entry, expires_at=self._clock() + self.undo_seconds)
        return entry

    @property
    def can_undo(self) -> bool:
        return self._pending_undo is not None and self._clock() < self._pending_undo.expires_at

    def undo(self) -> Optional[TimeEntry]:
        """Re-create the last deleted entry. Returns None once the window has passed."""
        if not self.can_undo:
            self._pending_undo = None
            return None
        entry = self._pending_undo.entry
        restored = self.create_manual(entry.task_id, entry.start_time, entry.end_time)
        self._pending_undo = None
        logger.info("Restored time entry %s as %s", entry.entry_id, restored.entry_id)
        return restored


__all__ = [
    "ClickResult",
    "Committing",
    "Dragging",
    "EditError",
    "EditKind",
    "Idle",
    "TimelineEditor",
]
