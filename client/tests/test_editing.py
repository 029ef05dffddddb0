from __future__ import annotations

import datetime as dt
from dataclasses import replace
from typing import List, Optional

import pytest

from tracker_client.api_client import ApiError
from tracker_client.editing import (
    ClickResult,
    Committing,
    Dragging,
    EditError,
    EditKind,
    Idle,
    TimelineEditor,
)
from tracker_client.models import TimeEntry
from tracker_client.timeline import TimelineConfig, TimelineLayout

UTC = dt.timezone.utc
DAY = dt.date(2024, 1, 1)
PX_PER_MINUTE = 80 / 60


def at(hour: int, minute: int = 0) -> dt.datetime:
    return dt.datetime.combine(DAY, dt.time(hour, minute), tzinfo=UTC)


class FakeApi:
    def __init__(self, entries: List[TimeEntry]):
        self.entries = {item.entry_id: item for item in entries}
        self.calls: list = []
        self.next_id = 100
        self.fail_with: Optional[Exception] = None
        self.editor: Optional[TimelineEditor] = None

    def _maybe_fail(self):
        if self.fail_with is not None:
            raise self.fail_with

    def list_time_entries(self, *, day=None, **_):
        self.calls.append(("GET", day))
        return list(self.entries.values())

    def update_time_entry(self, entry: TimeEntry) -> TimeEntry:
        self.calls.append(("PUT", entry.entry_id, entry.start_time, entry.end_time, entry.duration))
        if self.editor is not None:
            assert isinstance(self.editor.state, Committing)
        self._maybe_fail()
        saved = replace(entry, task_name="Write report")
        self.entries[entry.entry_id] = saved
        return saved

    def create_time_entry(self, task_id, start_time, *, end_time=None, duration=None) -> TimeEntry:
        self.calls.append(("POST", task_id, start_time, end_time, duration))
        self._maybe_fail()
        created = TimeEntry(
            entry_id=self.next_id,
            task_id=task_id,
            start_time=start_time,
            end_time=end_time,
            duration=duration,
        )
        self.next_id += 1
        self.entries[created.entry_id] = created
        return created

    def delete_time_entry(self, entry_id: int) -> None:
        self.calls.append(("DELETE", entry_id))
        self._maybe_fail()
        del self.entries[entry_id]

    def writes(self) -> list:
        return [call for call in self.calls if call[0] != "GET"]


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def make_entry(entry_id: int, start: dt.datetime, end: Optional[dt.datetime]) -> TimeEntry:
    duration = int((end - start).total_seconds()) if end is not None else None
    return TimeEntry(entry_id=entry_id, task_id=7, start_time=start, end_time=end, duration=duration)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def api() -> FakeApi:
    return FakeApi(
        [
            make_entry(1, at(9), at(10)),
            make_entry(2, at(13), at(14, 30)),
            make_entry(3, at(16), None),
        ]
    )


@pytest.fixture()
def editor(api: FakeApi, clock: FakeClock) -> TimelineEditor:
    layout = TimelineLayout(TimelineConfig(timezone="UTC"))
    editor = TimelineEditor(api, layout, DAY, undo_seconds=10, clock=clock)
    api.editor = editor
    editor.load()
    return editor


def drag(editor: TimelineEditor, entry_id: int, kind: EditKind, minutes: float):
    editor.begin_drag(entry_id, kind, 500)
    editor.drag_to(500 + minutes * PX_PER_MINUTE)


def test_resize_end_commits_once(editor: TimelineEditor, api: FakeApi):
    drag(editor, 1, EditKind.RESIZE_END, 30)
    assert editor.entry(1).end_time == at(10, 30)
    assert api.writes() == []

    saved = editor.end_drag()
    assert saved is not None
    assert api.writes() == [("PUT", 1, at(9), at(10, 30), 5400)]
    assert isinstance(editor.state, Idle)
    assert editor.entry(1).task_name == "Write report"


def test_resize_start_past_end_keeps_previous_candidate(editor: TimelineEditor, api: FakeApi):
    drag(editor, 1, EditKind.RESIZE_START, 30)
    assert editor.entry(1).start_time == at(9, 30)

    editor.drag_to(500 + 90 * PX_PER_MINUTE)
    assert editor.entry(1).start_time == at(9, 30)
    assert editor.entry(1).end_time == at(10)

    editor.end_drag()
    assert api.writes() == [("PUT", 1, at(9, 30), at(10), 1800)]


def test_move_preserves_duration(editor: TimelineEditor, api: FakeApi):
    drag(editor, 2, EditKind.MOVE, 45)
    moved = editor.entry(2)
    assert (moved.start_time, moved.end_time) == (at(13, 45), at(15, 15))
    assert moved.duration == 5400

    editor.end_drag()
    assert api.writes() == [("PUT", 2, at(13, 45), at(15, 15), 5400)]


def test_move_is_clamped_to_window(editor: TimelineEditor):
    drag(editor, 2, EditKind.MOVE, 20 * 60)
    moved = editor.entry(2)
    assert (moved.start_time, moved.end_time) == (at(21, 30), at(23))

    editor.drag_to(500 - 20 * 60 * PX_PER_MINUTE)
    moved = editor.entry(2)
    assert (moved.start_time, moved.end_time) == (at(5), at(6, 30))


def test_gesture_back_to_origin_makes_no_call(editor: TimelineEditor, api: FakeApi):
    drag(editor, 1, EditKind.MOVE, 30)
    editor.drag_to(500)
    assert editor.end_drag() is None
    assert api.writes() == []
    assert editor.entry(1).start_time == at(9)


def test_small_jitter_is_not_a_drag(editor: TimelineEditor, api: FakeApi):
    editor.begin_drag(1, "move", 500)
    editor.drag_to(502)
    assert editor.end_drag() is None
    assert api.writes() == []
    assert editor.click(1) is ClickResult.ARMED


def test_click_after_drag_is_suppressed(editor: TimelineEditor):
    drag(editor, 1, EditKind.MOVE, 30)
    editor.end_drag()
    assert editor.click(1) is ClickResult.IGNORED
    assert editor.click(1) is ClickResult.ARMED


def test_failed_commit_reverts_view(editor: TimelineEditor, api: FakeApi):
    api.fail_with = ApiError("Time entry not found.", status_code=404)
    drag(editor, 1, EditKind.RESIZE_END, 30)

    with pytest.raises(ApiError, match="Time entry not found."):
        editor.end_drag()

    restored = editor.entry(1)
    assert (restored.start_time, restored.end_time, restored.duration) == (at(9), at(10), 3600)
    assert isinstance(editor.state, Idle)
    assert len(api.writes()) == 1


def test_unexpected_commit_error_also_reverts(editor: TimelineEditor, api: FakeApi):
    api.fail_with = RuntimeError("socket closed")
    drag(editor, 2, EditKind.MOVE, 30)

    with pytest.raises(RuntimeError, match="socket closed"):
        editor.end_drag()

    restored = editor.entry(2)
    assert (restored.start_time, restored.end_time) == (at(13), at(14, 30))
    assert isinstance(editor.state, Idle)


def test_cancel_drag_restores_snapshot(editor: TimelineEditor, api: FakeApi):
    drag(editor, 1, EditKind.MOVE, 60)
    assert isinstance(editor.state, Dragging)
    editor.cancel_drag()
    assert editor.entry(1).start_time == at(9)
    assert isinstance(editor.state, Idle)
    assert api.writes() == []


def test_running_entry_cannot_be_dragged(editor: TimelineEditor):
    with pytest.raises(EditError):
        editor.begin_drag(3, EditKind.MOVE, 0)
    assert isinstance(editor.state, Idle)


def test_second_drag_rejected_while_dragging(editor: TimelineEditor):
    editor.begin_drag(1, EditKind.MOVE, 0)
    with pytest.raises(EditError):
        editor.begin_drag(2, EditKind.MOVE, 0)


def test_end_drag_without_drag(editor: TimelineEditor):
    with pytest.raises(EditError):
        editor.end_drag()


def test_create_manual_derives_missing_field(editor: TimelineEditor, api: FakeApi):
    created = editor.create_manual(8, at(11), duration=1800)
    assert api.writes()[-1] == ("POST", 8, at(11), at(11, 30), 1800)
    assert created in editor.entries
    assert [item.entry_id for item in editor.entries][:3] == [1, created.entry_id, 2]

    editor.create_manual(8, at(12), end=at(12, 20))
    assert api.writes()[-1] == ("POST", 8, at(12), at(12, 20), 1200)


def test_create_manual_duration_follows_endpoints(editor: TimelineEditor, api: FakeApi):
    created = editor.create_manual(8, at(11), end=at(12), duration=60)
    assert api.writes()[-1] == ("POST", 8, at(11), at(12), 3600)
    assert created.duration == 3600


@pytest.mark.parametrize(
    "kwargs, message",
    [
        ({"task_id": None, "start": at(9)}, "task"),
        ({"task_id": 7, "start": None, "duration": 60}, "start time"),
        ({"task_id": 7, "start": at(9)}, "end time or a duration"),
        ({"task_id": 7, "start": at(9), "duration": -1}, "Invalid duration"),
        ({"task_id": 7, "start": at(9), "end": at(8)}, "before the start"),
    ],
)
def test_create_manual_validation(editor: TimelineEditor, api: FakeApi, kwargs, message):
    with pytest.raises(EditError, match=message):
        editor.create_manual(**kwargs)
    assert api.writes() == []


def test_create_at_avoids_existing_entries(editor: TimelineEditor, api: FakeApi):
    created = editor.create_at(8, editor.layout.time_to_position(at(9, 30)))
    assert (created.start_time, created.end_time) == (at(10), at(11))


def test_delete_then_undo_recreates_with_new_id(editor: TimelineEditor, api: FakeApi, clock: FakeClock):
    editor.delete(1)
    assert all(item.entry_id != 1 for item in editor.entries)
    assert editor.can_undo

    clock.now += 9
    restored = editor.undo()
    assert restored is not None
    assert restored.entry_id != 1
    assert (restored.task_id, restored.start_time, restored.end_time, restored.duration) == (7, at(9), at(10), 3600)
    assert editor.entries[0] is restored
    assert api.writes() == [("DELETE", 1), ("POST", 7, at(9), at(10), 3600)]
    assert editor.undo() is None


def test_undo_after_window_does_nothing(editor: TimelineEditor, api: FakeApi, clock: FakeClock):
    editor.delete(1)
    clock.now += 10
    assert not editor.can_undo
    assert editor.undo() is None
    assert api.writes() == [("DELETE", 1)]


def test_failed_delete_restores_entry(editor: TimelineEditor, api: FakeApi):
    api.fail_with = ApiError("boom", status_code=500)
    with pytest.raises(ApiError):
        editor.delete(2)
    assert [item.entry_id for item in editor.entries] == [1, 2, 3]
    assert not editor.can_undo


def test_double_click_deletes(editor: TimelineEditor, api: FakeApi):
    assert editor.click(2) is ClickResult.ARMED
    assert editor.click(2) is ClickResult.DELETED
    assert api.writes() == [("DELETE", 2)]
