from __future__ import annotations

import datetime as dt

import pytest

from tracker.durations import duration_seconds, end_from_duration

START = dt.datetime(2024, 1, 1, 9, 0, tzinfo=dt.timezone.utc)


@pytest.mark.parametrize(
    "delta, expected",
    [
        (dt.timedelta(0), 0),
        (dt.timedelta(hours=1, minutes=30), 5400),
        (dt.timedelta(seconds=10, milliseconds=499), 10),
        (dt.timedelta(seconds=10, milliseconds=500), 11),
    ],
)
def test_duration_seconds_rounds_half_up(delta: dt.timedelta, expected: int):
    assert duration_seconds(START, START + delta) == expected


def test_duration_seconds_rejects_inverted_interval():
    with pytest.raises(ValueError):
        duration_seconds(START, START - dt.timedelta(seconds=1))


def test_end_from_duration_is_second_exact():
    assert end_from_duration(START, 5400) == dt.datetime(2024, 1, 1, 10, 30, tzinfo=dt.timezone.utc)
    assert duration_seconds(START, end_from_duration(START, 4321)) == 4321


def test_end_from_duration_rejects_negative():
    with pytest.raises(ValueError):
        end_from_duration(START, -1)
