"""Coordinate math for the one-day timeline.

A day is drawn as a horizontal strip covering ``[start_hour, end_hour)`` of
wall-clock time in the display timezone. Instants are converted to that
timezone in both directions, so positions never depend on the machine's
local offset.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, List, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo

from .config import AppConfig
from .models import TimeEntry

UTC = timezone.utc

ICON_ONLY_WIDTH = 50
COMPACT_WIDTH = 150


@dataclass(slots=True, frozen=True)
class TimelineConfig:
    start_hour: int = 5
    end_hour: int = 23
    pixels_per_hour: float = 80
    snap_minutes: int = 5
    timezone: str = "Pacific/Auckland"
    min_block_width: float = 40

    def __post_init__(self) -> None:
        if not 0 <= self.start_hour < self.end_hour <= 24:
            raise ValueError("timeline hours must satisfy 0 <= start_hour < end_hour <= 24")
        if self.pixels_per_hour <= 0:
            raise ValueError("pixels_per_hour must be positive")
        if self.snap_minutes <= 0:
            raise ValueError("snap_minutes must be positive")

    @classmethod
    def from_app_config(cls, config: AppConfig) -> "TimelineConfig":
        return cls(
            start_hour=config.start_hour,
            end_hour=config.end_hour,
            pixels_per_hour=config.pixels_per_hour,
            snap_minutes=config.snap_minutes,
            timezone=config.timezone,
        )

    @property
    def width(self) -> float:
        return (self.end_hour - self.start_hour) * self.pixels_per_hour

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


@dataclass(slots=True)
class TimelineBlock:
    """An entry placed on the strip."""

    entry: TimeEntry
    left: float
    width: float
    density: str  # "icon", "compact" or "full"


def overlaps(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    """Half-open interval intersection."""
    return start_a < end_b and start_b < end_a


def day_total_seconds(entries: Iterable[TimeEntry]) -> int:
    return sum(entry.duration or 0 for entry in entries if entry.end_time is not None)


class TimelineLayout:
    def __init__(self, config: Optional[TimelineConfig] = None) -> None:
        self.config = config or TimelineConfig()
        self._tz = self.config.tz

    # ------------------------------------------------------------------
    # Coordinate mapping
    # ------------------------------------------------------------------
    def local_day(self, instant: datetime) -> date:
        return self._to_local(instant).date()

    def window_bounds(self, day: date) -> Tuple[datetime, datetime]:
        """UTC instants of the first and last visible moment of ``day``."""
        midnight = datetime.combine(day, time.min)
        start = midnight + timedelta(hours=self.config.start_hour)
        end = midnight + timedelta(hours=self.config.end_hour)
        return self._from_wall_clock(start), self._from_wall_clock(end)

    def time_to_position(self, instant: datetime, day: Optional[date] = None) -> float:
        """Map an instant to a coordinate on the strip.

        Without ``day`` the instant's own local day is used. With ``day`` the
        offset is measured from that day's midnight, so an end time after
        midnight lands past the right edge instead of wrapping around.
        """
        local = self._to_local(instant)
        reference = datetime.combine(day or local.date(), time.min)
        hours = (local.replace(tzinfo=None) - reference).total_seconds() / 3600
        return (hours - self.config.start_hour) * self.config.pixels_per_hour

    def position_to_time(self, coord: float, day: date) -> datetime:
        """Inverse of :meth:`time_to_position`, clamped and snapped to the grid."""
        coord = self.clamp(coord)
        minutes = self.config.start_hour * 60 + coord / self.config.pixels_per_hour * 60
        snap = self.config.snap_minutes
        snapped = math.floor(minutes / snap + 0.5) * snap
        snapped = min(max(snapped, self.config.start_hour * 60), self.config.end_hour * 60)
        wall_clock = datetime.combine(day, time.min) + timedelta(minutes=snapped)
        return self._from_wall_clock(wall_clock)

    def clamp(self, coord: float) -> float:
        return max(0.0, min(float(coord), self.config.width))

    def hour_labels(self) -> List[Tuple[float, str]]:
        labels = []
        for hour in range(self.config.start_hour, self.config.end_hour + 1):
            display = hour % 12 or 12
            suffix = "AM" if hour < 12 or hour == 24 else "PM"
            labels.append(((hour - self.config.start_hour) * self.config.pixels_per_hour, f"{display}{suffix}"))
        return labels

    # ------------------------------------------------------------------
    # Layout and hit-testing
    # ------------------------------------------------------------------
    def span(self, entry: TimeEntry, day: date) -> Tuple[float, float]:
        return self.time_to_position(entry.start_time, day), self.time_to_position(entry.end_time, day)

    def layout_day(self, entries: Iterable[TimeEntry], day: date) -> List[TimelineBlock]:
        blocks: List[TimelineBlock] = []
        for entry in entries:
            if entry.end_time is None:
                continue
            start_px, end_px = self.span(entry, day)
            if start_px >= self.config.width or end_px <= 0:
                continue
            raw_width = end_px - start_px
            if raw_width < ICON_ONLY_WIDTH:
                density = "icon"
            elif raw_width < COMPACT_WIDTH:
                density = "compact"
            else:
                density = "full"
            blocks.append(
                TimelineBlock(
                    entry=entry,
                    left=max(0.0, start_px),
                    width=max(self.config.min_block_width, raw_width),
                    density=density,
                )
            )
        return blocks

    def hit_test(self, coord: float, entries: Iterable[TimeEntry], day: date) -> Optional[TimeEntry]:
        """Return the entry under ``coord``; the latest-starting one wins."""
        hit: Optional[TimeEntry] = None
        for entry in entries:
            if entry.end_time is None:
                continue
            start_px, end_px = self.span(entry, day)
            if start_px <= coord <= end_px and (hit is None or entry.start_time >= hit.start_time):
                hit = entry
        return hit

    # ------------------------------------------------------------------
    # Collision avoidance
    # ------------------------------------------------------------------
    def find_non_overlapping_slot(
        self,
        start: datetime,
        end: datetime,
        entries: Sequence[TimeEntry],
        exclude_id: Optional[int] = None,
    ) -> Tuple[datetime, datetime]:
        """Suggest where ``[start, end)`` can go without colliding.

        The candidate is returned unchanged when it is free. Otherwise the
        slots tried are: right before the earliest conflicting entry (only
        when the candidate starts ahead of it), the first gap wide enough
        for the duration between the entries that follow the earliest
        conflict, then right after the last of them. A slot must stay
        inside the visible window and clear of every other entry. When
        nothing fits, the original overlapping candidate comes back.
        """
        length = end - start
        others = [
            entry
            for entry in entries
            if entry.entry_id != exclude_id and entry.end_time is not None
        ]
        conflicts = sorted(
            (entry for entry in others if overlaps(start, end, entry.start_time, entry.end_time)),
            key=lambda entry: entry.start_time,
        )
        if not conflicts:
            return start, end

        window_start, window_end = self.window_bounds(self.local_day(start))

        def fits(slot_start: datetime, slot_end: datetime) -> bool:
            if slot_start < window_start or slot_end > window_end:
                return False
            return not any(overlaps(slot_start, slot_end, entry.start_time, entry.end_time) for entry in others)

        earliest = conflicts[0]
        if start < earliest.start_time:
            slot = (earliest.start_time - length, earliest.start_time)
            if fits(*slot):
                return slot

        following = sorted(
            (entry for entry in others if entry.start_time >= earliest.start_time),
            key=lambda entry: entry.start_time,
        )
        reach = following[0].end_time
        for entry in following[1:]:
            if entry.start_time - reach >= length:
                slot = (reach, reach + length)
                if fits(*slot):
                    return slot
            reach = max(reach, entry.end_time)

        slot = (reach, reach + length)
        if fits(*slot):
            return slot
        return start, end

    # ------------------------------------------------------------------
    def _to_local(self, instant: datetime) -> datetime:
        if instant.tzinfo is None:
            raise ValueError("timeline instants must be timezone-aware")
        return instant.astimezone(self._tz)

    def _from_wall_clock(self, wall_clock: datetime) -> datetime:
        return wall_clock.replace(tzinfo=self._tz).astimezone(UTC)


__all__ = [
    "TimelineBlock",
    "TimelineConfig",
    "TimelineLayout",
    "day_total_seconds",
    "overlaps",
]
