"""Half-open time windows ``[start, end)``.

Two windows that only touch at a boundary do not overlap, so a unit returned
at 10:00 can be handed out again from 10:00.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional, Tuple

from sqlalchemy import and_

from rental_engine.core.exceptions import ValidationError
from rental_engine.core.utils import ensure_utc, utcnow

ONE_DAY = timedelta(days=1)


def overlaps(a_start, a_end, b_start, b_end) -> bool:
    return a_start < b_end and b_start < a_end


@dataclass(frozen=True)
class Window:
    start: datetime
    end: datetime

    def __post_init__(self):
        object.__setattr__(self, "start", ensure_utc(self.start))
        object.__setattr__(self, "end", ensure_utc(self.end))

    @classmethod
    def instant(cls, at: Optional[datetime] = None) -> "Window":
        at = at or utcnow()
        return cls(at, at)

    @classmethod
    def from_bounds(
        cls, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> "Window":
        """Build a query window; with no bounds it is the instant ``[now, now)``."""
        if start is None and end is None:
            return cls.instant()
        if start is None or end is None:
            raise ValidationError("Both window start and end are required")
        window = cls(start, end)
        if window.end < window.start:
            raise ValidationError("Window end must not precede its start")
        return window

    @property
    def is_instant(self) -> bool:
        return self.start == self.end

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def overlaps(self, start: datetime, end: datetime) -> bool:
        if self.is_instant:
            return ensure_utc(start) <= self.start < ensure_utc(end)
        return overlaps(self.start, self.end, ensure_utc(start), ensure_utc(end))


def overlap_clause(start_col, end_col, window: Window):
    """SQL predicate selecting rows whose ``[start_col, end_col)`` meets the window."""
    if window.is_instant:
        return and_(start_col <= window.start, window.start < end_col)
    return and_(start_col < window.end, window.start < end_col)


def peak_overlap(segments: Iterable[Tuple[datetime, datetime, int]], window: Window) -> int:
    """Highest total amount held at any instant of ``window`` by the given segments."""
    if window.is_instant:
        return sum(amount for start, end, amount in segments if window.overlaps(start, end))

    points = []
    for start, end, amount in segments:
        start, end = ensure_utc(start), ensure_utc(end)
        if not window.overlaps(start, end):
            continue
        # 0 sorts releases ahead of acquisitions at the same instant
        points.append((max(start, window.start), 1, amount))
        points.append((min(end, window.end), 0, -amount))

    points.sort(key=lambda p: (p[0], p[1]))
    peak = level = 0
    for _, _, delta in points:
        level += delta
        peak = max(peak, level)
    return peak
