"""
Half-open time intervals.

Every span in the engine is ``[start, end)``: a match ending at 10:15 and
another starting at 10:15 do not overlap.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta


def minutes(value: float) -> timedelta:
    """Convert a number of minutes to a timedelta."""
    return timedelta(minutes=value)


def to_minutes(delta: timedelta) -> float:
    """Convert a timedelta to (possibly fractional) minutes."""
    return delta.total_seconds() / 60


def spans_overlap(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    """True if ``[start_a, end_a)`` and ``[start_b, end_b)`` share any instant."""
    return start_a < end_b and start_b < end_a


@dataclass(frozen=True)
class Interval:
    """A half-open ``[start, end)`` span of time."""
    start: datetime
    end: datetime

    def __post_init__(self):
        if self.end < self.start:
            raise ValueError(f"Interval end {self.end} is before start {self.start}")

    @property
    def minutes(self) -> float:
        return to_minutes(self.end - self.start)

    def overlaps(self, other: "Interval") -> bool:
        return spans_overlap(self.start, self.end, other.start, other.end)

    def contains(self, other: "Interval") -> bool:
        """True if ``other`` lies entirely inside this interval."""
        return self.start <= other.start and other.end <= self.end

    def gap_to(self, other: "Interval") -> timedelta:
        """
        Idle time between two intervals.

        Zero when they touch, negative when they overlap.
        """
        if self.end <= other.start:
            return other.start - self.end
        if other.end <= self.start:
            return self.start - other.end
        return max(self.start, other.start) - min(self.end, other.end)

    def shifted(self, delay_minutes: float) -> "Interval":
        delta = minutes(delay_minutes)
        return Interval(self.start + delta, self.end + delta)


def time_grid(start: datetime, end: datetime, step_minutes: float, length_minutes: float = 0) -> list[datetime]:
    """
    Candidate start times from ``start`` in ``step_minutes`` increments.

    Only times ``t`` with ``t + length_minutes <= end`` are returned, so a
    match of that length placed at any grid time fits inside the window.
    """
    if step_minutes <= 0:
        raise ValueError("Grid step must be positive")

    times = []
    step = minutes(step_minutes)
    length = minutes(length_minutes)
    current = start
    while current < end and current + length <= end:
        times.append(current)
        current += step
    return times
