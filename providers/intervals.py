"""
Interval algebra over time-of-day windows.

All times are integer minutes since midnight in [0, 1440). A window is the
half-open range [start, end) inside one calendar day; cross-midnight windows
are not supported.

The functions here are pure and never touch the database:
- merge_windows:    sort and fuse overlapping/adjacent windows
- subtract_window:  remove a [cut_start, cut_end) range from every window
- contains_window:  does any window fully hold [start, end)?

IntervalSet wraps a merged, sorted tuple of windows as an immutable value.
"""

from dataclasses import dataclass
from datetime import time

from appointments.exceptions import ValidationError

MINUTES_PER_DAY = 24 * 60


@dataclass(frozen=True, order=True)
class Window:
    """A [start, end) range of minutes since midnight."""

    start: int
    end: int

    def __post_init__(self):
        if not (0 <= self.start < self.end < MINUTES_PER_DAY):
            raise ValueError(
                f"Invalid window [{self.start}, {self.end}): "
                f"need 0 <= start < end < {MINUTES_PER_DAY}."
            )

    @property
    def duration(self) -> int:
        return self.end - self.start

    def overlaps(self, start: int, end: int) -> bool:
        return start < self.end and end > self.start

    def __str__(self):
        return f"{format_minutes(self.start)}-{format_minutes(self.end)}"


# ── Conversions ──────────────────────────────────────────────────────────────


def time_to_minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def minutes_to_time(minutes: int) -> time:
    if not 0 <= minutes < MINUTES_PER_DAY:
        raise ValueError(f"{minutes} is outside a single day.")
    return time(minutes // 60, minutes % 60)


def format_minutes(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def parse_time(value) -> int:
    """
    Convert a time-of-day to minutes since midnight.

    Accepts datetime.time, an int already in minutes, or an "HH:MM[:SS]" string
    (seconds are validated, then dropped).
    Raises ValidationError for anything malformed.
    """
    if isinstance(value, time):
        return time_to_minutes(value)
    if isinstance(value, int) and not isinstance(value, bool):
        if 0 <= value < MINUTES_PER_DAY:
            return value
        raise ValidationError(f"Time {value} is outside a single day.", context={"time": value})
    if isinstance(value, str):
        parts = value.strip().split(":")
        if len(parts) in (2, 3) and all(p.isdigit() for p in parts):
            hours, minutes = int(parts[0]), int(parts[1])
            seconds = int(parts[2]) if len(parts) == 3 else 0
            if 0 <= hours < 24 and 0 <= minutes < 60 and 0 <= seconds < 60:
                return hours * 60 + minutes
    raise ValidationError(
        f"Invalid time format: {value!r}. Expected HH:MM.",
        context={"time": str(value)},
    )


# ── Algebra ──────────────────────────────────────────────────────────────────


def merge_windows(windows) -> list:
    """
    Sort by start and fuse windows that overlap or touch.

    Merging an already-merged list returns it unchanged.
    """
    if not windows:
        return []

    ordered = sorted(windows)
    merged = [ordered[0]]

    for current in ordered[1:]:
        last = merged[-1]
        if current.start <= last.end:
            if current.end > last.end:
                merged[-1] = Window(last.start, current.end)
        else:
            merged.append(current)

    return merged


def _subtract_one(window: Window, cut_start: int, cut_end: int) -> list:
    # No overlap
    if cut_end <= window.start or cut_start >= window.end:
        return [window]

    # Cut covers the whole window
    if cut_start <= window.start and cut_end >= window.end:
        return []

    # Cut covers the leading edge
    if cut_start <= window.start:
        return [Window(cut_end, window.end)]

    # Cut covers the trailing edge
    if cut_end >= window.end:
        return [Window(window.start, cut_start)]

    # Interior cut splits in two
    return [Window(window.start, cut_start), Window(cut_end, window.end)]


def subtract_window(windows, cut_start: int, cut_end: int) -> list:
    """Remove [cut_start, cut_end) from every window. An empty cut is a no-op."""
    if cut_start >= cut_end:
        return list(windows)

    result = []
    for window in windows:
        result.extend(_subtract_one(window, cut_start, cut_end))
    return result


def contains_window(windows, start: int, end: int) -> bool:
    """True when a single window fully holds [start, end)."""
    if start >= end:
        return False
    return any(w.start <= start and end <= w.end for w in windows)


# ── Value type ───────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class IntervalSet:
    """Immutable, sorted, non-overlapping set of windows."""

    windows: tuple = ()

    def __post_init__(self):
        object.__setattr__(self, "windows", tuple(merge_windows(list(self.windows))))

    @classmethod
    def from_pairs(cls, pairs):
        return cls(tuple(Window(start, end) for start, end in pairs))

    def merge(self, other):
        return IntervalSet(self.windows + tuple(other))

    def subtract(self, cut_start: int, cut_end: int):
        return IntervalSet(tuple(subtract_window(self.windows, cut_start, cut_end)))

    def contains(self, start: int, end: int) -> bool:
        return contains_window(self.windows, start, end)

    def to_list(self):
        return [(w.start, w.end) for w in self.windows]

    @property
    def total_minutes(self) -> int:
        return sum(w.duration for w in self.windows)

    def __iter__(self):
        return iter(self.windows)

    def __len__(self):
        return len(self.windows)

    def __bool__(self):
        return bool(self.windows)

    def __str__(self):
        return ", ".join(str(w) for w in self.windows) or "(closed)"


EMPTY = IntervalSet()
