"""Day calendar view-model.

Pure helpers that turn a day's bookings into render geometry and decide
whether a proposed interval is free. All times are integer minutes since
midnight; nothing here performs I/O.
"""

import logging
import re
import time
from collections import OrderedDict
from dataclasses import dataclass
from datetime import date as Date
from typing import Iterable, List, NamedTuple, Optional, Sequence, Tuple

from errors import OverlapError, ValidationError
from models import Booking

logger = logging.getLogger(__name__)

_TIME_RE = re.compile(r"^(\d{2}):(\d{2})$")
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

MINUTES_PER_DAY = 24 * 60
NEW_BOOKING_WINDOW_MS = 5000


def parse_time(value: str) -> int:
    """``"HH:MM"`` to minutes since midnight. ``"24:00"`` is the end of day."""
    match = _TIME_RE.match(value or "")
    if not match:
        raise ValidationError(f"Invalid time {value!r}, expected HH:MM")
    hours, minutes = int(match.group(1)), int(match.group(2))
    total = hours * 60 + minutes
    if minutes >= 60 or total > MINUTES_PER_DAY:
        raise ValidationError(f"Invalid time {value!r}, expected HH:MM")
    return total


def format_minutes(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def parse_date(value: str) -> Date:
    if not _DATE_RE.match(value or ""):
        raise ValidationError(f"Invalid date {value!r}, expected YYYY-MM-DD")
    try:
        return Date.fromisoformat(value)
    except ValueError:
        raise ValidationError(f"Invalid date {value!r}, expected YYYY-MM-DD") from None


@dataclass(frozen=True)
class TimeWindow:
    """Visible part of the day and the slider step."""

    start: int = 7 * 60
    end: int = 18 * 60
    step: int = 15

    def __post_init__(self):
        if not 0 <= self.start < self.end <= MINUTES_PER_DAY:
            raise ValueError(f"Invalid window {self.start}-{self.end}")
        if self.step <= 0:
            raise ValueError("step must be positive")


DEFAULT_WINDOW = TimeWindow()
FULL_DAY = TimeWindow(start=0, end=MINUTES_PER_DAY)

# 42px gap + ~16px label row per hour, grid starts 8px below the container
PIXELS_PER_HOUR = 58
TOP_OFFSET = 8


class Placement(NamedTuple):
    top: float
    height: float


@dataclass(frozen=True)
class BookingBlock:
    booking: Booking
    top: float
    height: float


def booking_minutes(booking: Booking) -> Tuple[int, int]:
    return parse_time(booking.start_time), parse_time(booking.end_time)


def overlaps(existing: Iterable[Booking], candidate_start: int, candidate_end: int) -> bool:
    """True if ``[candidate_start, candidate_end)`` intersects any booking.

    Adjacent intervals sharing an endpoint do not overlap.
    """
    for booking in existing:
        start, end = booking_minutes(booking)
        if not (candidate_end <= start or candidate_start >= end):
            return True
    return False


def validate_interval(start: int, end: int, window: TimeWindow = DEFAULT_WINDOW) -> None:
    """Reject intervals that must never reach the overlap check."""
    if end <= start:
        raise ValidationError(
            f"End time {format_minutes(end)} must be after start time {format_minutes(start)}"
        )
    if start < window.start or end > window.end:
        raise ValidationError(
            f"Booking must fall between {format_minutes(window.start)} and {format_minutes(window.end)}"
        )
    if (start - window.start) % window.step or (end - window.start) % window.step:
        raise ValidationError(f"Times must be on a {window.step}-minute grid")


def ensure_available(existing: Iterable[Booking], start: int, end: int) -> None:
    if overlaps(existing, start, end):
        raise OverlapError(
            f"Time slot from {format_minutes(start)} to {format_minutes(end)} is already booked. "
            "Please select a different time."
        )


def place(
    booking: Booking,
    window_start: int = DEFAULT_WINDOW.start,
    window_end: int = DEFAULT_WINDOW.end,
    pixels_per_hour: float = PIXELS_PER_HOUR,
    top_offset: float = TOP_OFFSET,
) -> Placement:
    # Not clipped to window_end; off-grid blocks are the renderer's problem
    start, end = booking_minutes(booking)
    offset_minutes = start - window_start
    top = (offset_minutes / 60) * pixels_per_hour + top_offset
    height = ((end - start) / 60) * pixels_per_hour
    return Placement(top=top, height=height)


def layout_day(
    bookings: Sequence[Booking],
    window: TimeWindow = DEFAULT_WINDOW,
    pixels_per_hour: float = PIXELS_PER_HOUR,
    top_offset: float = TOP_OFFSET,
) -> List[BookingBlock]:
    blocks = []
    for booking in bookings:
        try:
            top, height = place(booking, window.start, window.end, pixels_per_hour, top_offset)
        except ValidationError as exc:
            # rows stored before times were validated
            logger.warning("Skipping booking %s on %s: %s", booking.id, booking.date, exc.message)
            continue
        blocks.append(BookingBlock(booking=booking, top=top, height=height))
    return blocks


def hour_labels(window: TimeWindow = DEFAULT_WINDOW) -> List[str]:
    first = -(-window.start // 60)
    last = window.end // 60
    return [format_minutes(hour * 60) for hour in range(first, last + 1)]


def is_recently_created(
    booking_id: str,
    now_ms: Optional[int] = None,
    window_ms: int = NEW_BOOKING_WINDOW_MS,
) -> bool:
    """Read the creation timestamp off the id prefix."""
    prefix = booking_id.split("-", 1)[0]
    if not prefix.isdigit():
        return False
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    age = now_ms - int(prefix)
    return 0 <= age <= window_ms


def partition_key(date: str, calendar_id: Optional[str] = None) -> Tuple[Optional[str], str]:
    return (calendar_id, date)


class BookingCache:
    """Bounded last-known booking lists, least recently used evicted first."""

    def __init__(self, maxsize: int = 32):
        if maxsize < 1:
            raise ValueError("maxsize must be at least 1")
        self.maxsize = maxsize
        self._entries: "OrderedDict[Tuple[Optional[str], str], Tuple[Booking, ...]]" = OrderedDict()

    def get(self, key) -> Optional[List[Booking]]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        self._entries.move_to_end(key)
        return list(entry)

    def put(self, key, bookings: Iterable[Booking]) -> None:
        self._entries[key] = tuple(bookings)
        self._entries.move_to_end(key)
        while len(self._entries) > self.maxsize:
            self._entries.popitem(last=False)

    def invalidate(self, key) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)
