from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, List, Optional
from zoneinfo import ZoneInfo

from .config import hours_are_valid
from .errors import InvalidInput
from .models import BusyInterval, FreeSlot
from .reader import MultiCalendarReader


def working_window(day: date, tz: ZoneInfo, start_hour: int, end_hour: int) -> tuple[datetime, datetime]:
    day_start = datetime.combine(day, time.min, tzinfo=tz)
    return day_start + timedelta(hours=start_hour), day_start + timedelta(hours=end_hour)


def compute_open_slots(
    busy: Iterable[BusyInterval],
    window_start: datetime,
    window_end: datetime,
    duration: timedelta,
    limit: Optional[int] = None,
) -> List[FreeSlot]:
    """Greedy earliest-slot-per-gap sweep over busy intervals.

    Each gap inside the window yields at most one slot, placed at the start
    of the gap. The cursor only ever moves forward, so intervals that
    overlap or start before the window are absorbed. Arithmetic runs in UTC
    so gaps across a DST change have their real length; slots come back in
    the window's zone.
    """
    if duration <= timedelta(0):
        raise InvalidInput("Slot duration must be positive")
    if limit is not None and limit <= 0:
        return []

    local = window_start.tzinfo

    def slot_at(cursor: datetime) -> FreeSlot:
        return FreeSlot(start=cursor.astimezone(local), end=(cursor + duration).astimezone(local))

    slots: List[FreeSlot] = []
    cursor = window_start.astimezone(timezone.utc)
    end = window_end.astimezone(timezone.utc)
    intervals = sorted(
        (b.start.astimezone(timezone.utc), b.end.astimezone(timezone.utc)) for b in busy
    )
    for busy_start, busy_end in intervals:
        if cursor >= end:
            break
        if busy_end <= cursor:
            continue
        if min(busy_start, end) - cursor >= duration:
            slots.append(slot_at(cursor))
            if limit is not None and len(slots) >= limit:
                return slots
        cursor = max(cursor, busy_end)

    if end - cursor >= duration:
        slots.append(slot_at(cursor))
    return slots


class FreeSlotFinder:
    def __init__(self, reader: MultiCalendarReader, start_hour: int = 8, end_hour: int = 22) -> None:
        if not hours_are_valid(start_hour, end_hour):
            raise ValueError(f"Working hours must lie within one day, got {start_hour}-{end_hour}")
        self.reader = reader
        self.start_hour = start_hour
        self.end_hour = end_hour

    def window(self, day: date) -> tuple[datetime, datetime]:
        return working_window(day, self.reader.tz, self.start_hour, self.end_hour)

    def find_open_slots(self, day: date, duration_minutes: int, limit: Optional[int] = None) -> List[FreeSlot]:
        if duration_minutes <= 0:
            raise InvalidInput(f"Duration must be a positive number of minutes, got {duration_minutes}")
        if limit is not None and limit <= 0:
            return []

        window_start, window_end = self.window(day)
        events = self.reader.list_events_for_day(day)
        # All-day events do not block a specific hour
        busy = [BusyInterval.from_event(e) for e in events if not e.all_day]
        return compute_open_slots(busy, window_start, window_end, timedelta(minutes=duration_minutes), limit)
