from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, time, timezone
from typing import List, Optional, Protocol, Sequence
from zoneinfo import ZoneInfo

from .errors import AllSourcesUnavailable
from .models import Event, EventDraft

logger = logging.getLogger(__name__)

END_OF_DAY = time(23, 59, 59, 999000)


class CalendarSource(Protocol):
    """One independently queried calendar account."""

    source_id: str

    def list_events(self, start: datetime, end: datetime) -> List[Event]: ...

    def insert_event(self, draft: EventDraft) -> Event: ...

    def delete_event(self, event_id: str) -> None: ...

    def patch_event_times(self, event_id: str, start: datetime, end: datetime) -> Event: ...


def day_bounds(day: date, tz: ZoneInfo) -> tuple[datetime, datetime]:
    return (
        datetime.combine(day, time.min, tzinfo=tz),
        datetime.combine(day, END_OF_DAY, tzinfo=tz),
    )


class MultiCalendarReader:
    """Reads every configured source and merges the results chronologically.

    Sources are queried independently (concurrently when more than one
    worker is allowed). A source that fails is logged and contributes no
    events. Equal start times keep source configuration order.
    """

    def __init__(self, sources: Sequence[CalendarSource], tz: ZoneInfo, max_workers: int = 4) -> None:
        self.sources = list(sources)
        self.tz = tz
        self.max_workers = max(1, max_workers)

    def list_events(self, start: datetime, end: datetime) -> List[Event]:
        if start >= end or not self.sources:
            return []

        per_source = self._query_all(start, end)

        failed = [s.source_id for s, events in zip(self.sources, per_source) if events is None]
        if len(failed) == len(self.sources):
            raise AllSourcesUnavailable(failed)

        merged: List[Event] = []
        for events in per_source:
            if events:
                merged.extend(events)
        # list.sort is stable, so ties stay in source order
        merged.sort(key=lambda e: e.start.astimezone(timezone.utc))
        return merged

    def list_events_for_day(self, day: date) -> List[Event]:
        start, end = day_bounds(day, self.tz)
        return self.list_events(start, end)

    def _query_all(self, start: datetime, end: datetime) -> List[Optional[List[Event]]]:
        workers = min(len(self.sources), self.max_workers)
        if workers <= 1:
            return [self._fetch(source, start, end) for source in self.sources]
        with ThreadPoolExecutor(max_workers=workers) as executor:
            return list(executor.map(lambda source: self._fetch(source, start, end), self.sources))

    def _fetch(self, source: CalendarSource, start: datetime, end: datetime) -> Optional[List[Event]]:
        try:
            events = list(source.list_events(start, end))
        except Exception as e:
            logger.warning(
                "Calendar fetch failed for %s; continuing without its events. Error: %s",
                source.source_id,
                e,
            )
            return None
        logger.debug("Fetched %d events from %s", len(events), source.source_id)
        return events
