from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, Optional, Sequence

from .errors import InvalidInput
from .models import Event, EventDraft
from .reader import CalendarSource

logger = logging.getLogger(__name__)


class CalendarWriter:
    """Thin single-calendar writes. New events always go to the first source."""

    def __init__(self, sources: Sequence[CalendarSource]) -> None:
        self._sources: Dict[str, CalendarSource] = {}
        self._primary: Optional[CalendarSource] = None
        for source in sources:
            self._sources.setdefault(source.source_id, source)
            if self._primary is None:
                self._primary = source

    @property
    def primary_source_id(self) -> Optional[str]:
        return self._primary.source_id if self._primary else None

    def create_event(self, draft: EventDraft) -> Event:
        if self._primary is None:
            raise InvalidInput("No calendar source is configured to receive new events")
        logger.info("Creating %r on %s", draft.title, self._primary.source_id)
        return self._primary.insert_event(draft)

    def cancel_event_by_id(self, source_id: str, event_id: str) -> None:
        self._source(source_id, event_id).delete_event(event_id)

    def reschedule_event_by_id(self, source_id: str, event_id: str, new_start: datetime, new_end: datetime) -> Event:
        if new_start > new_end:
            raise InvalidInput("New start must not be after new end")
        return self._source(source_id, event_id).patch_event_times(event_id, new_start, new_end)

    def _source(self, source_id: str, event_id: str) -> CalendarSource:
        if not source_id or not event_id:
            raise InvalidInput("Both a source id and an event id are required")
        source = self._sources.get(source_id)
        if source is None:
            raise InvalidInput(f"Unknown calendar source {source_id!r}")
        return source
