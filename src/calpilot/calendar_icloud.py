from __future__ import annotations
from datetime import date, datetime, time, timedelta
import logging
from typing import Any, Callable, List, Optional
from zoneinfo import ZoneInfo

import caldav
from caldav.elements import dav
from caldav.lib.error import DAVError, NotFoundError

from .errors import BackendUnavailable, EventNotFound, SourceUnavailable
from .models import Event, EventDraft
from .text import strip_urls

logger = logging.getLogger(__name__)

ICLOUD_CALDAV_URL = "https://caldav.icloud.com/"
_ICAL_COMPAT_MSG = "Ical data was modified to avoid compatibility issues"


class _IcalCompatibilityFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        return _ICAL_COMPAT_MSG not in record.getMessage()


def _install_ical_compatibility_filter() -> None:
    root_logger = logging.getLogger()
    if any(isinstance(f, _IcalCompatibilityFilter) for f in root_logger.filters):
        return
    root_logger.addFilter(_IcalCompatibilityFilter())


def _as_local(value: Any, tz: ZoneInfo) -> datetime:
    if isinstance(value, datetime):
        return value.astimezone(tz) if value.tzinfo else value.replace(tzinfo=tz)
    return datetime.combine(value, time.min, tzinfo=tz)


def _text_prop(vevent: Any, name: str) -> str:
    prop = getattr(vevent, name, None)
    if prop is None:
        return ""
    return str(prop.value)


def event_from_vevent(vevent: Any, source_id: str, tz: ZoneInfo) -> Event:
    """Normalize a vobject VEVENT into an Event."""
    dtstart = vevent.dtstart.value
    # dtstart may be date (all-day) or datetime
    all_day = isinstance(dtstart, date) and not isinstance(dtstart, datetime)
    start = _as_local(dtstart, tz)

    if hasattr(vevent, "dtend"):
        end = _as_local(vevent.dtend.value, tz)
    elif hasattr(vevent, "duration"):
        end = start + vevent.duration.value
    else:
        # dtend for all-day is usually the next day (exclusive)
        end = start + timedelta(days=1) if all_day else start

    location = strip_urls(_text_prop(vevent, "location")) or None
    return Event(
        id=_text_prop(vevent, "uid"),
        source=source_id,
        title=strip_urls(_text_prop(vevent, "summary")) or "(No title)",
        start=start,
        end=max(start, end),
        description=strip_urls(_text_prop(vevent, "description")),
        location=location,
        all_day=all_day,
    )


def _calendar_name(cal: Any) -> str:
    return getattr(cal, "name", None) or cal.get_properties([dav.DisplayName()]).get(dav.DisplayName(), "")


class ICloudCalendarSource:
    """One named iCloud calendar reached over CalDAV."""

    def __init__(
        self,
        calendar_name: str,
        tz: ZoneInfo,
        username: str,
        app_password: str,
        client_factory: Optional[Callable[[], Any]] = None,
    ) -> None:
        self.calendar_name = calendar_name
        self.source_id = f"icloud:{calendar_name}"
        self.tz = tz
        self._client_factory = client_factory or (
            lambda: caldav.DAVClient(url=ICLOUD_CALDAV_URL, username=username, password=app_password)
        )
        self._calendar: Optional[Any] = None

    def _get_calendar(self) -> Any:
        if self._calendar is not None:
            return self._calendar

        _install_ical_compatibility_filter()
        principal = self._client_factory().principal()
        for cal in principal.calendars():
            if _calendar_name(cal) == self.calendar_name:
                self._calendar = cal
                return cal
        raise SourceUnavailable(self.source_id, f"iCloud calendar {self.calendar_name!r} not found")

    def list_events(self, start: datetime, end: datetime) -> List[Event]:
        try:
            results = self._get_calendar().search(start=start, end=end, event=True, expand=True)
        except (DAVError, OSError) as e:
            raise SourceUnavailable(self.source_id, f"iCloud search failed for {self.source_id}: {e}") from e

        events: List[Event] = []
        for r in results:
            vevent = getattr(r.vobject_instance, "vevent", None)
            if vevent is None:
                continue
            events.append(event_from_vevent(vevent, self.source_id, self.tz))
        return events

    def insert_event(self, draft: EventDraft) -> Event:
        props = {"dtstart": draft.start, "dtend": draft.end, "summary": draft.title}
        if draft.description:
            props["description"] = draft.description
        if draft.location:
            props["location"] = draft.location

        try:
            created = self._get_calendar().save_event(**props)
        except (DAVError, OSError) as e:
            raise BackendUnavailable(self.source_id, f"iCloud create failed for {self.source_id}: {e}") from e
        event = event_from_vevent(created.vobject_instance.vevent, self.source_id, self.tz)
        logger.info("Created event %s on %s", event.id, self.source_id)
        return event

    def delete_event(self, event_id: str) -> None:
        obj = self._find(event_id)
        try:
            obj.delete()
        except NotFoundError as e:
            raise EventNotFound(self.source_id, event_id) from e
        except (DAVError, OSError) as e:
            raise BackendUnavailable(self.source_id, f"iCloud delete failed for {self.source_id}: {e}") from e
        logger.info("Deleted event %s on %s", event_id, self.source_id)

    def patch_event_times(self, event_id: str, start: datetime, end: datetime) -> Event:
        obj = self._find(event_id)
        vevent = obj.vobject_instance.vevent
        vevent.dtstart.value = start
        if hasattr(vevent, "dtend"):
            vevent.dtend.value = end
        elif hasattr(vevent, "duration"):
            vevent.duration.value = end - start
        else:
            vevent.add("dtend").value = end

        try:
            obj.save()
        except (DAVError, OSError) as e:
            raise BackendUnavailable(self.source_id, f"iCloud update failed for {self.source_id}: {e}") from e
        logger.info("Moved event %s on %s to %s", event_id, self.source_id, start.isoformat())
        return event_from_vevent(vevent, self.source_id, self.tz)

    def _find(self, event_id: str) -> Any:
        try:
            return self._get_calendar().event_by_uid(event_id)
        except NotFoundError as e:
            raise EventNotFound(self.source_id, event_id) from e
        except (DAVError, OSError) as e:
            raise BackendUnavailable(self.source_id, f"iCloud lookup failed for {self.source_id}: {e}") from e
