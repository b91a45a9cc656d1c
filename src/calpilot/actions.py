"""Executes structured action requests produced by the intent classifier.

The classifier (an external LLM collaborator) turns a chat message into a
small JSON object; this module validates it, runs the matching calendar
operation and returns structured results for the reply formatter.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence
from zoneinfo import ZoneInfo

from .config import AppConfig
from .errors import EventNotFound, InvalidInput
from .matcher import EventMatcher
from .models import Event, EventDraft, FreeSlot
from .mutations import CalendarWriter
from .preferences import Preferences
from .reader import CalendarSource, MultiCalendarReader, day_bounds
from .sessions import PendingChoiceStore
from .slots import FreeSlotFinder

logger = logging.getLogger(__name__)

DAY_SUMMARY = "day_summary"
RANGE_SUMMARY = "range_summary"
FIND_FREE_TIME = "find_free_time"
CREATE_EVENT = "create_event"
CANCEL_EVENT = "cancel_event"
RESCHEDULE_EVENT = "reschedule_event"

ACTIONS = (DAY_SUMMARY, RANGE_SUMMARY, FIND_FREE_TIME, CREATE_EVENT, CANCEL_EVENT, RESCHEDULE_EVENT)

DEFAULT_CONVERSATION = "default"

_DURATION_RE = re.compile(r"^(\d+)\s*(m|min|mins|minutes?)?$")


@dataclass(frozen=True)
class ActionRequest:
    action: str
    title: Optional[str] = None
    date: Optional[str] = None
    start_time: Optional[str] = None
    duration: Optional[str] = None
    range_start: Optional[str] = None
    range_end: Optional[str] = None
    target_event: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ActionRequest":
        # older classifier prompts emit "intent" instead of "action"
        action = _clean(payload.get("action")) or _clean(payload.get("intent")) or ""
        if action not in ACTIONS:
            raise InvalidInput(f"Unsupported action {action!r}")
        return cls(
            action=action,
            title=_clean(payload.get("title")),
            date=_clean(payload.get("date")),
            start_time=_clean(payload.get("start_time")),
            duration=_clean(payload.get("duration")),
            range_start=_clean(payload.get("range_start")),
            range_end=_clean(payload.get("range_end")),
            target_event=_clean(payload.get("target_event")),
            description=_clean(payload.get("description")),
            location=_clean(payload.get("location")),
        )


@dataclass
class ActionResult:
    action: str
    events: List[Event] = field(default_factory=list)
    slots: List[FreeSlot] = field(default_factory=list)
    candidates: List[Event] = field(default_factory=list)
    event: Optional[Event] = None
    day: Optional[date] = None
    range_end: Optional[date] = None
    duration_minutes: Optional[int] = None
    title: Optional[str] = None
    awaiting_choice: bool = False


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _require(value: Optional[str], name: str) -> str:
    if not value:
        raise InvalidInput(f"Missing required field: {name}")
    return value


def parse_date(value: Optional[str], name: str = "date") -> date:
    raw = _require(value, name)
    try:
        return date.fromisoformat(raw[:10])
    except ValueError as e:
        raise InvalidInput(f"Invalid {name}: {raw!r} (expected YYYY-MM-DD)") from e


def parse_time(value: Optional[str], name: str = "start_time") -> time:
    raw = _require(value, name)
    try:
        hh, mm = raw.split(":")[:2]
        return time(hour=int(hh), minute=int(mm))
    except ValueError as e:
        raise InvalidInput(f"Invalid {name}: {raw!r} (expected HH:MM)") from e


def parse_duration(value: Any, default: int) -> int:
    if value is None or value == "":
        return default
    if isinstance(value, int) and not isinstance(value, bool):
        minutes = value
    else:
        m = _DURATION_RE.match(str(value).strip().lower())
        if not m:
            raise InvalidInput(f"Invalid duration: {value!r}")
        minutes = int(m.group(1))
    if minutes <= 0:
        raise InvalidInput(f"Duration must be positive, got {minutes}")
    return minutes


class Assistant:
    def __init__(
        self,
        reader: MultiCalendarReader,
        finder: FreeSlotFinder,
        matcher: EventMatcher,
        writer: CalendarWriter,
        sessions: PendingChoiceStore,
        default_duration_minutes: int = 60,
        slot_suggestions: int = 3,
    ) -> None:
        self.reader = reader
        self.finder = finder
        self.matcher = matcher
        self.writer = writer
        self.sessions = sessions
        self.default_duration_minutes = default_duration_minutes
        self.slot_suggestions = slot_suggestions

    @classmethod
    def from_config(
        cls,
        cfg: AppConfig,
        sources: Sequence[CalendarSource],
        prefs: Optional[Preferences] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> "Assistant":
        prefs = prefs or Preferences()
        tz = ZoneInfo(cfg.timezone)
        clock = clock or (lambda: datetime.now(tz=tz))
        hours = prefs.working_hours(cfg)

        reader = MultiCalendarReader(sources, tz, max_workers=cfg.max_parallel_reads)
        return cls(
            reader=reader,
            finder=FreeSlotFinder(reader, start_hour=hours.start_hour, end_hour=hours.end_hour),
            matcher=EventMatcher(reader, cfg.search.days_back, cfg.search.days_forward, clock=clock),
            writer=CalendarWriter(sources),
            sessions=PendingChoiceStore(timedelta(minutes=cfg.pending_choice_ttl_minutes), clock),
            default_duration_minutes=prefs.default_duration(cfg),
            slot_suggestions=cfg.slot_suggestions,
        )

    @property
    def tz(self) -> ZoneInfo:
        return self.reader.tz

    def handle(self, request: ActionRequest, conversation_id: str = DEFAULT_CONVERSATION) -> ActionResult:
        # A fresh request supersedes whatever choice was still open.
        self.sessions.clear(conversation_id)
        logger.info("Handling %s for conversation %s", request.action, conversation_id)

        if request.action == DAY_SUMMARY:
            return self._day_summary(request)
        if request.action == RANGE_SUMMARY:
            return self._range_summary(request)
        if request.action == FIND_FREE_TIME:
            return self._find_free_time(request)
        if request.action == CREATE_EVENT:
            return self._create_event(request, conversation_id)
        if request.action == CANCEL_EVENT:
            return self._cancel_event(request, conversation_id)
        if request.action == RESCHEDULE_EVENT:
            return self._reschedule_event(request, conversation_id)
        raise InvalidInput(f"Unsupported action {request.action!r}")

    def handle_payload(self, payload: Dict[str, Any], conversation_id: str = DEFAULT_CONVERSATION) -> ActionResult:
        return self.handle(ActionRequest.from_payload(payload), conversation_id)

    def choose(self, conversation_id: str, number: int) -> ActionResult:
        """Complete a pending choice with the user's 1-based pick."""
        entry = self.sessions.peek(conversation_id)
        if entry is None:
            raise InvalidInput("There is nothing waiting for a choice")
        if not 1 <= number <= len(entry.options):
            raise InvalidInput(f"Please pick a number between 1 and {len(entry.options)}")
        self.sessions.take(conversation_id)

        picked = entry.options[number - 1]
        ctx = entry.context
        if entry.kind == CREATE_EVENT:
            created = self.writer.create_event(
                EventDraft(
                    title=ctx["title"],
                    start=picked.start,
                    end=picked.end,
                    description=ctx.get("description"),
                    location=ctx.get("location"),
                )
            )
            return ActionResult(action=CREATE_EVENT, event=created, title=created.title)
        if entry.kind == CANCEL_EVENT:
            self.writer.cancel_event_by_id(picked.source, picked.id)
            return ActionResult(action=CANCEL_EVENT, event=picked)
        if entry.kind == RESCHEDULE_EVENT:
            return self._move(picked, ctx["new_start"], ctx.get("duration_minutes"))
        raise InvalidInput(f"Unsupported pending choice {entry.kind!r}")

    def _day_summary(self, request: ActionRequest) -> ActionResult:
        day = parse_date(request.date)
        return ActionResult(action=DAY_SUMMARY, day=day, events=self.reader.list_events_for_day(day))

    def _range_summary(self, request: ActionRequest) -> ActionResult:
        first = parse_date(request.range_start, "range_start")
        last = parse_date(request.range_end, "range_end")
        if last < first:
            raise InvalidInput("range_end is before range_start")
        start, _ = day_bounds(first, self.tz)
        _, end = day_bounds(last, self.tz)
        return ActionResult(
            action=RANGE_SUMMARY,
            day=first,
            range_end=last,
            events=self.reader.list_events(start, end),
        )

    def _find_free_time(self, request: ActionRequest) -> ActionResult:
        day = parse_date(request.date)
        minutes = parse_duration(request.duration, self.default_duration_minutes)
        return ActionResult(
            action=FIND_FREE_TIME,
            day=day,
            duration_minutes=minutes,
            slots=self.finder.find_open_slots(day, minutes),
        )

    def _create_event(self, request: ActionRequest, conversation_id: str) -> ActionResult:
        title = _require(request.title, "title")
        day = parse_date(request.date)
        minutes = parse_duration(request.duration, self.default_duration_minutes)

        if not request.start_time:
            options = self.finder.find_open_slots(day, minutes, limit=self.slot_suggestions)
            if options:
                self.sessions.put(
                    conversation_id,
                    CREATE_EVENT,
                    options,
                    title=title,
                    description=request.description,
                    location=request.location,
                )
            return ActionResult(
                action=CREATE_EVENT,
                day=day,
                duration_minutes=minutes,
                slots=options,
                title=title,
                awaiting_choice=bool(options),
            )

        start = self._start_within_hours(day, request.start_time)
        created = self.writer.create_event(
            EventDraft(
                title=title,
                start=start,
                end=start + timedelta(minutes=minutes),
                description=request.description,
                location=request.location,
            )
        )
        return ActionResult(action=CREATE_EVENT, day=day, duration_minutes=minutes, event=created, title=title)

    def _cancel_event(self, request: ActionRequest, conversation_id: str) -> ActionResult:
        target = _require(request.target_event, "target_event")
        candidates = self._candidates(target)
        if len(candidates) > 1:
            self.sessions.put(conversation_id, CANCEL_EVENT, candidates)
            return ActionResult(action=CANCEL_EVENT, candidates=candidates, awaiting_choice=True)

        event = candidates[0]
        self.writer.cancel_event_by_id(event.source, event.id)
        return ActionResult(action=CANCEL_EVENT, event=event)

    def _reschedule_event(self, request: ActionRequest, conversation_id: str) -> ActionResult:
        target = _require(request.target_event, "target_event")
        day = parse_date(request.date)
        new_start = self._start_within_hours(day, request.start_time)
        minutes = parse_duration(request.duration, 0) if request.duration else None

        candidates = self._candidates(target)
        if len(candidates) > 1:
            self.sessions.put(
                conversation_id,
                RESCHEDULE_EVENT,
                candidates,
                new_start=new_start,
                duration_minutes=minutes,
            )
            return ActionResult(action=RESCHEDULE_EVENT, candidates=candidates, day=day, awaiting_choice=True)
        return self._move(candidates[0], new_start, minutes)

    def _move(self, event: Event, new_start: datetime, duration_minutes: Optional[int]) -> ActionResult:
        length = timedelta(minutes=duration_minutes) if duration_minutes else event.end - event.start
        moved = self.writer.reschedule_event_by_id(event.source, event.id, new_start, new_start + length)
        return ActionResult(action=RESCHEDULE_EVENT, event=moved, day=new_start.date())

    def _candidates(self, target: str) -> List[Event]:
        candidates = self.matcher.search_events_by_text(target)
        if not candidates:
            raise EventNotFound("", message=f"No upcoming event matches {target!r}")
        return candidates

    def _start_within_hours(self, day: date, start_time: Optional[str]) -> datetime:
        start = datetime.combine(day, parse_time(start_time), tzinfo=self.tz)
        window_start, window_end = self.finder.window(day)
        if not window_start <= start < window_end:
            raise InvalidInput(
                f"{start:%H:%M} falls outside working hours "
                f"({window_start:%H:%M}-{window_end:%H:%M})"
            )
        return start
