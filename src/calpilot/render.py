from __future__ import annotations
from datetime import date, datetime
from typing import List, Optional
from zoneinfo import ZoneInfo

from .actions import (
    CANCEL_EVENT,
    CREATE_EVENT,
    DAY_SUMMARY,
    FIND_FREE_TIME,
    RANGE_SUMMARY,
    RESCHEDULE_EVENT,
    ActionResult,
)
from .errors import AllSourcesUnavailable, BackendUnavailable, CalendarError, EventNotFound, InvalidInput
from .models import Event, FreeSlot

CHAT_REPLY_PROMPT = "Reply with the number and I'll book it."

def _fmt_date(d: date) -> str:
    # Example: Thursday 5 February 2026
    return f"{d:%A} {d.day} {d:%B %Y}"

def _fmt_time(dt: datetime, tz: ZoneInfo) -> str:
    return dt.astimezone(tz).strftime("%H:%M")

def _event_span(e: Event, tz: ZoneInfo) -> str:
    if e.all_day:
        return "all day"
    return f"{_fmt_time(e.start, tz)} to {_fmt_time(e.end, tz)}"


def render_day_summary(day: date, events: List[Event], tz: ZoneInfo) -> str:
    if not events:
        return f"Your schedule is wide open on **{_fmt_date(day)}**."
    lines = [f"**Your schedule for {_fmt_date(day)}:**", ""]
    for i, e in enumerate(events, 1):
        lines.append(f"{i}. **{e.title}** - {_event_span(e, tz)}")
    return "\n".join(lines)


def render_range_summary(first: date, last: date, events: List[Event], tz: ZoneInfo) -> str:
    if not events:
        return f"You have no events between **{_fmt_date(first)}** and **{_fmt_date(last)}**."
    lines = [f"**Your schedule from {_fmt_date(first)} to {_fmt_date(last)}:**", ""]
    for e in events:
        local_day = e.start.astimezone(tz).date()
        lines.append(f"- **{e.title}** - {_fmt_date(local_day)} ({_event_span(e, tz)})")
    return "\n".join(lines)


def render_slots(day: date, minutes: int, slots: List[FreeSlot], tz: ZoneInfo) -> str:
    if not slots:
        return f"No free {minutes}-minute slots on **{_fmt_date(day)}**."
    lines = [f"**Available {minutes}-minute slots for {_fmt_date(day)}:**", ""]
    for s in slots:
        lines.append(f"- {_fmt_time(s.start, tz)} - {_fmt_time(s.end, tz)}")
    return "\n".join(lines)


def render_slot_options(
    title: str, day: date, slots: List[FreeSlot], tz: ZoneInfo, reply_prompt: str = CHAT_REPLY_PROMPT
) -> str:
    if not slots:
        return f"I couldn't find a free time on **{_fmt_date(day)}**. Want me to check the next day?"
    lines = [f"**A few options for {title} on {_fmt_date(day)}:**", ""]
    for i, s in enumerate(slots, 1):
        lines.append(f"{i}. **{_fmt_time(s.start, tz)} - {_fmt_time(s.end, tz)}**")
    lines.append("")
    lines.append(reply_prompt)
    return "\n".join(lines)


def render_candidates(verb: str, events: List[Event], tz: ZoneInfo, reply_prompt: Optional[str] = None) -> str:
    lines = [f"I found several events. Which one should I {verb}?", ""]
    for i, e in enumerate(events, 1):
        local_day = e.start.astimezone(tz).date()
        lines.append(f"{i}. **{e.title}** - {_fmt_date(local_day)} ({_event_span(e, tz)})")
    if reply_prompt:
        lines.extend(["", reply_prompt])
    return "\n".join(lines)


def render_result(result: ActionResult, tz: ZoneInfo, reply_prompt: Optional[str] = None) -> str:
    """Chat text for a result. reply_prompt replaces the default "reply with a number" line."""
    if result.action == DAY_SUMMARY:
        return render_day_summary(result.day, result.events, tz)
    if result.action == RANGE_SUMMARY:
        return render_range_summary(result.day, result.range_end, result.events, tz)
    if result.action == FIND_FREE_TIME:
        return render_slots(result.day, result.duration_minutes or 0, result.slots, tz)
    if result.action == CREATE_EVENT:
        if result.event is None:
            return render_slot_options(
                result.title or "the event", result.day, result.slots, tz, reply_prompt or CHAT_REPLY_PROMPT
            )
        e = result.event
        return (
            f"**Event added:** {e.title}\n"
            f"{_fmt_date(e.start.astimezone(tz).date())}, {_event_span(e, tz)}"
        )
    if result.action == CANCEL_EVENT:
        if result.awaiting_choice:
            return render_candidates("cancel", result.candidates, tz, reply_prompt)
        return f"Cancelled **{result.event.title}**."
    if result.action == RESCHEDULE_EVENT:
        if result.awaiting_choice:
            return render_candidates("move", result.candidates, tz, reply_prompt)
        e = result.event
        return f"Moved **{e.title}** to {_fmt_date(e.start.astimezone(tz).date())}, {_event_span(e, tz)}."
    return "I'm not sure what you mean, but I'm here to help."


def render_error(error: CalendarError) -> str:
    if isinstance(error, InvalidInput):
        return f"I couldn't do that: {error}"
    if isinstance(error, EventNotFound):
        return "Sorry, I couldn't find that event. It may already be gone."
    if isinstance(error, AllSourcesUnavailable):
        return "Sorry, I couldn't reach any of your calendars right now."
    if isinstance(error, BackendUnavailable):
        return "Sorry, the calendar service didn't respond. Please try again in a moment."
    return "Sorry, something went wrong with your calendar."
