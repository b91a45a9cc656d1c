from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from datetime import date, datetime, timedelta
from typing import List, Optional, Tuple
from zoneinfo import ZoneInfo

from dotenv import load_dotenv

from .actions import (
    DEFAULT_CONVERSATION,
    ActionRequest,
    ActionResult,
    Assistant,
    parse_date,
    parse_duration,
    parse_time,
)
from .calendar_google import GoogleCalendarSource, build_calendar_service, load_google_credentials
from .calendar_icloud import ICloudCalendarSource
from .config import AppConfig, load_config
from .errors import CalendarError
from .models import Event
from .preferences import load_preferences
from .reader import CalendarSource
from .render import render_day_summary, render_error, render_result

CONFIG_PATH_DEFAULT = "/opt/calpilot/config.yaml"
PREFERENCES_PATH_DEFAULT = "/var/lib/calpilot/preferences.json"
CLI_REPLY_PROMPT = "Run the same command again with --choose N to pick one."

logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    # Suppress some noisy loggers
    logging.getLogger("googleapiclient").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def build_sources(cfg: AppConfig, tz: ZoneInfo) -> List[CalendarSource]:
    """Sources in configuration order; the first one receives new events."""
    sources: List[CalendarSource] = []

    if cfg.google.enabled:
        creds_path = os.environ.get("GOOGLE_CREDENTIALS_JSON", "")
        token_path = os.environ.get("GOOGLE_TOKEN_JSON", "")
        service_account_path = os.environ.get("GOOGLE_SERVICE_ACCOUNT_JSON", "")
        if service_account_path or token_path:
            def service_factory():
                creds = load_google_credentials(creds_path, token_path, service_account_path)
                return build_calendar_service(creds)

            for cal_id in cfg.google.calendar_ids:
                sources.append(GoogleCalendarSource(cal_id, tz, service_factory))
        else:
            logger.warning("Google enabled but no GOOGLE_TOKEN_JSON/GOOGLE_SERVICE_ACCOUNT_JSON set; skipping Google.")

    if cfg.icloud.enabled:
        user = os.environ.get("ICLOUD_USERNAME", "")
        pw = os.environ.get("ICLOUD_APP_PASSWORD", "")
        if not (user and pw):
            logger.warning("iCloud enabled but ICLOUD_USERNAME/ICLOUD_APP_PASSWORD not set; skipping iCloud.")
        elif not cfg.icloud.calendar_name_allowlist:
            logger.warning("iCloud enabled but calendar_name_allowlist is empty; skipping iCloud.")
        else:
            for name in cfg.icloud.calendar_name_allowlist:
                sources.append(ICloudCalendarSource(name, tz, user, pw))

    return sources


def _build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="calpilot", description="Personal scheduling assistant")
    ap.add_argument("--config", default=CONFIG_PATH_DEFAULT)
    ap.add_argument("--preferences", default=PREFERENCES_PATH_DEFAULT)
    ap.add_argument("--log-level", default=os.environ.get("CALPILOT_LOG_LEVEL", "INFO"))
    sub = ap.add_subparsers(dest="command", required=True)

    sub.add_parser("summary", help="today's schedule")
    sub.add_parser("weekly", help="next week's schedule, Monday to Sunday")

    day = sub.add_parser("day")
    day.add_argument("date")

    rng = sub.add_parser("range")
    rng.add_argument("start")
    rng.add_argument("end")

    free = sub.add_parser("free")
    free.add_argument("date")
    free.add_argument("--duration")
    free.add_argument("--limit", type=int)

    search = sub.add_parser("search")
    search.add_argument("query")
    search.add_argument("--days-back", type=int)
    search.add_argument("--days-forward", type=int)

    create = sub.add_parser("create")
    create.add_argument("--title", required=True)
    create.add_argument("--date", required=True)
    create.add_argument("--start-time")
    create.add_argument("--duration")
    create.add_argument("--description")
    create.add_argument("--location")
    create.add_argument("--choose", type=int, metavar="N", help="book suggested slot N when no start time is given")

    cancel = sub.add_parser("cancel")
    cancel.add_argument("source_id")
    cancel.add_argument("event_id")

    move = sub.add_parser("reschedule")
    move.add_argument("source_id")
    move.add_argument("event_id")
    move.add_argument("--date", required=True)
    move.add_argument("--start-time", required=True)
    move.add_argument("--duration", type=int, required=True)

    handle = sub.add_parser("handle", help="run a JSON action request from the intent classifier")
    handle.add_argument("--payload", required=True, help="JSON object payload")
    handle.add_argument("--conversation", default=DEFAULT_CONVERSATION)
    handle.add_argument("--choose", type=int, metavar="N", help="pick option N if the request asks for a choice")
    return ap


def run_command(args: argparse.Namespace, assistant: Assistant) -> str:
    tz = assistant.tz

    if args.command == "summary":
        today = datetime.now(tz=tz).date()
        return render_day_summary(today, assistant.reader.list_events_for_day(today), tz)

    if args.command == "weekly":
        first, last = next_week(datetime.now(tz=tz).date())
        request = ActionRequest(action="range_summary", range_start=first.isoformat(), range_end=last.isoformat())
        summary = render_result(assistant.handle(request), tz)
        return f"**Weekly planning:** here is the week ahead.\n\n{summary}"

    if args.command == "day":
        return render_result(assistant.handle(ActionRequest(action="day_summary", date=args.date)), tz)

    if args.command == "range":
        request = ActionRequest(action="range_summary", range_start=args.start, range_end=args.end)
        return render_result(assistant.handle(request), tz)

    if args.command == "free":
        minutes = parse_duration(args.duration, assistant.default_duration_minutes)
        day = parse_date(args.date)
        slots = assistant.finder.find_open_slots(day, minutes, limit=args.limit)
        return render_result(ActionResult(action="find_free_time", day=day, duration_minutes=minutes, slots=slots), tz)

    if args.command == "search":
        events = assistant.matcher.search_events_by_text(args.query, args.days_back, args.days_forward)
        return json.dumps([_event_payload(e, tz) for e in events], indent=2, ensure_ascii=False)

    if args.command == "create":
        request = ActionRequest(
            action="create_event",
            title=args.title,
            date=args.date,
            start_time=args.start_time,
            duration=args.duration,
            description=args.description,
            location=args.location,
        )
        return _settle_choice(assistant, assistant.handle(request), DEFAULT_CONVERSATION, args.choose)

    if args.command == "cancel":
        assistant.writer.cancel_event_by_id(args.source_id, args.event_id)
        return json.dumps({"ok": True}, indent=2)

    if args.command == "reschedule":
        start = datetime.combine(parse_date(args.date), parse_time(args.start_time), tzinfo=tz)
        end = start + timedelta(minutes=parse_duration(args.duration, 0))
        moved = assistant.writer.reschedule_event_by_id(args.source_id, args.event_id, start, end)
        return json.dumps(_event_payload(moved, tz), indent=2, ensure_ascii=False)

    if args.command == "handle":
        payload = json.loads(args.payload)
        result = assistant.handle_payload(payload, args.conversation)
        return _settle_choice(assistant, result, args.conversation, args.choose)

    raise ValueError(f"Unknown command {args.command!r}")


def _settle_choice(assistant: Assistant, result: ActionResult, conversation_id: str, choose: Optional[int]) -> str:
    # pending choices live in memory, so a CLI run has to resolve its own
    if not result.awaiting_choice:
        return render_result(result, assistant.tz)
    if choose is None:
        return render_result(result, assistant.tz, reply_prompt=CLI_REPLY_PROMPT)
    return render_result(assistant.choose(conversation_id, choose), assistant.tz)


def next_week(today: date) -> Tuple[date, date]:
    """Monday and Sunday of the week after the one containing today."""
    monday = today + timedelta(days=7 - today.weekday())
    return monday, monday + timedelta(days=6)


def _event_payload(e: Event, tz: ZoneInfo) -> dict:
    return {
        "id": e.id,
        "source": e.source,
        "title": e.title,
        "start": e.start.astimezone(tz).isoformat(),
        "end": e.end.astimezone(tz).isoformat(),
        "all_day": e.all_day,
        "location": e.location or "",
        "description": e.description,
    }


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    load_dotenv()
    setup_logging(args.log_level)

    cfg = load_config(args.config)
    tz = ZoneInfo(cfg.timezone)
    prefs = load_preferences(args.preferences)
    assistant = Assistant.from_config(cfg, build_sources(cfg, tz), prefs)

    try:
        print(run_command(args, assistant))
    except CalendarError as e:
        logger.error("%s failed: %s", args.command, e)
        print(render_error(e))
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
