from __future__ import annotations
from datetime import date, datetime, time, timedelta
from typing import Any, Callable, Dict, List, Optional
from zoneinfo import ZoneInfo
import logging
import os

import httplib2
from google.auth.exceptions import GoogleAuthError
from google.oauth2 import service_account
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from .errors import BackendUnavailable, EventNotFound, InvalidInput, SourceUnavailable
from .models import Event, EventDraft
from .text import strip_urls

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/calendar"]

_MISSING_STATUSES = {403, 404, 410}

# DNS failures, dropped connections, expired or revoked tokens
_TRANSPORT_ERRORS = (OSError, httplib2.HttpLib2Error, GoogleAuthError)

def _get_creds(credentials_path: str, token_path: str) -> Credentials:
    if os.path.exists(token_path):
        return Credentials.from_authorized_user_file(token_path, SCOPES)

    flow = InstalledAppFlow.from_client_secrets_file(credentials_path, SCOPES)
    creds = flow.run_local_server(port=0)
    os.makedirs(os.path.dirname(token_path) or ".", exist_ok=True)
    with open(token_path, "w", encoding="utf-8") as f:
        f.write(creds.to_json())
    return creds

def load_google_credentials(
    credentials_path: str = "",
    token_path: str = "",
    service_account_path: str = "",
):
    if service_account_path:
        return service_account.Credentials.from_service_account_file(service_account_path, scopes=SCOPES)
    if not token_path:
        raise ValueError("GOOGLE_TOKEN_JSON or GOOGLE_SERVICE_ACCOUNT_JSON must be set for Google calendars")
    return _get_creds(credentials_path, token_path)

def build_calendar_service(creds) -> Any:
    return build("calendar", "v3", credentials=creds, cache_discovery=False)


def _parse_datetime(value: str) -> datetime:
    # fromisoformat only learned the "Z" suffix in 3.11
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)

def event_from_item(item: Dict[str, Any], source_id: str, tz: ZoneInfo) -> Event:
    """Normalize one Google Calendar API event resource."""
    title = strip_urls(item.get("summary")) or "(No title)"
    description = strip_urls(item.get("description"))
    location = strip_urls(item.get("location")) or None

    start_obj = item.get("start", {})
    end_obj = item.get("end", {})

    # All-day events have "date" not "dateTime"
    if "date" in start_obj:
        start = datetime.combine(date.fromisoformat(start_obj["date"]), time.min, tzinfo=tz)
        if end_obj.get("date"):
            end = datetime.combine(date.fromisoformat(end_obj["date"]), time.min, tzinfo=tz)
        else:
            end = start + timedelta(days=1)
        all_day = True
    else:
        start = _parse_datetime(start_obj["dateTime"]).astimezone(tz)
        end = _parse_datetime(end_obj["dateTime"]).astimezone(tz)
        all_day = False

    return Event(
        id=str(item.get("id", "")),
        source=source_id,
        title=title,
        start=start,
        end=max(start, end),
        description=description,
        location=location,
        all_day=all_day,
    )


class GoogleCalendarSource:
    """A single Google calendar id, read and written through Calendar API v3."""

    def __init__(self, calendar_id: str, tz: ZoneInfo, service_factory: Callable[[], Any]) -> None:
        self.calendar_id = calendar_id
        self.source_id = f"google:{calendar_id}"
        self.tz = tz
        self._service_factory = service_factory
        self._service: Optional[Any] = None

    def _events(self) -> Any:
        # googleapiclient services are not thread-safe; each source owns one.
        if self._service is None:
            self._service = self._service_factory()
        return self._service.events()

    def list_events(self, start: datetime, end: datetime) -> List[Event]:
        items: List[Dict[str, Any]] = []
        page_token: Optional[str] = None
        while True:
            try:
                resp = self._events().list(
                    calendarId=self.calendar_id,
                    timeMin=start.isoformat(),
                    timeMax=end.isoformat(),
                    singleEvents=True,
                    orderBy="startTime",
                    pageToken=page_token,
                ).execute()
            except (HttpError,) + _TRANSPORT_ERRORS as e:
                raise SourceUnavailable(self.source_id, f"Google list failed for {self.source_id}: {e}") from e

            items.extend(resp.get("items", []))
            page_token = resp.get("nextPageToken")
            if not page_token:
                break

        return [
            event_from_item(item, self.source_id, self.tz)
            for item in items
            if item.get("status") != "cancelled"
        ]

    def insert_event(self, draft: EventDraft) -> Event:
        body: Dict[str, Any] = {
            "summary": draft.title,
            "start": self._time_field(draft.start),
            "end": self._time_field(draft.end),
        }
        if draft.description:
            body["description"] = draft.description
        if draft.location:
            body["location"] = draft.location

        created = self._call(
            lambda: self._events().insert(calendarId=self.calendar_id, body=body).execute()
        )
        logger.info("Created event %s on %s", created.get("id"), self.source_id)
        return event_from_item(created, self.source_id, self.tz)

    def delete_event(self, event_id: str) -> None:
        self._call(
            lambda: self._events().delete(calendarId=self.calendar_id, eventId=event_id).execute(),
            event_id=event_id,
        )
        logger.info("Deleted event %s on %s", event_id, self.source_id)

    def patch_event_times(self, event_id: str, start: datetime, end: datetime) -> Event:
        # patch merges nested objects; clear "date" so all-day events become timed
        body = {"start": self._time_field(start, clear_date=True), "end": self._time_field(end, clear_date=True)}
        patched = self._call(
            lambda: self._events().patch(calendarId=self.calendar_id, eventId=event_id, body=body).execute(),
            event_id=event_id,
        )
        logger.info("Moved event %s on %s to %s", event_id, self.source_id, start.isoformat())
        return event_from_item(patched, self.source_id, self.tz)

    def _time_field(self, value: datetime, clear_date: bool = False) -> Dict[str, Optional[str]]:
        field: Dict[str, Optional[str]] = {"dateTime": value.isoformat(), "timeZone": self.tz.key}
        if clear_date:
            field["date"] = None
        return field

    def _call(self, request: Callable[[], Dict[str, Any]], event_id: Optional[str] = None) -> Dict[str, Any]:
        try:
            return request()
        except HttpError as e:
            status = int(getattr(e.resp, "status", 0) or 0)
            if event_id is not None and status in _MISSING_STATUSES:
                raise EventNotFound(self.source_id, event_id) from e
            if status == 400:
                raise InvalidInput(f"Google rejected the request for {self.source_id}: {e}") from e
            raise BackendUnavailable(self.source_id, f"Google returned HTTP {status} for {self.source_id}") from e
        except _TRANSPORT_ERRORS as e:
            raise BackendUnavailable(self.source_id, f"Google request failed for {self.source_id}: {e}") from e
