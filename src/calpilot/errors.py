from __future__ import annotations


class CalendarError(Exception):
    """Base class for request-scoped calendar failures."""


class InvalidInput(CalendarError):
    """Request is malformed; no backend call was attempted."""


class SourceUnavailable(CalendarError):
    def __init__(self, source_id: str, message: str = "") -> None:
        super().__init__(message or f"Calendar source {source_id} is unavailable")
        self.source_id = source_id


class AllSourcesUnavailable(CalendarError):
    def __init__(self, source_ids: list[str]) -> None:
        super().__init__("No calendar source answered: " + ", ".join(source_ids))
        self.source_ids = source_ids


class EventNotFound(CalendarError):
    def __init__(self, source_id: str, event_id: str = "", message: str = "") -> None:
        super().__init__(message or f"Event {event_id!r} not found on {source_id}")
        self.source_id = source_id
        self.event_id = event_id


class BackendUnavailable(CalendarError):
    """Timeout, rate limit or server error from a calendar backend."""

    def __init__(self, source_id: str, message: str = "") -> None:
        super().__init__(message or f"Calendar backend for {source_id} failed")
        self.source_id = source_id
