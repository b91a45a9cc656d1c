from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

@dataclass(frozen=True)
class Event:
    id: str
    source: str                 # source id, e.g. "google:primary" / "icloud:Home"
    title: str
    start: datetime             # timezone-aware
    end: datetime               # timezone-aware
    description: str = ""
    location: Optional[str] = None
    all_day: bool = False

@dataclass(frozen=True)
class BusyInterval:
    start: datetime
    end: datetime

    @classmethod
    def from_event(cls, event: Event) -> "BusyInterval":
        return cls(start=event.start, end=event.end)

@dataclass(frozen=True)
class FreeSlot:
    start: datetime
    end: datetime

@dataclass(frozen=True)
class EventDraft:
    title: str
    start: datetime
    end: datetime
    description: Optional[str] = None
    location: Optional[str] = None
