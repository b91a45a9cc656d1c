from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable, List, Optional

from .models import Event
from .reader import MultiCalendarReader
from .text import normalize_text

STOPWORDS = frozenset(
    {
        # articles, pronouns
        "a", "an", "the", "my", "me", "i", "our", "this", "that", "it",
        # prepositions and connectives
        "to", "for", "with", "on", "at", "in", "of", "from", "by", "about", "and", "up",
        # scheduling verbs
        "cancel", "move", "book", "reschedule", "delete", "remove", "shift", "push",
        "schedule", "please", "event", "meeting",
    }
)

_TOKEN_PUNCTUATION = ".,!?;:'\"()[]"


def query_tokens(query: str) -> List[str]:
    tokens = []
    for raw in normalize_text(query).split():
        token = raw.strip(_TOKEN_PUNCTUATION)
        if token and token not in STOPWORDS:
            tokens.append(token)
    return tokens


def matches(event: Event, query: str) -> bool:
    q = query.strip().lower()
    if not q:
        return False

    title = event.title.lower()
    description = event.description.lower()
    if q in title or q in description:
        return True

    tokens = query_tokens(q)
    if not tokens:
        return False
    haystack = f"{title} {description}"
    return all(token in haystack for token in tokens)


class EventMatcher:
    def __init__(
        self,
        reader: MultiCalendarReader,
        days_back: int = 1,
        days_forward: int = 30,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.reader = reader
        self.days_back = days_back
        self.days_forward = days_forward
        self._clock = clock or (lambda: datetime.now(tz=reader.tz))

    def search_events_by_text(
        self,
        query: str,
        days_back: Optional[int] = None,
        days_forward: Optional[int] = None,
    ) -> List[Event]:
        if not query.strip():
            return []
        now = self._clock()
        start = now - timedelta(days=self.days_back if days_back is None else days_back)
        end = now + timedelta(days=self.days_forward if days_forward is None else days_forward)
        return [e for e in self.reader.list_events(start, end) if matches(e, query)]
