from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional


@dataclass
class PendingChoice:
    kind: str                   # action name awaiting a numbered reply
    options: List[Any]
    expires_at: datetime
    context: Dict[str, Any] = field(default_factory=dict)


class PendingChoiceStore:
    """Short-lived numbered choices, one per conversation, used at most once."""

    def __init__(self, ttl: timedelta, clock: Callable[[], datetime]) -> None:
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[str, PendingChoice] = {}

    def put(self, conversation_id: str, kind: str, options: List[Any], **context: Any) -> PendingChoice:
        now = self._clock()
        # drop choices from conversations that never replied
        for key in [k for k, e in self._entries.items() if now >= e.expires_at]:
            del self._entries[key]

        entry = PendingChoice(
            kind=kind,
            options=list(options),
            expires_at=now + self.ttl,
            context=context,
        )
        self._entries[conversation_id] = entry
        return entry

    def peek(self, conversation_id: str) -> Optional[PendingChoice]:
        entry = self._entries.get(conversation_id)
        if entry is None:
            return None
        if self._clock() >= entry.expires_at:
            del self._entries[conversation_id]
            return None
        return entry

    def take(self, conversation_id: str) -> Optional[PendingChoice]:
        entry = self.peek(conversation_id)
        if entry is not None:
            del self._entries[conversation_id]
        return entry

    def clear(self, conversation_id: str) -> None:
        self._entries.pop(conversation_id, None)
