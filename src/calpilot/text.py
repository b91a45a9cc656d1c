from __future__ import annotations

import re
from typing import Optional

_URL_RE = re.compile(r"(?:https?://|www\.)[^\s<>\"']+", re.IGNORECASE)
_ANGLE_LINK_RE = re.compile(r"<\s*>")
_INLINE_SPACE_RE = re.compile(r"[ \t]{2,}")


def strip_urls(value: Optional[str]) -> str:
    """Remove embedded links so nothing downstream renders a link preview."""
    if not value:
        return ""
    text = _URL_RE.sub("", value)
    text = _ANGLE_LINK_RE.sub("", text)
    lines = [_INLINE_SPACE_RE.sub(" ", line).strip() for line in text.splitlines()]
    return "\n".join(line for line in lines if line).strip()


def normalize_text(value: Optional[str]) -> str:
    if not value:
        return ""
    return " ".join(value.strip().lower().split())
