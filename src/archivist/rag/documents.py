"""
Indexed documents, search matches and snippet construction.
"""

import re
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

STOP_WORDS = frozenset(
    {
        "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with",
        "by", "is", "are", "was", "were", "be", "been", "have", "has", "had", "do", "does",
        "did", "will", "would", "could", "should", "this", "that", "these", "those", "i",
        "you", "he", "she", "it", "we", "they", "me", "my", "our", "your", "what", "who",
        "when", "where", "which", "how", "any", "all", "about", "from", "find", "search",
        "show", "get", "tell", "emails", "email", "messages", "message", "mail",
    }
)  # fmt: skip

_WORD_RE = re.compile(r"\b\w+\b")


def extract_keywords(text: str) -> list[str]:
    """Lower-cased content words longer than two characters, first occurrence order."""
    words = _WORD_RE.findall(text.lower())
    return list(dict.fromkeys(w for w in words if len(w) > 2 and w not in STOP_WORDS))


def tokenize(text: str) -> list[str]:
    return _WORD_RE.findall(text.lower())


class SearchMode(Enum):
    """Strategy that produced a match."""

    VECTOR = "vector"
    KEYWORD = "keyword"
    DIRECT = "direct"
    SAMPLE = "sample"


@dataclass
class Document:
    """One indexed unit of archive content."""

    source_id: str
    text: str
    metadata: dict[str, Any] = field(default_factory=dict)
    embedding: list[float] | None = None
    provider_key: str | None = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    indexed_at: float = field(default_factory=time.time)

    @property
    def dimension(self) -> int:
        return len(self.embedding) if self.embedding else 0

    @property
    def subject(self) -> str:
        return self.metadata.get("subject", "")

    @property
    def sender(self) -> str:
        return self.metadata.get("sender", "")

    @property
    def date(self) -> str:
        return self.metadata.get("date", "")

    @property
    def timestamp(self) -> float | None:
        return self.metadata.get("timestamp")


@dataclass
class DocumentMatch:
    """A ranked search hit."""

    document: Document
    score: float
    mode: SearchMode
    snippet: str
    details: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.score = min(1.0, max(0.0, float(self.score)))

    @property
    def source_id(self) -> str:
        return self.document.source_id


def make_snippet(text: str, terms: list[str] | None = None, budget: int = 300) -> str:
    """
    Window of ``text`` around the best matching term.

    Whitespace is collapsed. When the text is longer than ``budget`` the
    window is cut to fit, with ``...`` on whichever side was truncated; the
    result never exceeds ``budget`` characters.
    """
    clean = " ".join(text.split())
    if len(clean) <= budget:
        return clean

    inner = max(1, budget - 6)
    lower = clean.lower()
    center = -1
    # Longest terms are the most specific, anchor on the first one present
    for term in sorted(terms or [], key=len, reverse=True):
        position = lower.find(term.lower())
        if position >= 0:
            center = position
            break

    if center < 0:
        return clean[: budget - 3].rstrip() + "..."

    start = max(0, center - inner // 3)
    end = min(len(clean), start + inner)
    start = max(0, end - inner)

    prefix = "..." if start > 0 else ""
    suffix = "..." if end < len(clean) else ""
    return f"{prefix}{clean[start:end].strip()}{suffix}"
