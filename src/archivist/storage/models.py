"""
Analysis records kept alongside conversations.

Every kind maps to one table: scalar fields become columns of the same name,
list and dict fields become ``<name>_json`` columns, and timestamps are
seconds since the epoch.
"""

import json
import time
import uuid
from enum import Enum
from typing import Any, ClassVar

from pydantic import BaseModel, Field


def _new_id() -> str:
    return str(uuid.uuid4())


class StoredRecord(BaseModel):
    """Base for every persisted analysis record."""

    kind: ClassVar[str] = ""
    JSON_FIELDS: ClassVar[tuple[str, ...]] = ()

    id: str = Field(default_factory=_new_id)

    @classmethod
    def columns(cls) -> list[str]:
        return [f"{name}_json" if name in cls.JSON_FIELDS else name for name in cls.model_fields]

    def to_row(self) -> dict[str, Any]:
        """Flatten into storable scalars."""
        row = {}
        for name, value in self.model_dump(mode="json").items():
            if name in self.JSON_FIELDS:
                row[f"{name}_json"] = json.dumps(value, ensure_ascii=False)
            elif isinstance(value, bool):
                row[name] = int(value)
            else:
                row[name] = value
        return row

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "StoredRecord":
        data = {}
        for name in cls.model_fields:
            if name in cls.JSON_FIELDS:
                raw = row.get(f"{name}_json")
                if raw is not None:
                    data[name] = json.loads(raw)
            elif row.get(name) is not None:
                data[name] = row[name]
        return cls.model_validate(data)


class CommitmentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    DEFERRED = "deferred"


class Commitment(StoredRecord):
    """Something one person said they would do."""

    kind: ClassVar[str] = "commitments"

    description: str
    committer: str
    recipient: str | None = None
    deadline: float | None = None
    deadline_text: str | None = None
    source_email_id: str
    source_subject: str = ""
    source_date: float
    extracted_at: float = Field(default_factory=time.time)
    status: CommitmentStatus = CommitmentStatus.PENDING
    notes: str | None = None

    def is_overdue(self, now: float | None = None) -> bool:
        if self.status is not CommitmentStatus.PENDING or self.deadline is None:
            return False
        return self.deadline < (now if now is not None else time.time())


class PatternType(str, Enum):
    RECURRING_TOPIC = "recurring_topic"
    SEASONAL_ACTIVITY = "seasonal_activity"
    COMMUNICATION_SPIKE = "communication_spike"
    RESPONSE_DELAY = "response_delay"
    LONG_THREADS = "long_threads"
    SENTIMENT_SHIFT = "sentiment_shift"


class PatternRecord(StoredRecord):
    kind: ClassVar[str] = "patterns"
    JSON_FIELDS: ClassVar[tuple[str, ...]] = ("examples", "participants", "topics")

    pattern_type: PatternType
    description: str
    frequency: str
    last_occurrence: float
    occurrences: int = 1
    examples: list[str] = Field(default_factory=list)
    participants: list[str] = Field(default_factory=list)
    topics: list[str] = Field(default_factory=list)


class Relationship(StoredRecord):
    """Correspondence summary between two people."""

    kind: ClassVar[str] = "relationships"
    JSON_FIELDS: ClassVar[tuple[str, ...]] = ("topics",)

    person1: str
    person2: str
    email_count: int = 0
    first_contact: float
    last_contact: float
    average_sentiment: float = 0.0
    topics: list[str] = Field(default_factory=list)
    relationship_strength: float = 0.0


class SentimentPoint(StoredRecord):
    kind: ClassVar[str] = "sentiment_points"
    JSON_FIELDS: ClassVar[tuple[str, ...]] = ("keywords",)

    date: float
    sentiment: float = Field(..., ge=-1.0, le=1.0)
    email_id: str
    subject: str = ""
    participant: str
    keywords: list[str] = Field(default_factory=list)


class Decision(StoredRecord):
    """A decision traced back to the messages that made it."""

    kind: ClassVar[str] = "decisions"
    JSON_FIELDS: ClassVar[tuple[str, ...]] = (
        "decision_makers",
        "pros",
        "cons",
        "alternatives",
        "supporting_emails",
        "attachments",
    )

    topic: str
    decision: str
    decision_makers: list[str] = Field(default_factory=list)
    decision_date: float
    pros: list[str] = Field(default_factory=list)
    cons: list[str] = Field(default_factory=list)
    alternatives: list[str] = Field(default_factory=list)
    supporting_emails: list[str] = Field(default_factory=list)
    attachments: list[str] = Field(default_factory=list)
    confidence: float = Field(0.5, ge=0.0, le=1.0)


class Briefing(StoredRecord):
    kind: ClassVar[str] = "briefings"
    JSON_FIELDS: ClassVar[tuple[str, ...]] = (
        "needs_response",
        "upcoming_deadlines",
        "unusual_activity",
        "trending_topics",
    )

    date: float
    needs_response: list[dict[str, Any]] = Field(default_factory=list)
    upcoming_deadlines: list[dict[str, Any]] = Field(default_factory=list)
    unusual_activity: list[dict[str, Any]] = Field(default_factory=list)
    trending_topics: list[str] = Field(default_factory=list)
    summary: str | None = None
    generated_at: float = Field(default_factory=time.time)


class DraftTone(str, Enum):
    PROFESSIONAL = "professional"
    FRIENDLY = "friendly"
    FORMAL = "formal"
    CONCISE = "concise"
    DETAILED = "detailed"


class Draft(StoredRecord):
    kind: ClassVar[str] = "drafts"
    JSON_FIELDS: ClassVar[tuple[str, ...]] = ("suggested_attachments",)

    recipient: str
    subject: str
    body: str
    in_reply_to: str | None = None
    conversation_context: str | None = None
    tone: DraftTone = DraftTone.PROFESSIONAL
    suggested_attachments: list[str] = Field(default_factory=list)
    created_at: float = Field(default_factory=time.time)
    is_edited: bool = False


class Persona(StoredRecord):
    """How one correspondent writes, for persona-style answers."""

    kind: ClassVar[str] = "personas"
    JSON_FIELDS: ClassVar[tuple[str, ...]] = ("common_phrases", "topic_expertise", "sample_emails")

    email: str
    name: str
    communication_style: str | None = None
    common_phrases: list[str] = Field(default_factory=list)
    topic_expertise: list[str] = Field(default_factory=list)
    sentiment_profile: str | None = None
    average_response_time: str | None = None
    sample_emails: list[str] = Field(default_factory=list)


RECORD_TYPES: dict[str, type[StoredRecord]] = {
    cls.kind: cls
    for cls in (
        Commitment,
        PatternRecord,
        Relationship,
        SentimentPoint,
        Decision,
        Briefing,
        Draft,
        Persona,
    )
}
