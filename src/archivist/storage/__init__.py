"""
Persistence for analysis records: commitments, patterns, relationships,
sentiment points, decisions, briefings, drafts and personas.
"""

from .models import (
    RECORD_TYPES,
    Briefing,
    Commitment,
    CommitmentStatus,
    Decision,
    Draft,
    DraftTone,
    PatternRecord,
    PatternType,
    Persona,
    Relationship,
    SentimentPoint,
    StoredRecord,
)
from .store import InMemoryRecordStore, RecordStore, SQLiteRecordStore

__all__ = [
    "StoredRecord",
    "Commitment",
    "CommitmentStatus",
    "PatternRecord",
    "PatternType",
    "Relationship",
    "SentimentPoint",
    "Decision",
    "Briefing",
    "Draft",
    "DraftTone",
    "Persona",
    "RECORD_TYPES",
    "RecordStore",
    "InMemoryRecordStore",
    "SQLiteRecordStore",
]
