"""
Archive records as the engine receives them.

Parsing mailboxes happens elsewhere; callers hand in ``ArchiveRecord``
instances (or JSON objects with the same fields).
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from dateutil import parser as date_parser

from .observability.logging import get_logger

logger = get_logger(__name__)


def parse_timestamp(value: Any) -> datetime | None:
    """Epoch seconds, ISO 8601 or RFC 2822 mail dates; None when unreadable."""
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value)
    if isinstance(value, str) and value.strip():
        try:
            return date_parser.parse(value)
        except (ValueError, OverflowError) as e:
            logger.warning(f"Unreadable date {value!r}: {e}")
    return None


@dataclass
class ArchiveRecord:
    """One message from a personal archive."""

    id: str
    sender: str
    subject: str
    body: str
    date: str = ""
    timestamp: datetime | None = None
    recipient: str = ""
    message_id: str = ""

    @property
    def sender_name(self) -> str:
        """Display part of the sender, without the address."""
        name = self.sender.split("<", 1)[0].strip().strip('"')
        return name or self.sender

    def search_text(self) -> str:
        return f"{self.subject}\n{self.sender}\n{self.body}"

    def metadata(self) -> dict[str, Any]:
        return {
            "sender": self.sender,
            "subject": self.subject,
            "date": self.date,
            "timestamp": self.timestamp.timestamp() if self.timestamp else None,
            "recipient": self.recipient,
            "message_id": self.message_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ArchiveRecord":
        """Build a record from a loosely-shaped JSON object."""
        timestamp = parse_timestamp(data.get("timestamp"))
        if timestamp is None:
            timestamp = parse_timestamp(data.get("date"))

        return cls(
            id=str(data["id"]),
            sender=data.get("sender", data.get("from", "")),
            subject=data.get("subject", ""),
            body=data.get("body", ""),
            date=data.get("date", "") or (timestamp.strftime("%Y-%m-%d") if timestamp else ""),
            timestamp=timestamp,
            recipient=data.get("recipient", data.get("to", "")),
            message_id=data.get("message_id", ""),
        )
