"""
Conversation export: Markdown, JSON and plain text.

All renderers are pure functions of the conversation. JSON is the lossless
format and can be read back with ``from_json``.
"""

import json
from datetime import datetime
from enum import Enum

from .models import Conversation, ConversationMessage, MessageRole


class ExportFormat(str, Enum):
    MARKDOWN = "markdown"
    JSON = "json"
    PLAIN_TEXT = "text"

    @property
    def extension(self) -> str:
        return {"markdown": "md", "json": "json", "text": "txt"}[self.value]


def _fmt_datetime(ts: float) -> str:
    return datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M")


def _fmt_time(ts: float) -> str:
    return datetime.fromtimestamp(ts).strftime("%H:%M")


def _speaker(message: ConversationMessage) -> str:
    if message.role is MessageRole.USER:
        return "You"
    if message.role is MessageRole.ASSISTANT:
        return "AI"
    return "System"


def to_markdown(conversation: Conversation) -> str:
    lines = [
        f"# {conversation.display_title}",
        "",
        f"**Created:** {_fmt_datetime(conversation.created_at)}",
        f"**Updated:** {_fmt_datetime(conversation.updated_at)}",
    ]
    if conversation.tags:
        lines.append(f"**Tags:** {', '.join(conversation.tags)}")
    if conversation.branch_parent_id:
        lines.append(f"**Branched from:** {conversation.branch_parent_id}")
    lines += ["", "---", ""]

    for message in conversation.messages:
        lines.append(f"### {_speaker(message)} ({_fmt_time(message.timestamp)})")
        lines.append("")
        lines.append(message.content)
        lines.append("")
        if message.citations:
            lines.append("**Sources:**")
            for citation in message.citations:
                lines.append(
                    f"- {citation.marker} {citation.subject} "
                    f"(from: {citation.sender}, {citation.date})"
                )
            lines.append("")
    return "\n".join(lines)


def to_json(conversation: Conversation, indent: int = 2) -> str:
    return json.dumps(conversation.model_dump(mode="json"), indent=indent, ensure_ascii=False)


def from_json(text: str) -> Conversation:
    return Conversation.model_validate_json(text)


def to_plain_text(conversation: Conversation) -> str:
    lines = [
        f"Conversation: {conversation.display_title}",
        f"Created: {_fmt_datetime(conversation.created_at)}",
        f"Updated: {_fmt_datetime(conversation.updated_at)}",
        "=" * 50,
        "",
    ]
    for message in conversation.messages:
        lines.append(f"[{_speaker(message).upper()}] {_fmt_time(message.timestamp)}")
        lines.append(message.content)
        lines.append("")
    return "\n".join(lines)


def export_conversation(conversation: Conversation, fmt: ExportFormat | str) -> str:
    renderers = {
        ExportFormat.MARKDOWN: to_markdown,
        ExportFormat.JSON: to_json,
        ExportFormat.PLAIN_TEXT: to_plain_text,
    }
    return renderers[ExportFormat(fmt)](conversation)
