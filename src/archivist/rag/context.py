"""
Prompt assembly for grounded answers.

The user prompt is built from four blocks, each omitted when empty: a digest
of the previous turns, archive statistics, the ranked evidence, and the
current question. Evidence is numbered from 1 in rank order so the model's
``[N]`` markers line up with the citations attached to the answer.
"""

from collections.abc import Sequence
from dataclasses import dataclass

from ..observability.logging import get_logger
from .documents import DocumentMatch
from .index import ArchiveStats
from .retriever import RetrievalResult
from .router import QueryType

logger = get_logger(__name__)

FOLLOW_UP_MARKER = "You might also ask:"

SYSTEM_PROMPT = f"""You help the user understand and work with their personal mail archive.

CAPABILITIES:
- Answer questions about message content, citing sources as [1], [2], etc.
- Summarize threads and conversations
- Track commitments and action items
- Analyze relationships and communication patterns
- Help draft responses based on the conversation so far

GUIDELINES:
- Cite sources with [N] whenever you rely on a specific message
- Refer back to earlier turns of this conversation when relevant
- Be concise but thorough
- If the archive does not contain enough information, say so

RESPONSE FORMAT:
- Give a clear, direct answer
- End with 1-2 follow-up questions after the line "{FOLLOW_UP_MARKER}"
"""

# Extra instruction per query type, appended after the question
QUERY_TYPE_GUIDANCE: dict[QueryType, str] = {
    QueryType.STATISTICS: "Answer from the ARCHIVE STATISTICS block; quote exact numbers.",
    QueryType.TOP_LIST: "Present the answer as a ranked list.",
    QueryType.DATE_RANGE: "Keep to messages inside the requested period and mention their dates.",
    QueryType.SUMMARY: "Summarize the main themes across the messages, grouping related ones.",
    QueryType.ANALYSIS: "Describe patterns and changes over time, with evidence for each.",
    QueryType.DRAFT: "Write a draft the user could send, in their own voice.",
    QueryType.FORWARD: "Identify the messages to forward and write a short cover note.",
    QueryType.PERSONA: "Answer in the voice of the requested person, based only on their messages.",
    QueryType.HYPOTHETICAL: "Reason about the hypothetical, keeping facts apart from assumptions.",
    QueryType.TIME_TRAVEL: "Answer as of the period the user asks about.",
    QueryType.FOLLOW_UP: "Continue from the previous answer without repeating it.",
}


@dataclass
class HistoryTurn:
    """Role and content of one previous turn."""

    role: str
    content: str


@dataclass
class PromptPair:
    system: str
    user: str


class PromptBuilder:
    """Builds the system and user prompts for one conversational turn."""

    def __init__(self, history_message_chars: int = 500, snippet_chars: int = 300):
        self.history_message_chars = history_message_chars
        self.snippet_chars = snippet_chars

    def build(
        self,
        question: str,
        retrieval: RetrievalResult,
        history: Sequence[HistoryTurn] = (),
    ) -> PromptPair:
        blocks = [
            self.history_block(history),
            self.stats_block(retrieval.stats),
            self.evidence_block(retrieval.matches),
            f"CURRENT QUESTION: {question}",
        ]
        guidance = QUERY_TYPE_GUIDANCE.get(retrieval.query_type)
        closing = (
            "Answer using the archive context and the conversation so far. "
            "Cite specific messages with [N] and suggest follow-up questions."
        )
        if guidance:
            closing = f"{guidance}\n{closing}"
        blocks.append(closing)

        user_prompt = "\n\n".join(b for b in blocks if b)
        logger.debug(
            "Built prompt",
            evidence=len(retrieval.matches),
            history=len(history),
            chars=len(user_prompt),
        )
        return PromptPair(system=SYSTEM_PROMPT, user=user_prompt)

    def history_block(self, history: Sequence[HistoryTurn]) -> str:
        if not history:
            return ""
        lines = ["PREVIOUS CONVERSATION:"]
        for turn in history:
            role = "User" if turn.role == "user" else "Assistant"
            lines.append(f"{role}: {turn.content[: self.history_message_chars]}")
        return "\n".join(lines)

    def evidence_block(self, matches: Sequence[DocumentMatch]) -> str:
        if not matches:
            return ""
        entries = ["RELEVANT MESSAGES:"]
        for rank, match in enumerate(matches, start=1):
            document = match.document
            entries.append(
                f"[{rank}] From: {document.sender}\n"
                f"Subject: {document.subject}\n"
                f"Date: {document.date}\n"
                f"{match.snippet[: self.snippet_chars]}\n"
                "---"
            )
        return "\n".join(entries)

    def stats_block(self, stats: ArchiveStats | None) -> str:
        if stats is None:
            return ""
        lines = [
            "ARCHIVE STATISTICS:",
            f"Total messages: {stats.total_documents}",
            f"Unique senders: {stats.unique_senders}",
        ]
        if stats.earliest and stats.latest:
            lines.append(f"Date range: {stats.earliest} to {stats.latest}")
        if stats.top_senders:
            lines.append("Top senders:")
            lines.extend(f"- {sender}: {count}" for sender, count in stats.top_senders)
        return "\n".join(lines)
