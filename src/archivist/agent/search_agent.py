"""
Search agent for questions that plain retrieval does not answer well.

The router picks one of four strategies:

- criteria: deterministic sender / topic / date filters, AND-combined
- semantic: the document index, mapped back to full records
- behavioral: the generation backend picks matching record ids from a sample
- comparative: keyword overlap, returning both sides for later comparison

A fixed catalog of named patterns (unkept promises, missed deadlines, ...)
runs as explicit keyword rules. Every result carries a short summary written
by the generation backend, with a plain fallback when generation fails.
"""

import re
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum

from dateutil.relativedelta import relativedelta

from ..observability.logging import get_logger
from ..observability.probe import probe
from ..providers.generation import GenerationBackend
from ..rag.documents import SearchMode
from ..rag.index import DocumentIndex
from ..rag.router import QueryRouter, QueryType, SearchIntent, SearchStrategy
from ..records import ArchiveRecord

logger = get_logger(__name__)

MAX_RESULTS = 50
BEHAVIORAL_SAMPLE_SIZE = 100
SUMMARY_SAMPLE_SIZE = 10

BEHAVIORAL_SYSTEM_PROMPT = (
    "You identify messages matching behavioral patterns. Only return message IDs."
)
SUMMARY_SYSTEM_PROMPT = "You summarize message search results concisely."

AGENT_STOP_WORDS = frozenset(
    {
        "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with",
        "by", "find", "search", "show", "get", "me", "emails", "email", "all",
    }
)  # fmt: skip

_ID_RE = re.compile(r"\[([^\]]+)\]")
_REPLY_PREFIX_RE = re.compile(r"^(re:|fw:|fwd:)\s*")


class SearchPattern(str, Enum):
    """Named behavioral patterns with deterministic rules."""

    UNKEPT_PROMISES = "unkept_promises"
    SENTIMENT_DECLINE = "sentiment_decline"
    IGNORED_REQUESTS = "ignored_requests"
    ESCALATING_TENSION = "escalating_tension"
    RECURRING_TOPICS = "recurring_topics"
    MISSED_DEADLINES = "missed_deadlines"

    @property
    def description(self) -> str:
        return {
            SearchPattern.UNKEPT_PROMISES: "Promises that weren't kept",
            SearchPattern.SENTIMENT_DECLINE: "Conversations that turned negative",
            SearchPattern.IGNORED_REQUESTS: "Requests that were ignored",
            SearchPattern.ESCALATING_TENSION: "Escalating tension",
            SearchPattern.RECURRING_TOPICS: "Recurring discussion topics",
            SearchPattern.MISSED_DEADLINES: "Missed deadlines",
        }[self]


PROMISE_INDICATORS = ["will send", "i'll get", "will have", "promise", "by friday", "by monday"]
NEGATIVE_INDICATORS = ["disappointed", "concerned", "frustrated", "issue", "problem"]
REQUEST_INDICATORS = [
    "please respond",
    "waiting for",
    "need your",
    "can you confirm",
    "let me know",
]
TENSION_INDICATORS = ["escalate", "unacceptable", "final notice", "immediately", "urgent"]
DEADLINE_INDICATORS = ["overdue", "missed deadline", "late", "past due", "was due"]
SENTIMENT_DECLINE_THRESHOLD = 2
RECURRING_TOPIC_THRESHOLD = 5


@dataclass
class AgentSearchResult:
    """Outcome of one agent search."""

    query: str
    intent: SearchIntent
    results: list[ArchiveRecord]
    summary: str
    total_matches: int = 0
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def result_ids(self) -> list[str]:
        return [r.id for r in self.results]


def extract_agent_keywords(text: str) -> list[str]:
    """Whitespace words, punctuation trimmed, longer than two characters."""
    words = (w.strip(".,;:!?\"'()[]{}") for w in text.lower().split())
    return [w for w in words if len(w) > 2 and w not in AGENT_STOP_WORDS]


def normalize_subject(subject: str) -> str:
    return _REPLY_PREFIX_RE.sub("", subject.lower()).strip()


def parse_behavioral_ids(response: str) -> set[str]:
    """Bracketed ids, one per line. Anything else, including NONE, yields nothing."""
    ids = set()
    for line in response.splitlines():
        match = _ID_RE.search(line)
        if match:
            ids.add(match.group(1).strip())
    return ids


def _local_naive(ts: datetime) -> datetime:
    return ts.astimezone().replace(tzinfo=None) if ts.tzinfo else ts


def date_window_start(phrase: str, now: datetime) -> datetime | None:
    """Start of the window a date phrase refers to, or None if unknown."""
    start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if phrase == "today":
        return start_of_day
    if phrase == "yesterday":
        return start_of_day - timedelta(days=1)
    if phrase == "this week":
        return start_of_day - timedelta(days=start_of_day.weekday())
    if phrase == "last week":
        return now - timedelta(days=7)
    if phrase == "last month":
        return now - relativedelta(months=1)
    return None


class SearchAgent:
    """Multi-strategy search over archive records."""

    def __init__(
        self,
        generator: GenerationBackend,
        index: DocumentIndex | None = None,
        router: QueryRouter | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.generator = generator
        self.index = index
        self.router = router or QueryRouter()
        self.clock = clock
        self.last_search: AgentSearchResult | None = None

    async def search(self, query: str, records: list[ArchiveRecord]) -> AgentSearchResult:
        """Classify ``query`` and run the matching strategy."""
        intent = self.router.classify(query)

        with probe("agent.search", strategy=intent.strategy.value):
            if intent.strategy is SearchStrategy.CRITERIA:
                matches = self.criteria_search(intent.criteria, records)
            elif intent.strategy is SearchStrategy.BEHAVIORAL:
                matches = await self.behavioral_search(intent.pattern or query, records)
            elif intent.strategy is SearchStrategy.COMPARATIVE:
                matches = self.comparative_search(intent.comparison or query, records)
            else:
                matches = await self.semantic_search(query, records)

            summary = await self._summarize(query, matches)

        logger.info(
            f"Agent search found {len(matches)} records",
            strategy=intent.strategy.value,
        )
        result = AgentSearchResult(
            query=query,
            intent=intent,
            results=matches[:MAX_RESULTS],
            summary=summary,
            total_matches=len(matches),
            timestamp=self.clock(),
        )
        self.last_search = result
        return result

    async def search_for_pattern(
        self, pattern: SearchPattern | str, records: list[ArchiveRecord]
    ) -> AgentSearchResult:
        """Run one named pattern from the catalog."""
        pattern = SearchPattern(pattern)
        rules = {
            SearchPattern.UNKEPT_PROMISES: self.find_unkept_promises,
            SearchPattern.SENTIMENT_DECLINE: self.find_sentiment_decline,
            SearchPattern.IGNORED_REQUESTS: self.find_ignored_requests,
            SearchPattern.ESCALATING_TENSION: self.find_escalating_tension,
            SearchPattern.RECURRING_TOPICS: self.find_recurring_topics,
            SearchPattern.MISSED_DEADLINES: self.find_missed_deadlines,
        }

        with probe("agent.pattern", pattern=pattern.value):
            matches = rules[pattern](records)
            summary = await self._summarize_pattern(pattern, matches)

        intent = SearchIntent(
            strategy=SearchStrategy.BEHAVIORAL,
            query_type=QueryType.ANALYSIS,
            pattern=pattern.value,
        )
        result = AgentSearchResult(
            query=pattern.description,
            intent=intent,
            results=matches,
            summary=summary,
            total_matches=len(matches),
            timestamp=self.clock(),
        )
        self.last_search = result
        return result

    # Strategies

    def criteria_search(
        self, criteria: dict[str, str], records: list[ArchiveRecord]
    ) -> list[ArchiveRecord]:
        filtered = records

        sender = criteria.get("sender")
        if sender:
            needle = sender.lower()
            filtered = [r for r in filtered if needle in r.sender.lower()]

        topic = criteria.get("topic")
        if topic:
            needle = topic.lower()
            filtered = [
                r for r in filtered if needle in r.subject.lower() or needle in r.body.lower()
            ]

        phrase = criteria.get("date")
        if phrase:
            start = date_window_start(phrase, self.clock())
            if start is not None:
                filtered = [
                    r
                    for r in filtered
                    if r.timestamp is not None and _local_naive(r.timestamp) >= start
                ]

        return filtered

    async def semantic_search(
        self, query: str, records: list[ArchiveRecord]
    ) -> list[ArchiveRecord]:
        if self.index is not None and len(self.index) > 0:
            by_id = {r.id: r for r in records}
            matches = await self.index.search(query, limit=MAX_RESULTS, records=records)
            resolved = [
                by_id[m.source_id]
                for m in matches
                if m.mode is not SearchMode.SAMPLE and m.source_id in by_id
            ]
            if resolved:
                return resolved
        return self._keyword_filter(query, records)

    async def behavioral_search(
        self, behavior: str, records: list[ArchiveRecord]
    ) -> list[ArchiveRecord]:
        """Best effort: a malformed or failed model answer means no matches."""
        sample = records[:BEHAVIORAL_SAMPLE_SIZE]
        if not sample:
            return []
        listing = "\n".join(f"[{r.id}] From: {r.sender} | Subject: {r.subject}" for r in sample)
        prompt = (
            f'Find messages matching this behavioral pattern: "{behavior}"\n\n'
            f"MESSAGES:\n{listing}\n\n"
            "Return ONLY the IDs (in brackets) of messages that match, one per line.\n"
            'If none match, return "NONE".'
        )
        try:
            response = await self.generator.generate(prompt, system_prompt=BEHAVIORAL_SYSTEM_PROMPT)
        except Exception as e:
            logger.warning(f"Behavioral search failed: {e}")
            return []

        matched = parse_behavioral_ids(response)
        return [r for r in sample if r.id in matched]

    def comparative_search(
        self, comparison: str, records: list[ArchiveRecord]
    ) -> list[ArchiveRecord]:
        return self._keyword_filter(comparison, records)

    # Named patterns

    def find_unkept_promises(self, records: list[ArchiveRecord]) -> list[ArchiveRecord]:
        return [r for r in records if any(i in r.body.lower() for i in PROMISE_INDICATORS)]

    def find_sentiment_decline(self, records: list[ArchiveRecord]) -> list[ArchiveRecord]:
        return [
            r
            for r in records
            if sum(1 for i in NEGATIVE_INDICATORS if i in r.body.lower())
            >= SENTIMENT_DECLINE_THRESHOLD
        ]

    def find_ignored_requests(self, records: list[ArchiveRecord]) -> list[ArchiveRecord]:
        return [r for r in records if any(i in r.body.lower() for i in REQUEST_INDICATORS)]

    def find_escalating_tension(self, records: list[ArchiveRecord]) -> list[ArchiveRecord]:
        return [
            r
            for r in records
            if any(i in f"{r.subject} {r.body}".lower() for i in TENSION_INDICATORS)
        ]

    def find_recurring_topics(self, records: list[ArchiveRecord]) -> list[ArchiveRecord]:
        groups: dict[str, list[ArchiveRecord]] = defaultdict(list)
        for record in records:
            groups[normalize_subject(record.subject)].append(record)
        recurring = [g for g in groups.values() if len(g) >= RECURRING_TOPIC_THRESHOLD]
        return [r for group in recurring for r in group]

    def find_missed_deadlines(self, records: list[ArchiveRecord]) -> list[ArchiveRecord]:
        return [
            r
            for r in records
            if any(i in f"{r.subject} {r.body}".lower() for i in DEADLINE_INDICATORS)
        ]

    # Summaries

    async def _summarize(self, query: str, matches: list[ArchiveRecord]) -> str:
        if not matches:
            return "No records found matching your search."
        listing = "\n".join(
            f"- {r.subject} (from {r.sender_name}, {r.date})" for r in matches[:SUMMARY_SAMPLE_SIZE]
        )
        prompt = (
            f'Summarize these search results for the query: "{query}"\n\n'
            f"Found {len(matches)} records:\n{listing}\n\n"
            "Provide a 2-3 sentence summary of what was found."
        )
        try:
            summary = await self.generator.generate(prompt, system_prompt=SUMMARY_SYSTEM_PROMPT)
            summary = summary.strip()
            if summary:
                return summary
        except Exception as e:
            logger.warning(f"Search summary failed, using fallback: {e}")
        return f"Found {len(matches)} records matching your search."

    async def _summarize_pattern(
        self, pattern: SearchPattern, matches: list[ArchiveRecord]
    ) -> str:
        if not matches:
            return f"No records found matching the pattern: {pattern.description}"
        most_recent = max(
            matches, key=lambda r: _local_naive(r.timestamp) if r.timestamp else datetime.min
        )
        fallback = (
            f"Found {len(matches)} records matching '{pattern.description}'. "
            f"Most recent from {most_recent.sender_name}."
        )
        listing = "\n".join(
            f"- {r.subject} (from {r.sender_name}, {r.date})" for r in matches[:SUMMARY_SAMPLE_SIZE]
        )
        prompt = (
            f'Summarize these results for the pattern: "{pattern.description}"\n\n'
            f"Found {len(matches)} records:\n{listing}\n\n"
            "Provide a 2-3 sentence summary of what was found."
        )
        try:
            summary = await self.generator.generate(prompt, system_prompt=SUMMARY_SYSTEM_PROMPT)
            summary = summary.strip()
            if summary:
                return summary
        except Exception as e:
            logger.warning(f"Pattern summary failed, using fallback: {e}")
        return fallback

    def _keyword_filter(self, text: str, records: list[ArchiveRecord]) -> list[ArchiveRecord]:
        keywords = extract_agent_keywords(text)
        if not keywords:
            return []
        return [
            r for r in records if any(k in f"{r.subject} {r.body}".lower() for k in keywords)
        ]
