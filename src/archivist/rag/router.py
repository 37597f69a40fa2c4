"""
Rule-based query routing.

Two classifications come out of one question:

- a ``QueryType``, which decides how much evidence the retrieval engine pulls
  and how the answer prompt is framed
- a ``SearchIntent``, which tells the search agent which strategy to run

Both are ordered keyword tables; the first matching entry wins, so the order
of the tables is part of the behavior.
"""

import re
from dataclasses import dataclass, field
from enum import Enum

from ..observability.logging import get_logger

logger = get_logger(__name__)


class QueryType(str, Enum):
    """Coarse question category."""

    STATISTICS = "statistics"
    TOP_LIST = "top_list"
    DATE_RANGE = "date_range"
    CONTENT_SEARCH = "content_search"
    SUMMARY = "summary"
    FOLLOW_UP = "follow_up"
    SEARCH = "search"
    CLARIFICATION = "clarification"
    DRAFT = "draft"
    FORWARD = "forward"
    ANALYSIS = "analysis"
    PERSONA = "persona"
    HYPOTHETICAL = "hypothetical"
    TIME_TRAVEL = "time_travel"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").title()


class SearchStrategy(str, Enum):
    """How the search agent answers a query."""

    SEMANTIC = "semantic"
    CRITERIA = "criteria"
    BEHAVIORAL = "behavioral"
    COMPARATIVE = "comparative"


@dataclass
class SearchIntent:
    """Classification result for one query."""

    strategy: SearchStrategy
    query_type: QueryType = QueryType.CONTENT_SEARCH
    criteria: dict[str, str] = field(default_factory=dict)
    pattern: str | None = None
    comparison: str | None = None


_MONTHS = (
    "january|february|march|april|may|june|july|august|september|october|november|december"
)


class QueryRouter:
    """Classifies free-text questions with ordered keyword rules."""

    # Entries are whole-word phrases unless they start with "re:", which
    # marks a raw regular expression. Order matters: first match wins.
    QUERY_TYPE_RULES: dict[QueryType, list[str]] = {
        QueryType.FOLLOW_UP: [
            "tell me more", "more about", "what about", "what else", "elaborate",
            "expand on", "go on", "you mentioned", "follow up", "and then",
        ],
        QueryType.STATISTICS: [
            "how many", "count", "total number", "number of", "statistics", "stats",
            "how often",
        ],
        QueryType.TOP_LIST: [
            "top", "most frequent", "most active", "most common", "who sends the most",
            "who emails me the most", "busiest", "ranking",
        ],
        QueryType.DATE_RANGE: [
            "between", "date range", "since", "this week", "last week", "this month",
            "yesterday", "today",
            rf"re:\b(in|during|since|before|after)\s+({_MONTHS}|(19|20)\d{{2}})\b",
        ],
        QueryType.SUMMARY: [
            "summarize", "summarise", "summary", "overview", "main themes", "themes",
            "key topics", "recap", "gist",
        ],
        QueryType.DRAFT: ["draft", "write", "compose", "reply to", "respond to"],
        QueryType.FORWARD: ["forward", "send to", "share with"],
        QueryType.HYPOTHETICAL: ["what if", "hypothetical", "hypothetically", "suppose", "imagine"],
        QueryType.PERSONA: [
            "talk to me as", "perspective", "would say", "pretend", "in the voice of",
        ],
        QueryType.TIME_TRAVEL: [
            "last month", "last year", "back then", "back in", "years ago", "at the time",
            "time travel",
        ],
        QueryType.ANALYSIS: [
            "analyze", "analyse", "analysis", "trend", "trends", "pattern", "patterns",
            "sentiment", "insight", "insights",
        ],
        QueryType.CONTENT_SEARCH: [
            "find", "emails about", "messages about", "mention", "mentions", "mentioned",
            "look for", "search for", "anything about", "related to",
        ],
        QueryType.SEARCH: ["search", "show me", "show", "list"],
        QueryType.CLARIFICATION: ["what", "explain", "clarify", "?"],
    }  # fmt: skip

    DEFAULT_QUERY_TYPE = QueryType.CONTENT_SEARCH

    BEHAVIORAL_INDICATORS = [
        "promised",
        "didn't deliver",
        "ignored",
        "unanswered",
        "started positive",
        "turned negative",
        "escalated",
    ]

    COMPARATIVE_PATTERNS = [r"\bcompare\b", r"\bversus\b", r"\bvs\b\.?"]

    DATE_PHRASES = ["last week", "last month", "this week", "yesterday", "today"]

    SENDER_PATTERN = re.compile(r"\bfrom\s+(\w+)", re.IGNORECASE)
    TOPIC_PATTERN = re.compile(r"\babout\s+(.+?)(?:\s+from\b|\s+with\b|$)", re.IGNORECASE)

    # Words that follow "from" in date phrases rather than naming a sender
    _NOT_SENDERS = {"last", "this", "yesterday", "today", "the", "a", "my"}

    def __init__(self):
        self._rules: list[tuple[QueryType, list[re.Pattern]]] = [
            (query_type, [self._compile(k) for k in keywords])
            for query_type, keywords in self.QUERY_TYPE_RULES.items()
        ]
        self._comparative = [re.compile(p) for p in self.COMPARATIVE_PATTERNS]

    @staticmethod
    def _compile(keyword: str) -> re.Pattern:
        if keyword.startswith("re:"):
            return re.compile(keyword[3:])
        escaped = re.escape(keyword)
        prefix = r"\b" if keyword[0].isalnum() else ""
        suffix = r"\b" if keyword[-1].isalnum() else ""
        return re.compile(f"{prefix}{escaped}{suffix}")

    def query_type(self, query: str, has_history: bool = False) -> QueryType:
        """Coarse category of ``query``; follow-ups only count with prior turns."""
        text = " ".join(query.lower().split())
        for query_type, patterns in self._rules:
            if query_type is QueryType.FOLLOW_UP and not has_history:
                continue
            if any(p.search(text) for p in patterns):
                return query_type
        return self.DEFAULT_QUERY_TYPE

    def classify(self, query: str, has_history: bool = False) -> SearchIntent:
        """Full intent: strategy, extracted criteria and query type."""
        text = " ".join(query.lower().split())
        query_type = self.query_type(query, has_history)

        if any(indicator in text for indicator in self.BEHAVIORAL_INDICATORS):
            intent = SearchIntent(SearchStrategy.BEHAVIORAL, query_type, pattern=query)
        elif any(p.search(text) for p in self._comparative):
            intent = SearchIntent(SearchStrategy.COMPARATIVE, query_type, comparison=query)
        else:
            criteria = self.extract_criteria(query)
            if criteria:
                intent = SearchIntent(SearchStrategy.CRITERIA, query_type, criteria=criteria)
            else:
                intent = SearchIntent(SearchStrategy.SEMANTIC, query_type)

        logger.debug(
            "Classified query",
            strategy=intent.strategy.value,
            query_type=query_type.value,
            criteria=intent.criteria or "-",
        )
        return intent

    def extract_criteria(self, query: str) -> dict[str, str]:
        """Sender, date phrase and topic predicates, combined with AND downstream."""
        criteria: dict[str, str] = {}
        lower = query.lower()

        for match in self.SENDER_PATTERN.finditer(query):
            candidate = match.group(1)
            if candidate.lower() not in self._NOT_SENDERS:
                criteria["sender"] = candidate
                break

        for phrase in self.DATE_PHRASES:
            if phrase in lower:
                criteria["date"] = phrase
                break

        match = self.TOPIC_PATTERN.search(query)
        topic = match.group(1).strip().rstrip("?.!").strip() if match else ""
        if topic:
            criteria["topic"] = topic

        return criteria
