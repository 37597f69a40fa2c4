"""
Retrieval engine: one question in, ranked evidence out.

The router decides the query type, the query type decides the breadth, and
the index decides which tier answers. Evidence is capped at
``max_evidence`` before it reaches prompt assembly.
"""

from collections.abc import Sequence
from dataclasses import dataclass, field

from ..observability.logging import get_logger
from ..observability.probe import probe
from ..providers.errors import EngineError, RetrievalError
from ..records import ArchiveRecord
from .documents import DocumentMatch, SearchMode
from .index import ArchiveStats, DocumentIndex
from .router import QueryRouter, QueryType, SearchIntent

logger = get_logger(__name__)

DEFAULT_BREADTH: dict[QueryType, int] = {
    QueryType.STATISTICS: 0,
    QueryType.TOP_LIST: 10,
    QueryType.DATE_RANGE: 20,
    QueryType.SUMMARY: 20,
    QueryType.ANALYSIS: 20,
    QueryType.TIME_TRAVEL: 20,
    QueryType.CONTENT_SEARCH: 10,
    QueryType.SEARCH: 10,
    QueryType.FOLLOW_UP: 5,
}
FALLBACK_BREADTH = 10

# Query types answered from archive metadata rather than message content
METADATA_QUERY_TYPES = {QueryType.STATISTICS, QueryType.TOP_LIST, QueryType.DATE_RANGE}


@dataclass
class QueryContext:
    """A question plus the conversation it was asked in."""

    query: str
    conversation_history: list[str] = field(default_factory=list)

    def get_expanded_query(self, turns: int = 3) -> str:
        """Query expanded with the most recent turns, for follow-up questions."""
        if not self.conversation_history:
            return self.query
        recent_context = " ".join(self.conversation_history[-turns:])
        return f"{self.query} Context: {recent_context}"


@dataclass
class RetrievalResult:
    """Evidence for one question."""

    query: str
    intent: SearchIntent
    matches: list[DocumentMatch] = field(default_factory=list)
    stats: ArchiveStats | None = None

    @property
    def query_type(self) -> QueryType:
        return self.intent.query_type

    @property
    def mode(self) -> SearchMode | None:
        return self.matches[0].mode if self.matches else None

    @property
    def source_ids(self) -> list[str]:
        return [m.source_id for m in self.matches]


class RetrievalEngine:
    """Intent-aware wrapper around the document index."""

    def __init__(
        self,
        index: DocumentIndex,
        router: QueryRouter | None = None,
        max_evidence: int = 20,
        breadth: dict[QueryType, int] | None = None,
    ):
        self.index = index
        self.router = router or QueryRouter()
        self.max_evidence = max_evidence
        self.breadth = dict(DEFAULT_BREADTH)
        if breadth:
            self.breadth.update(breadth)

    def breadth_for(self, query_type: QueryType) -> int:
        return min(self.breadth.get(query_type, FALLBACK_BREADTH), self.max_evidence)

    async def retrieve(
        self,
        query: str,
        history: Sequence[str] = (),
        records: list[ArchiveRecord] | None = None,
    ) -> RetrievalResult:
        """
        Resolve intent and gather evidence for ``query``.

        Provider failures are absorbed by the index falling back a tier. Any
        other failure is raised as ``RetrievalError``; it ends this query only.
        """
        intent = self.router.classify(query, has_history=bool(history))
        query_type = intent.query_type
        limit = self.breadth_for(query_type)

        search_query = query
        if query_type is QueryType.FOLLOW_UP:
            search_query = QueryContext(query, list(history)).get_expanded_query()

        with probe("retrieval.retrieve", query_type=query_type.value, limit=limit):
            try:
                matches = await self.index.search(search_query, limit=limit, records=records)
                stats = None
                if query_type in METADATA_QUERY_TYPES:
                    stats = self._stats(records)
            except EngineError:
                raise
            except Exception as e:
                logger.error(f"Retrieval failed: {e}", query_type=query_type.value)
                raise RetrievalError(f"retrieval failed for query: {e}") from e

        matches = matches[: self.max_evidence]
        logger.info(
            f"Retrieved {len(matches)} documents",
            query_type=query_type.value,
            mode=matches[0].mode.value if matches else "none",
        )
        return RetrievalResult(query=query, intent=intent, matches=matches, stats=stats)

    def _stats(self, records: list[ArchiveRecord] | None) -> ArchiveStats:
        if len(self.index) == 0 and records:
            return ArchiveStats.from_records(records)
        return self.index.stats()
