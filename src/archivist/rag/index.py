"""
Hybrid document index: vector, keyword and direct-scan search.

Search walks the tiers from most to least capable and returns the first one
that produces results:

1. vector: cosine similarity between the query embedding and stored vectors
   produced by the same provider and model
2. keyword: inverted index over subject, sender and body with field weights
3. direct: substring scan over caller-supplied records when nothing has been
   indexed yet

A provider failure in the vector tier drops to keyword search instead of
failing the query.
"""

import asyncio
import math
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import numpy as np

from ..observability.logging import get_logger
from ..observability.probe import probe
from ..providers.errors import EngineError
from ..providers.registry import EmbeddingRegistry
from ..records import ArchiveRecord
from .documents import (
    STOP_WORDS,
    Document,
    DocumentMatch,
    SearchMode,
    extract_keywords,
    make_snippet,
    tokenize,
)
from .indexer import BatchIndexer, IndexingProgress, ProgressCallback

logger = get_logger(__name__)

FIELD_WEIGHTS = {"subject": 3.0, "sender": 2.0, "body": 1.0}
SUBJECT_HIT_BONUS = 5
SENDER_HIT_BONUS = 3
SAMPLE_SCORE = 0.5


@dataclass
class ArchiveStats:
    """Metadata-level view of what is indexed."""

    total_documents: int = 0
    embedded_documents: int = 0
    unique_senders: int = 0
    top_senders: list[tuple[str, int]] = field(default_factory=list)
    earliest: str | None = None
    latest: str | None = None
    provider_keys: dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_metadata(
        cls, metadatas: Iterable[dict[str, Any]], embedded: Counter | None = None, top: int = 10
    ) -> "ArchiveStats":
        senders: Counter = Counter()
        stamps: list[float] = []
        total = 0
        for meta in metadatas:
            total += 1
            sender = meta.get("sender")
            if sender:
                senders[sender] += 1
            if meta.get("timestamp") is not None:
                stamps.append(float(meta["timestamp"]))

        def fmt(ts: float) -> str:
            return datetime.fromtimestamp(ts).strftime("%Y-%m-%d")

        embedded = embedded or Counter()
        return cls(
            total_documents=total,
            embedded_documents=sum(embedded.values()),
            unique_senders=len(senders),
            top_senders=senders.most_common(top),
            earliest=fmt(min(stamps)) if stamps else None,
            latest=fmt(max(stamps)) if stamps else None,
            provider_keys=dict(embedded),
        )

    @classmethod
    def from_records(cls, records: Iterable[ArchiveRecord], top: int = 10) -> "ArchiveStats":
        return cls.from_metadata((r.metadata() for r in records), top=top)


class DocumentIndex:
    """In-memory hybrid index over archive documents."""

    def __init__(
        self,
        registry: EmbeddingRegistry,
        max_concurrent: int = 5,
        snippet_chars: int = 300,
        sample_on_miss: int = 20,
        embedding_body_chars: int = 500,
    ):
        self.registry = registry
        self.snippet_chars = snippet_chars
        self.sample_on_miss = sample_on_miss
        self.embedding_body_chars = embedding_body_chars
        self._indexer: BatchIndexer[tuple[str, str, dict[str, Any]]] = BatchIndexer(max_concurrent)

        self._documents: dict[str, Document] = {}
        # term -> {source_id: field-weighted term frequency}
        self._postings: dict[str, dict[str, float]] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._documents)

    def __contains__(self, source_id: str) -> bool:
        return source_id in self._documents

    def get(self, source_id: str) -> Document | None:
        return self._documents.get(source_id)

    def documents(self) -> list[Document]:
        return list(self._documents.values())

    # Writes

    async def index(
        self, source_id: str, text: str, metadata: dict[str, Any] | None = None
    ) -> Document:
        """Index one document, replacing any previous version of ``source_id``."""
        metadata = dict(metadata or {})
        async with self._lock_for(source_id):
            embedding = None
            provider_key = None
            if self.registry.use_semantic_search:
                embed_text = f"{metadata.get('subject', '')} {text[: self.embedding_body_chars]}"
                try:
                    vector = await self.registry.embed(embed_text.strip())
                    embedding = vector.values
                    provider_key = vector.key
                except EngineError as e:
                    logger.warning(
                        f"Embedding failed for {source_id}, indexing keyword-only: {e}",
                        source_id=source_id,
                    )

            document = Document(
                source_id=source_id,
                text=text,
                metadata=metadata,
                embedding=embedding,
                provider_key=provider_key,
            )
            self._remove_postings(source_id)
            self._documents[source_id] = document
            self._add_postings(document)
            return document

    async def index_batch(
        self,
        docs: list[tuple[str, str, dict[str, Any]]],
        progress_callback: ProgressCallback | None = None,
    ) -> IndexingProgress:
        """Index ``(source_id, text, metadata)`` triples concurrently."""

        async def worker(item: tuple[str, str, dict[str, Any]]) -> None:
            await self.index(*item)

        with probe("index.index_batch", documents=len(docs)):
            return await self._indexer.run(
                docs, worker, progress_callback, describe=lambda item: item[0]
            )

    async def index_records(
        self, records: list[ArchiveRecord], progress_callback: ProgressCallback | None = None
    ) -> IndexingProgress:
        return await self.index_batch(
            [(r.id, r.body, r.metadata()) for r in records], progress_callback
        )

    def remove(self, source_id: str) -> bool:
        self._remove_postings(source_id)
        self._release_lock(source_id)
        return self._documents.pop(source_id, None) is not None

    def clear(self) -> None:
        self._documents.clear()
        self._postings.clear()
        for source_id in list(self._locks):
            self._release_lock(source_id)
        logger.info("Index cleared")

    def stats(self) -> ArchiveStats:
        embedded = Counter(d.provider_key for d in self._documents.values() if d.provider_key)
        return ArchiveStats.from_metadata(
            (d.metadata for d in self._documents.values()), embedded=embedded
        )

    # Search

    async def search(
        self,
        query: str,
        limit: int = 20,
        mode: SearchMode | None = None,
        records: list[ArchiveRecord] | None = None,
    ) -> list[DocumentMatch]:
        """Ranked matches from the best tier that yields any."""
        if limit <= 0:
            return []

        with probe("index.search", forced=mode.value if mode else "auto"):
            if mode is SearchMode.VECTOR:
                return await self.vector_search(query, limit)
            if mode is SearchMode.KEYWORD:
                return self.keyword_search(query, limit)
            if mode is SearchMode.DIRECT:
                return self.direct_search(query, records or [], limit)
            if mode is SearchMode.SAMPLE:
                return self.recent_sample(limit)

            if self._documents:
                if self.registry.use_semantic_search:
                    try:
                        matches = await self.vector_search(query, limit)
                    except EngineError as e:
                        logger.warning(f"Vector search failed, falling back to keywords: {e}")
                        matches = []
                    if matches:
                        return matches
                matches = self.keyword_search(query, limit)
                if matches:
                    return matches
            elif records:
                matches = self.direct_search(query, records, limit)
                if matches:
                    return matches

            return self.recent_sample(min(limit, self.sample_on_miss))

    async def vector_search(self, query: str, limit: int = 20) -> list[DocumentMatch]:
        """Cosine similarity against vectors from the active provider and model."""
        vector = await self.registry.embed(query)
        candidates = [
            d
            for d in self._documents.values()
            if d.provider_key == vector.key and d.dimension == vector.dimension
        ]
        skipped = sum(1 for d in self._documents.values() if d.embedding) - len(candidates)
        if skipped:
            logger.info(
                f"Skipped {skipped} vectors from other providers or dimensions",
                provider=vector.key,
            )
        if not candidates:
            return []

        matrix = np.asarray([d.embedding for d in candidates], dtype=np.float32)
        query_vec = np.asarray(vector.values, dtype=np.float32)
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query_vec)
        norms[norms == 0] = 1.0
        cosines = (matrix @ query_vec) / norms
        # Map cosine from [-1, 1] onto [0, 1]
        scores = np.clip((cosines + 1.0) / 2.0, 0.0, 1.0)

        terms = extract_keywords(query)
        order = np.argsort(-scores)[:limit]
        return [
            DocumentMatch(
                document=candidates[i],
                score=float(scores[i]),
                mode=SearchMode.VECTOR,
                snippet=make_snippet(candidates[i].text, terms, self.snippet_chars),
                details={"cosine_similarity": float(cosines[i])},
            )
            for i in order
        ]

    def keyword_search(self, query: str, limit: int = 20) -> list[DocumentMatch]:
        """TF-IDF over the field-weighted inverted index."""
        terms = extract_keywords(query)
        if not terms or not self._documents:
            return []

        total_docs = len(self._documents)
        scores: dict[str, float] = {}
        hits: dict[str, int] = {}
        for term in terms:
            postings = self._postings.get(term, {})
            if not postings:
                continue
            idf = math.log(1.0 + total_docs / len(postings))
            for source_id, tf in postings.items():
                scores[source_id] = scores.get(source_id, 0.0) + tf * idf
                hits[source_id] = hits.get(source_id, 0) + 1

        if not scores:
            return []
        max_score = max(scores.values()) or 1.0
        ranked = sorted(scores.items(), key=lambda kv: kv[1], reverse=True)[:limit]
        return [
            DocumentMatch(
                document=self._documents[source_id],
                score=score / max_score,
                mode=SearchMode.KEYWORD,
                snippet=make_snippet(self._documents[source_id].text, terms, self.snippet_chars),
                details={"keyword_matches": hits[source_id]},
            )
            for source_id, score in ranked
        ]

    def direct_search(
        self, query: str, records: list[ArchiveRecord], limit: int = 20
    ) -> list[DocumentMatch]:
        """Linear substring scan over records that were never indexed."""
        terms = extract_keywords(query) or [query.lower().strip()]
        terms = [t for t in terms if t]
        if not terms:
            return []

        scored: list[tuple[float, ArchiveRecord]] = []
        for record in records:
            content = record.search_text().lower()
            subject = record.subject.lower()
            sender = record.sender.lower()
            score = 0
            for term in terms:
                score += content.count(term)
                if term in subject:
                    score += SUBJECT_HIT_BONUS
                if term in sender:
                    score += SENDER_HIT_BONUS
            if score > 0:
                scored.append((float(score), record))

        if not scored:
            return []
        scored.sort(key=lambda pair: pair[0], reverse=True)
        max_score = scored[0][0]
        return [
            DocumentMatch(
                document=Document(source_id=r.id, text=r.body, metadata=r.metadata()),
                score=score / max_score,
                mode=SearchMode.DIRECT,
                snippet=make_snippet(r.body, terms, self.snippet_chars),
                details={"raw_score": score},
            )
            for score, r in scored[:limit]
        ]

    def recent_sample(self, limit: int) -> list[DocumentMatch]:
        """Most recent documents at a flat score, for questions nothing matched."""
        if limit <= 0 or not self._documents:
            return []
        recent = sorted(
            self._documents.values(),
            key=lambda d: (d.timestamp or 0.0, d.indexed_at),
            reverse=True,
        )[:limit]
        return [
            DocumentMatch(
                document=d,
                score=SAMPLE_SCORE,
                mode=SearchMode.SAMPLE,
                snippet=make_snippet(d.text, None, self.snippet_chars),
            )
            for d in recent
        ]

    # Internals

    def _lock_for(self, source_id: str) -> asyncio.Lock:
        lock = self._locks.get(source_id)
        if lock is None:
            lock = self._locks[source_id] = asyncio.Lock()
        return lock

    def _release_lock(self, source_id: str) -> None:
        # A held lock stays so queued writers still serialize on it
        lock = self._locks.get(source_id)
        if lock is not None and not lock.locked():
            del self._locks[source_id]

    def _add_postings(self, document: Document) -> None:
        weights: Counter = Counter()
        fields = {"subject": document.subject, "sender": document.sender, "body": document.text}
        for name, value in fields.items():
            for token in tokenize(value):
                if len(token) > 2 and token not in STOP_WORDS:
                    weights[token] += FIELD_WEIGHTS[name]
        for term, weight in weights.items():
            self._postings.setdefault(term, {})[document.source_id] = weight

    def _remove_postings(self, source_id: str) -> None:
        previous = self._documents.get(source_id)
        if previous is None:
            return
        for term in set(tokenize(f"{previous.subject} {previous.sender} {previous.text}")):
            postings = self._postings.get(term)
            if postings is None:
                continue
            postings.pop(source_id, None)
            if not postings:
                del self._postings[term]
