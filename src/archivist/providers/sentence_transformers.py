"""
In-process embeddings through the sentence-transformers library.

Install with the ``local`` extra. Encoding is CPU/GPU bound, so it runs in a
worker thread to keep the event loop responsive.
"""

import asyncio

try:
    from sentence_transformers import SentenceTransformer

    SENTENCE_TRANSFORMERS_AVAILABLE = True
except ImportError:
    SENTENCE_TRANSFORMERS_AVAILABLE = False

from ..observability.logging import get_logger
from .base import EmbeddingProvider, ProviderKind, ProviderStatus

logger = get_logger(__name__)

SENTENCE_TRANSFORMER_DIMENSIONS = {
    "all-MiniLM-L6-v2": 384,
    "all-mpnet-base-v2": 768,
    "paraphrase-MiniLM-L6-v2": 384,
    "multi-qa-MiniLM-L6-cos-v1": 384,
    "BAAI/bge-small-en-v1.5": 384,
}


class SentenceTransformerEmbeddingProvider(EmbeddingProvider):
    """Embeddings computed inside this process."""

    name = "sentence_transformers"
    kind = ProviderKind.LOCAL_NATIVE

    def __init__(self, model: str = "all-MiniLM-L6-v2", dimension: int | None = None):
        super().__init__(model, dimension or SENTENCE_TRANSFORMER_DIMENSIONS.get(model, 384))
        self._model = None

    async def _probe(self) -> ProviderStatus:
        if not SENTENCE_TRANSFORMERS_AVAILABLE:
            return ProviderStatus(
                False, "sentence-transformers not installed (pip install archivist[local])"
            )
        if self._model is None:
            self._model = await asyncio.to_thread(SentenceTransformer, self.model)
            logger.info(f"Loaded embedding model: {self.model}")
            reported = self._model.get_sentence_embedding_dimension()
            if reported:
                self._dimension = int(reported)
        return ProviderStatus(True, f"{self.model} ready ({self.dimension} dimensions)")

    async def _embed_many(self, texts: list[str]) -> list[list[float]]:
        embeddings = await asyncio.to_thread(self._model.encode, texts)
        return [list(map(float, row)) for row in embeddings]
