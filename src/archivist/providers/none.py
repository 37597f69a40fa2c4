"""Keyword-only pseudo provider."""

from .base import EmbeddingProvider, ProviderKind, ProviderStatus
from .errors import ProviderUnavailable


class NoneEmbeddingProvider(EmbeddingProvider):
    """Always available, never produces vectors. Selecting it means keyword search."""

    name = "none"
    kind = ProviderKind.NONE

    def __init__(self):
        super().__init__(model="none", dimension=0)
        self.is_available = True
        self.status_message = "Keyword search only (no embeddings)"

    async def _probe(self) -> ProviderStatus:
        return ProviderStatus(True, "Keyword search only (no embeddings)")

    async def _embed_many(self, texts: list[str]) -> list[list[float]]:
        raise ProviderUnavailable("keyword-only provider produces no embeddings", self.name)
