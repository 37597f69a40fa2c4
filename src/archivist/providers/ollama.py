"""
Ollama embedding provider (local daemon).
"""

import httpx

from ..observability.logging import get_logger
from .base import HttpEmbeddingProvider, ProviderKind, ProviderStatus
from .errors import GenerationFailed

logger = get_logger(__name__)

OLLAMA_MODEL_DIMENSIONS = {
    "nomic-embed-text": 768,
    "all-minilm": 384,
    "mxbai-embed-large": 1024,
    "snowflake-arctic-embed": 1024,
    "bge-m3": 1024,
}

# Substrings that mark a pulled model as an embedding model
EMBEDDING_MODEL_MARKERS = ("embed", "nomic", "minilm", "mxbai", "bge")


def _base_model_name(name: str) -> str:
    return name.split(":", 1)[0]


class OllamaEmbeddingProvider(HttpEmbeddingProvider):
    """Embeddings from a local Ollama daemon via ``/api/embed``."""

    name = "ollama"
    kind = ProviderKind.LOCAL_DAEMON

    def __init__(
        self,
        model: str = "nomic-embed-text",
        base_url: str = "http://localhost:11434",
        dimension: int | None = None,
        **kwargs,
    ):
        super().__init__(
            model=model,
            dimension=dimension or OLLAMA_MODEL_DIMENSIONS.get(_base_model_name(model), 768),
            base_url=base_url,
            **kwargs,
        )
        self.installed_models: list[str] = []

    async def _probe(self) -> ProviderStatus:
        try:
            response = await self.client.get(f"{self.base_url}/api/tags", timeout=5.0)
        except httpx.HTTPError as e:
            return ProviderStatus(False, f"Ollama not available at {self.base_url}: {e}")
        if response.status_code != 200:
            return ProviderStatus(False, f"Ollama returned HTTP {response.status_code}")

        names = [m.get("name", "") for m in response.json().get("models", [])]
        self.installed_models = [
            n for n in names if any(marker in n.lower() for marker in EMBEDDING_MODEL_MARKERS)
        ]
        wanted = _base_model_name(self.model)
        if not any(_base_model_name(n) == wanted for n in names):
            return ProviderStatus(
                False, f"Model {self.model} not installed. Run: ollama pull {self.model}"
            )
        return ProviderStatus(True, f"Ollama ready ({self.dimension} dimensions)")

    async def _embed_many(self, texts: list[str]) -> list[list[float]]:
        response = await self._request(
            "POST",
            "/api/embed",
            {"model": self.model, "input": texts},
            timeout=self._timeout_for(len(texts)),
        )
        try:
            body = response.json()
        except ValueError as e:
            raise GenerationFailed(f"invalid JSON from Ollama: {e}", self.name) from e

        embeddings = body.get("embeddings")
        if embeddings is None and "embedding" in body:
            # Older daemons answer a single vector
            embeddings = [body["embedding"]]
        if not isinstance(embeddings, list):
            raise GenerationFailed("response carried no embeddings", self.name)
        return embeddings
