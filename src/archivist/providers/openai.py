"""
OpenAI-dialect embedding providers.

The same wire format serves the OpenAI cloud and local servers that speak
it (Open WebUI, TinyChat, LM Studio). Responses are
``{"data": [{"embedding": [...], "index": n}]}`` and the entries are not
guaranteed to arrive in input order.
"""

import httpx

from ..observability.logging import get_logger
from .base import HttpEmbeddingProvider, ProviderKind, ProviderStatus
from .errors import ApiKeyMissing, EngineError, GenerationFailed

logger = get_logger(__name__)

OPENAI_MODEL_DIMENSIONS = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}

# USD per million tokens
OPENAI_MODEL_PRICING = {
    "text-embedding-3-small": 0.02,
    "text-embedding-3-large": 0.13,
    "text-embedding-ada-002": 0.10,
}


def extract_embeddings(body: dict, provider: str) -> list[list[float]]:
    """Pull vectors out of an OpenAI-style response, restoring input order."""
    data = body.get("data")
    if not isinstance(data, list):
        raise GenerationFailed(f"response has no data array, keys: {list(body)}", provider)
    try:
        ordered = sorted(data, key=lambda item: item.get("index", 0))
        return [item["embedding"] for item in ordered]
    except (KeyError, TypeError, AttributeError) as e:
        raise GenerationFailed(f"malformed embedding entry: {e}", provider) from e


class OpenAIEmbeddingProvider(HttpEmbeddingProvider):
    """OpenAI cloud embeddings."""

    name = "openai"
    kind = ProviderKind.CLOUD_API

    def __init__(
        self,
        model: str = "text-embedding-3-small",
        base_url: str = "https://api.openai.com/v1",
        api_key: str | None = None,
        dimension: int | None = None,
        **kwargs,
    ):
        super().__init__(
            model=model,
            dimension=dimension or OPENAI_MODEL_DIMENSIONS.get(model, 1536),
            base_url=base_url,
            api_key=api_key,
            **kwargs,
        )

    def estimate_cost(self, texts: list[str]) -> float:
        """Rough USD cost for embedding ``texts``, at four characters per token."""
        tokens = sum(len(t) for t in texts) / 4
        return tokens / 1_000_000 * OPENAI_MODEL_PRICING.get(self.model, 0.02)

    async def _probe(self) -> ProviderStatus:
        if not self.api_key:
            return ProviderStatus(False, "OpenAI API key not configured")
        try:
            await self._request("GET", f"/models/{self.model}", timeout=10.0)
        except ApiKeyMissing:
            return ProviderStatus(False, "OpenAI API key rejected")
        except EngineError as e:
            return ProviderStatus(False, f"OpenAI not available: {e}")
        return ProviderStatus(True, f"OpenAI ready ({self.dimension} dimensions)")

    async def _embed_many(self, texts: list[str]) -> list[list[float]]:
        if not self.api_key:
            raise ApiKeyMissing("OpenAI API key not configured", self.name)
        response = await self._request(
            "POST",
            "/embeddings",
            {"model": self.model, "input": texts},
            timeout=self._timeout_for(len(texts)),
        )
        try:
            body = response.json()
        except ValueError as e:
            raise GenerationFailed(f"invalid JSON: {e}", self.name) from e
        return extract_embeddings(body, self.name)


class OpenAICompatibleEmbeddingProvider(HttpEmbeddingProvider):
    """A local server exposing ``/v1/embeddings`` in the OpenAI dialect."""

    name = "openai_compatible"
    kind = ProviderKind.LOCAL_DAEMON

    def __init__(
        self,
        model: str = "nomic-embed-text",
        base_url: str = "http://localhost:8080/v1",
        api_key: str | None = None,
        dimension: int | None = None,
        **kwargs,
    ):
        # Unknown until the first vector comes back unless configured
        super().__init__(
            model=model, dimension=dimension or 0, base_url=base_url, api_key=api_key, **kwargs
        )

    async def _probe(self) -> ProviderStatus:
        try:
            response = await self.client.post(
                f"{self.base_url}/embeddings",
                json={"model": self.model, "input": ["ping"]},
                headers=self._get_headers(),
                timeout=10.0,
            )
        except httpx.HTTPError as e:
            return ProviderStatus(False, f"Server not available at {self.base_url}: {e}")
        if response.status_code != 200:
            return ProviderStatus(False, f"Server returned HTTP {response.status_code}")
        try:
            vectors = extract_embeddings(response.json(), self.name)
        except (GenerationFailed, ValueError) as e:
            return ProviderStatus(False, f"Unexpected embedding response: {e}")
        if vectors and self._dimension <= 0:
            self._dimension = len(vectors[0])
        return ProviderStatus(True, f"{self.model} ready ({self.dimension} dimensions)")

    async def _embed_many(self, texts: list[str]) -> list[list[float]]:
        response = await self._request(
            "POST",
            "/embeddings",
            {"model": self.model, "input": texts},
            timeout=self._timeout_for(len(texts)),
        )
        try:
            body = response.json()
        except ValueError as e:
            raise GenerationFailed(f"invalid JSON: {e}", self.name) from e
        return extract_embeddings(body, self.name)
