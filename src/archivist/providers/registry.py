"""
Registry of embedding providers and the one currently active.

The registry is a long-lived service: the container builds it once from
settings and hands the same instance to the index and the engines.
"""

import asyncio

from ..config.settings import EmbeddingsConfig
from ..observability.logging import get_logger
from .base import EmbeddingProvider, EmbeddingVector, ProviderDescriptor, ProviderStatus
from .errors import ProviderUnavailable
from .none import NoneEmbeddingProvider
from .ollama import OllamaEmbeddingProvider
from .openai import OpenAICompatibleEmbeddingProvider, OpenAIEmbeddingProvider
from .sentence_transformers import SentenceTransformerEmbeddingProvider

logger = get_logger(__name__)


class EmbeddingRegistry:
    """Holds the configured providers and routes embedding calls to the active one."""

    def __init__(self, providers: list[EmbeddingProvider] | None = None, active: str = "none"):
        self._providers: dict[str, EmbeddingProvider] = {}
        self.register(NoneEmbeddingProvider())
        for provider in providers or []:
            self.register(provider)
        if active not in self._providers:
            raise KeyError(f"Unknown embedding provider: {active}")
        self._active = active

    @classmethod
    def from_settings(cls, config: EmbeddingsConfig, http_client=None) -> "EmbeddingRegistry":
        """Build every provider the configuration describes."""
        http_kwargs = {
            "timeout": config.timeout,
            "batch_timeout": config.batch_timeout,
            "max_retries": config.max_retries,
            "http_client": http_client,
        }
        providers: list[EmbeddingProvider] = [
            OllamaEmbeddingProvider(
                model=config.ollama_model, base_url=config.ollama_base_url, **http_kwargs
            ),
            OpenAIEmbeddingProvider(
                model=config.openai_model,
                base_url=config.openai_base_url,
                api_key=config.openai_api_key,
                **http_kwargs,
            ),
            OpenAICompatibleEmbeddingProvider(
                model=config.compatible_model,
                base_url=config.compatible_base_url,
                api_key=config.compatible_api_key,
                dimension=config.compatible_dimension,
                **http_kwargs,
            ),
            SentenceTransformerEmbeddingProvider(model=config.sentence_transformers_model),
        ]
        return cls(providers, active=config.provider)

    def register(self, provider: EmbeddingProvider) -> None:
        self._providers[provider.name] = provider

    def get(self, name: str) -> EmbeddingProvider:
        try:
            return self._providers[name]
        except KeyError:
            raise KeyError(f"Unknown embedding provider: {name}") from None

    @property
    def active(self) -> EmbeddingProvider:
        return self._providers[self._active]

    @property
    def active_key(self) -> str:
        return self.active.key

    @property
    def use_semantic_search(self) -> bool:
        provider = self.active
        return provider.name != "none" and provider.is_available

    @property
    def status_message(self) -> str:
        provider = self.active
        if provider.name == "none":
            return "Keyword search only (no embeddings)"
        if provider.is_available:
            return f"{provider.name} ready ({provider.dimension} dimensions)"
        return f"{provider.name} not available"

    async def select(self, name: str) -> ProviderStatus:
        """Make ``name`` the active provider and probe it."""
        provider = self.get(name)
        previous = self._active
        self._active = name
        status = await provider.check_availability()
        if previous != name:
            logger.info(
                f"Embedding provider switched from {previous} to {name}; "
                "vectors from the previous provider will not be compared",
                previous=previous,
                provider=name,
                available=status.available,
            )
        return status

    async def refresh(self) -> dict[str, ProviderStatus]:
        """Re-probe every provider."""
        names = list(self._providers)
        results = await asyncio.gather(*(self._providers[n].check_availability() for n in names))
        return dict(zip(names, results, strict=True))

    def descriptors(self) -> list[ProviderDescriptor]:
        return [p.describe() for p in self._providers.values()]

    async def embed(self, text: str, expected_dimension: int | None = None) -> EmbeddingVector:
        """Embed with the active provider."""
        provider = self.active
        if provider.name == "none":
            raise ProviderUnavailable("keyword-only mode is selected", provider.name)
        return await provider.embed(text, expected_dimension=expected_dimension)

    async def embed_batch(
        self, texts: list[str], expected_dimension: int | None = None
    ) -> list[EmbeddingVector]:
        provider = self.active
        if provider.name == "none":
            raise ProviderUnavailable("keyword-only mode is selected", provider.name)
        return await provider.embed_batch(texts, expected_dimension=expected_dimension)

    async def aclose(self) -> None:
        for provider in self._providers.values():
            close = getattr(provider, "aclose", None)
            if close is not None:
                await close()
