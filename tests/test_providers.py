"""
Tests for embedding providers and the provider registry.

HTTP backends are exercised against ``httpx.MockTransport`` handlers.
"""

import json

import httpx
import pytest

from archivist.config.settings import EmbeddingsConfig
from archivist.providers import sentence_transformers as st_module
from archivist.providers.base import EmbeddingVector, ProviderKind
from archivist.providers.errors import (
    ApiKeyMissing,
    DimensionMismatch,
    EngineError,
    GenerationFailed,
    ModelNotFound,
    NetworkError,
    ProviderUnavailable,
)
from archivist.providers.none import NoneEmbeddingProvider
from archivist.providers.ollama import OllamaEmbeddingProvider
from archivist.providers.openai import (
    OpenAICompatibleEmbeddingProvider,
    OpenAIEmbeddingProvider,
    extract_embeddings,
)
from archivist.providers.registry import EmbeddingRegistry
from archivist.providers.sentence_transformers import SentenceTransformerEmbeddingProvider

from .conftest import FakeEmbeddingProvider


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def ollama_handler(models=("nomic-embed-text:latest",), vectors=None, status=200):
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.path == "/api/tags":
            return httpx.Response(200, json={"models": [{"name": m} for m in models]})
        if request.url.path == "/api/embed":
            if status != 200:
                return httpx.Response(status, json={"error": "model not found"})
            payload = json.loads(request.content)
            count = len(payload["input"])
            return httpx.Response(200, json={"embeddings": vectors or [[0.1, 0.2, 0.3]] * count})
        return httpx.Response(404)

    handler.requests = requests
    return handler


class TestEmbeddingVector:
    """Test the vector value type."""

    def test_key_and_dimension(self):
        vector = EmbeddingVector(values=[0.1, 0.2], provider="ollama", model="nomic-embed-text")
        assert vector.key == "ollama:nomic-embed-text"
        assert vector.dimension == 2


class TestEngineErrors:
    """Test the error taxonomy."""

    def test_provider_prefix_in_message(self):
        error = NetworkError("timed out", "ollama")
        assert str(error) == "ollama: timed out"
        assert isinstance(error, EngineError)

    def test_dimension_mismatch_fields(self):
        error = DimensionMismatch(768, 384, "ollama")
        assert error.expected == 768
        assert error.got == 384
        assert "expected dimension 768, got 384" in str(error)


class TestOllamaProvider:
    """Test the Ollama daemon provider."""

    @pytest.mark.asyncio
    async def test_probe_reports_ready(self):
        provider = OllamaEmbeddingProvider(http_client=mock_client(ollama_handler()))
        status = await provider.check_availability()

        assert status.available is True
        assert status.message == "Ollama ready (768 dimensions)"
        assert provider.is_available is True
        assert provider.installed_models == ["nomic-embed-text:latest"]

    @pytest.mark.asyncio
    async def test_probe_missing_model(self):
        provider = OllamaEmbeddingProvider(
            http_client=mock_client(ollama_handler(models=("llama2:latest",)))
        )
        status = await provider.check_availability()

        assert status.available is False
        assert "ollama pull nomic-embed-text" in status.message
        assert provider.is_available is False

    @pytest.mark.asyncio
    async def test_probe_never_raises_on_connection_failure(self):
        def handler(request):
            raise httpx.ConnectError("connection refused")

        provider = OllamaEmbeddingProvider(http_client=mock_client(handler))
        status = await provider.check_availability()

        assert status.available is False
        assert "not available" in status.message

    @pytest.mark.asyncio
    async def test_embed_batch_preserves_order_and_tags_provider(self):
        vectors = [[1.0, 0.0, 0.0], [0.0, 1.0, 0.0]]
        handler = ollama_handler(vectors=vectors)
        provider = OllamaEmbeddingProvider(http_client=mock_client(handler), max_retries=1)
        await provider.check_availability()

        result = await provider.embed_batch(["first", "second"])

        assert [v.values for v in result] == vectors
        assert all(v.key == "ollama:nomic-embed-text" for v in result)
        sent = json.loads(handler.requests[-1].content)
        assert sent == {"model": "nomic-embed-text", "input": ["first", "second"]}

    @pytest.mark.asyncio
    async def test_embed_accepts_legacy_single_vector(self):
        def handler(request):
            if request.url.path == "/api/tags":
                return httpx.Response(200, json={"models": [{"name": "nomic-embed-text"}]})
            return httpx.Response(200, json={"embedding": [0.5, 0.5]})

        provider = OllamaEmbeddingProvider(http_client=mock_client(handler), max_retries=1)
        await provider.check_availability()

        vector = await provider.embed("hello")
        assert vector.values == [0.5, 0.5]

    @pytest.mark.asyncio
    async def test_embed_requires_availability(self):
        provider = OllamaEmbeddingProvider(http_client=mock_client(ollama_handler()))
        with pytest.raises(ProviderUnavailable):
            await provider.embed("hello")

    @pytest.mark.asyncio
    async def test_embed_dimension_mismatch(self):
        provider = OllamaEmbeddingProvider(http_client=mock_client(ollama_handler()), max_retries=1)
        await provider.check_availability()

        with pytest.raises(DimensionMismatch) as exc_info:
            await provider.embed("hello", expected_dimension=768)
        assert exc_info.value.got == 3

    @pytest.mark.asyncio
    async def test_embed_404_maps_to_model_not_found(self):
        provider = OllamaEmbeddingProvider(
            http_client=mock_client(ollama_handler(status=404)), max_retries=1
        )
        await provider.check_availability()

        with pytest.raises(ModelNotFound):
            await provider.embed("hello")

    @pytest.mark.asyncio
    async def test_embed_server_error_maps_to_generation_failed(self):
        provider = OllamaEmbeddingProvider(
            http_client=mock_client(ollama_handler(status=500)), max_retries=1
        )
        await provider.check_availability()

        with pytest.raises(GenerationFailed):
            await provider.embed("hello")

    @pytest.mark.asyncio
    async def test_transport_error_maps_to_network_error(self):
        def handler(request):
            if request.url.path == "/api/tags":
                return httpx.Response(200, json={"models": [{"name": "nomic-embed-text"}]})
            raise httpx.ConnectError("connection reset")

        provider = OllamaEmbeddingProvider(http_client=mock_client(handler), max_retries=1)
        await provider.check_availability()

        with pytest.raises(NetworkError):
            await provider.embed("hello")

    @pytest.mark.asyncio
    async def test_empty_batch_makes_no_request(self):
        handler = ollama_handler()
        provider = OllamaEmbeddingProvider(http_client=mock_client(handler))
        assert await provider.embed_batch([]) == []
        assert handler.requests == []

    def test_descriptor(self):
        provider = OllamaEmbeddingProvider(model="mxbai-embed-large")
        descriptor = provider.describe()
        assert descriptor.kind is ProviderKind.LOCAL_DAEMON
        assert descriptor.dimension == 1024
        assert descriptor.key == "ollama:mxbai-embed-large"
        assert descriptor.is_available is False


class TestOpenAIProviders:
    """Test the OpenAI cloud and OpenAI-compatible providers."""

    def test_extract_embeddings_restores_input_order(self):
        body = {"data": [{"index": 1, "embedding": [2.0]}, {"index": 0, "embedding": [1.0]}]}
        assert extract_embeddings(body, "openai") == [[1.0], [2.0]]

    def test_extract_embeddings_rejects_missing_data(self):
        with pytest.raises(GenerationFailed):
            extract_embeddings({"object": "list"}, "openai")

    @pytest.mark.asyncio
    async def test_probe_without_key(self):
        provider = OpenAIEmbeddingProvider(api_key=None)
        status = await provider.check_availability()
        assert status.available is False
        assert status.message == "OpenAI API key not configured"

    @pytest.mark.asyncio
    async def test_probe_and_embed_with_key(self):
        seen_headers = []

        def handler(request):
            seen_headers.append(request.headers.get("authorization"))
            if request.method == "GET":
                return httpx.Response(200, json={"id": "text-embedding-3-small"})
            return httpx.Response(
                200,
                json={"data": [{"index": 0, "embedding": [0.0] * 1536}]},
            )

        provider = OpenAIEmbeddingProvider(
            api_key="sk-test", http_client=mock_client(handler), max_retries=1
        )
        status = await provider.check_availability()
        vector = await provider.embed("hello", expected_dimension=1536)

        assert status.message == "OpenAI ready (1536 dimensions)"
        assert vector.dimension == 1536
        assert vector.key == "openai:text-embedding-3-small"
        assert seen_headers == ["Bearer sk-test", "Bearer sk-test"]

    @pytest.mark.asyncio
    async def test_rejected_key(self):
        def handler(request):
            return httpx.Response(401, json={"error": {"message": "Incorrect API key"}})

        provider = OpenAIEmbeddingProvider(
            api_key="sk-bad", http_client=mock_client(handler), max_retries=1
        )
        status = await provider.check_availability()
        assert status.available is False
        assert status.message == "OpenAI API key rejected"

        provider.is_available = True
        with pytest.raises(ApiKeyMissing):
            await provider.embed("hello")

    def test_estimate_cost(self):
        provider = OpenAIEmbeddingProvider(api_key="sk-test")
        cost = provider.estimate_cost(["x" * 4_000_000])
        assert cost == pytest.approx(0.02)

    @pytest.mark.asyncio
    async def test_compatible_provider_learns_dimension(self):
        def handler(request):
            return httpx.Response(200, json={"data": [{"index": 0, "embedding": [0.1] * 5}]})

        provider = OpenAICompatibleEmbeddingProvider(
            base_url="http://localhost:8080/v1", http_client=mock_client(handler), max_retries=1
        )
        assert provider.dimension == 0

        status = await provider.check_availability()

        assert status.available is True
        assert provider.dimension == 5
        assert status.message == "nomic-embed-text ready (5 dimensions)"

    @pytest.mark.asyncio
    async def test_compatible_provider_unreachable(self):
        def handler(request):
            raise httpx.ConnectError("refused")

        provider = OpenAICompatibleEmbeddingProvider(http_client=mock_client(handler))
        status = await provider.check_availability()
        assert status.available is False
        assert "Server not available" in status.message


class TestLocalProviders:
    """Test the in-process and keyword-only providers."""

    @pytest.mark.asyncio
    async def test_sentence_transformers_missing_library(self, monkeypatch):
        monkeypatch.setattr(st_module, "SENTENCE_TRANSFORMERS_AVAILABLE", False)
        provider = SentenceTransformerEmbeddingProvider()

        status = await provider.check_availability()

        assert status.available is False
        assert "not installed" in status.message
        assert provider.dimension == 384

    @pytest.mark.asyncio
    async def test_none_provider(self):
        provider = NoneEmbeddingProvider()
        assert provider.is_available is True
        assert provider.kind is ProviderKind.NONE
        with pytest.raises(ProviderUnavailable):
            await provider.embed("hello")


class TestEmbeddingRegistry:
    """Test provider registration and selection."""

    def test_from_settings_registers_every_backend(self):
        registry = EmbeddingRegistry.from_settings(EmbeddingsConfig())
        names = {d.name for d in registry.descriptors()}
        assert names == {"none", "ollama", "openai", "openai_compatible", "sentence_transformers"}
        assert registry.active.name == "ollama"

    def test_unknown_active_provider(self):
        with pytest.raises(KeyError):
            EmbeddingRegistry(active="missing")

    def test_get_unknown(self):
        with pytest.raises(KeyError):
            EmbeddingRegistry().get("missing")

    def test_keyword_only_by_default(self):
        registry = EmbeddingRegistry()
        assert registry.active.name == "none"
        assert registry.use_semantic_search is False
        assert registry.status_message == "Keyword search only (no embeddings)"

    @pytest.mark.asyncio
    async def test_embed_with_none_selected(self):
        registry = EmbeddingRegistry()
        with pytest.raises(ProviderUnavailable):
            await registry.embed("hello")
        with pytest.raises(ProviderUnavailable):
            await registry.embed_batch(["hello"])

    @pytest.mark.asyncio
    async def test_select_switches_active_provider(self):
        fake = FakeEmbeddingProvider()
        registry = EmbeddingRegistry([fake])

        status = await registry.select("fake")

        assert status.available is True
        assert registry.active is fake
        assert registry.active_key == "fake:bow"
        assert registry.use_semantic_search is True
        assert registry.status_message == "fake ready (8 dimensions)"

        vector = await registry.embed("budget meeting")
        assert vector.key == "fake:bow"

    def test_unavailable_status_message(self):
        fake = FakeEmbeddingProvider()
        fake.is_available = False
        registry = EmbeddingRegistry([fake], active="fake")
        assert registry.status_message == "fake not available"
        assert registry.use_semantic_search is False

    @pytest.mark.asyncio
    async def test_refresh_probes_all(self):
        registry = EmbeddingRegistry([FakeEmbeddingProvider()])
        statuses = await registry.refresh()
        assert set(statuses) == {"none", "fake"}
        assert all(s.available for s in statuses.values())
