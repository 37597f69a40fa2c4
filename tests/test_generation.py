"""
Tests for text generation backends.
"""

import json

import httpx
import pytest

from archivist.config.settings import GenerationConfig
from archivist.providers.errors import GenerationFailed, ModelNotFound, NetworkError
from archivist.providers.generation import (
    OllamaGenerationBackend,
    OpenAIChatBackend,
    create_generation_backend,
)


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestOllamaGeneration:
    """Test the Ollama /api/generate backend."""

    @pytest.mark.asyncio
    async def test_generate_payload_and_response(self):
        captured = {}

        def handler(request):
            captured["path"] = request.url.path
            captured["payload"] = json.loads(request.content)
            return httpx.Response(200, json={"response": "Hello there", "done": True})

        backend = OllamaGenerationBackend(
            model="llama2", base_url="http://localhost:11434", http_client=mock_client(handler)
        )
        text = await backend.generate("Hi", system_prompt="Be brief", temperature=0.3)

        assert text == "Hello there"
        assert captured["path"] == "/api/generate"
        assert captured["payload"] == {
            "model": "llama2",
            "prompt": "Hi",
            "stream": False,
            "options": {"temperature": 0.3},
            "system": "Be brief",
        }

    @pytest.mark.asyncio
    async def test_default_temperature_and_no_system(self):
        captured = {}

        def handler(request):
            captured.update(json.loads(request.content))
            return httpx.Response(200, json={"response": "ok"})

        backend = OllamaGenerationBackend(
            model="llama2",
            base_url="http://localhost:11434",
            temperature=0.7,
            http_client=mock_client(handler),
        )
        await backend.generate("Hi")

        assert captured["options"] == {"temperature": 0.7}
        assert "system" not in captured

    @pytest.mark.asyncio
    async def test_missing_response_field(self):
        backend = OllamaGenerationBackend(
            model="llama2",
            base_url="http://localhost:11434",
            http_client=mock_client(lambda request: httpx.Response(200, json={"done": True})),
        )
        with pytest.raises(GenerationFailed):
            await backend.generate("Hi")

    @pytest.mark.asyncio
    async def test_unknown_model(self):
        backend = OllamaGenerationBackend(
            model="missing",
            base_url="http://localhost:11434",
            http_client=mock_client(
                lambda request: httpx.Response(404, json={"error": "model 'missing' not found"})
            ),
        )
        with pytest.raises(ModelNotFound):
            await backend.generate("Hi")

    @pytest.mark.asyncio
    async def test_connection_failure(self):
        def handler(request):
            raise httpx.ConnectError("refused")

        backend = OllamaGenerationBackend(
            model="llama2",
            base_url="http://localhost:11434",
            max_retries=1,
            http_client=mock_client(handler),
        )
        with pytest.raises(NetworkError):
            await backend.generate("Hi")

    @pytest.mark.asyncio
    async def test_health_check(self):
        backend = OllamaGenerationBackend(
            model="llama2",
            base_url="http://localhost:11434",
            http_client=mock_client(lambda request: httpx.Response(200, json={"models": []})),
        )
        assert await backend.health_check() is True


class TestOpenAIChat:
    """Test the /chat/completions backend."""

    @pytest.mark.asyncio
    async def test_generate(self):
        captured = {}

        def handler(request):
            captured["auth"] = request.headers.get("authorization")
            captured["payload"] = json.loads(request.content)
            return httpx.Response(
                200, json={"choices": [{"message": {"role": "assistant", "content": "Answer"}}]}
            )

        backend = OpenAIChatBackend(
            model="gpt-4o-mini",
            base_url="https://api.openai.com/v1",
            api_key="sk-test",
            http_client=mock_client(handler),
        )
        text = await backend.generate("Question", system_prompt="System")

        assert text == "Answer"
        assert captured["auth"] == "Bearer sk-test"
        assert captured["payload"]["messages"] == [
            {"role": "system", "content": "System"},
            {"role": "user", "content": "Question"},
        ]

    @pytest.mark.asyncio
    async def test_unexpected_shape(self):
        backend = OpenAIChatBackend(
            model="gpt-4o-mini",
            base_url="https://api.openai.com/v1",
            http_client=mock_client(lambda request: httpx.Response(200, json={"choices": []})),
        )
        with pytest.raises(GenerationFailed):
            await backend.generate("Question")


class TestBackendFactory:
    """Test building backends from configuration."""

    def test_ollama_backend(self):
        backend = create_generation_backend(GenerationConfig())
        assert isinstance(backend, OllamaGenerationBackend)
        assert backend.model == "llama2"
        assert backend.base_url == "http://localhost:11434"

    def test_openai_backend(self):
        config = GenerationConfig(
            backend="openai", base_url="https://api.openai.com/v1/", model="gpt-4o-mini"
        )
        backend = create_generation_backend(config)
        assert isinstance(backend, OpenAIChatBackend)
        assert backend.base_url == "https://api.openai.com/v1"
