"""
Text generation backends.

Answers, conversation titles, behavioral matches and search summaries all go
through ``generate(prompt, system_prompt, temperature)``. Transport and HTTP
failures are mapped onto the same error taxonomy as the embedding providers.
"""

from abc import ABC, abstractmethod
from typing import Any

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..config.settings import GenerationConfig
from ..observability.logging import get_logger
from ..observability.probe import probe
from .base import raise_for_backend_status
from .errors import GenerationFailed, NetworkError

logger = get_logger(__name__)


class GenerationBackend(ABC):
    """Contract for anything that turns a prompt into text."""

    name: str = "base"

    def __init__(self, model: str, temperature: float = 0.7):
        self.model = model
        self.temperature = temperature

    @abstractmethod
    async def generate(
        self, prompt: str, system_prompt: str | None = None, temperature: float | None = None
    ) -> str:
        """Generate a completion for ``prompt``."""
        ...

    async def health_check(self) -> bool:
        return True

    async def aclose(self) -> None:
        return None


class HttpGenerationBackend(GenerationBackend):
    """Shared HTTP plumbing with retries on transport errors."""

    def __init__(
        self,
        model: str,
        base_url: str,
        api_key: str | None = None,
        timeout: float = 180.0,
        temperature: float = 0.7,
        max_retries: int = 3,
        http_client: httpx.AsyncClient | None = None,
    ):
        super().__init__(model, temperature)
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.max_retries = max_retries
        self._http_client = http_client
        self._owned_client = http_client is None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                limits=httpx.Limits(max_connections=10, max_keepalive_connections=2),
            )
            self._owned_client = True
        return self._http_client

    async def aclose(self) -> None:
        if self._owned_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    def _get_headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_retries),
                wait=wait_exponential(multiplier=1, min=1, max=10),
                retry=retry_if_exception_type((httpx.TimeoutException, httpx.ConnectError)),
                reraise=True,
            ):
                with attempt:
                    response = await self.client.post(
                        url, json=payload, headers=self._get_headers(), timeout=self.timeout
                    )
        except httpx.HTTPError as e:
            logger.error(f"Generation request failed: {e}", backend=self.name)
            raise NetworkError(f"{type(e).__name__} talking to {url}: {e}", self.name) from e

        raise_for_backend_status(response, self.name, self.model)
        try:
            return response.json()
        except ValueError as e:
            raise GenerationFailed(f"invalid JSON: {e}", self.name) from e


class OllamaGenerationBackend(HttpGenerationBackend):
    """Completions from Ollama's ``/api/generate``."""

    name = "ollama"

    async def generate(
        self, prompt: str, system_prompt: str | None = None, temperature: float | None = None
    ) -> str:
        payload: dict[str, Any] = {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
            "options": {
                "temperature": self.temperature if temperature is None else temperature,
            },
        }
        if system_prompt:
            payload["system"] = system_prompt

        with probe("generation.generate", backend=self.name, model=self.model):
            body = await self._post("/api/generate", payload)

        text = body.get("response")
        if not isinstance(text, str):
            raise GenerationFailed("response field missing", self.name)
        return text

    async def health_check(self) -> bool:
        try:
            response = await self.client.get(f"{self.base_url}/api/tags", timeout=5.0)
            return response.status_code == 200
        except httpx.HTTPError:
            return False


class OpenAIChatBackend(HttpGenerationBackend):
    """Completions from an OpenAI-style ``/chat/completions`` endpoint."""

    name = "openai"

    async def generate(
        self, prompt: str, system_prompt: str | None = None, temperature: float | None = None
    ) -> str:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})
        payload = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature if temperature is None else temperature,
        }

        with probe("generation.generate", backend=self.name, model=self.model):
            body = await self._post("/chat/completions", payload)

        try:
            return body["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise GenerationFailed(f"unexpected completion shape: {e}", self.name) from e

    async def health_check(self) -> bool:
        try:
            response = await self.client.get(
                f"{self.base_url}/models", headers=self._get_headers(), timeout=5.0
            )
            return response.status_code == 200
        except httpx.HTTPError:
            return False


def create_generation_backend(
    config: GenerationConfig, http_client: httpx.AsyncClient | None = None
) -> GenerationBackend:
    """Build the backend named in configuration."""
    backend_cls = OllamaGenerationBackend if config.backend == "ollama" else OpenAIChatBackend
    return backend_cls(
        model=config.model,
        base_url=config.base_url,
        api_key=config.api_key,
        timeout=config.timeout,
        temperature=config.temperature,
        max_retries=config.max_retries,
        http_client=http_client,
    )
