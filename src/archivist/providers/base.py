"""
Embedding provider contract.

Providers live in one of four places: a local daemon reached over HTTP
(Ollama, Open WebUI), a library loaded into this process
(sentence-transformers), a cloud API (OpenAI), or nowhere at all (the
keyword-only ``none`` provider). They all expose the same surface so the
registry and the index never branch on concrete types.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..observability.logging import get_logger
from .errors import (
    ApiKeyMissing,
    DimensionMismatch,
    GenerationFailed,
    ModelNotFound,
    NetworkError,
    ProviderUnavailable,
)

logger = get_logger(__name__)


class ProviderKind(Enum):
    """Where a provider runs."""

    LOCAL_DAEMON = "local_daemon"
    LOCAL_NATIVE = "local_native"
    CLOUD_API = "cloud_api"
    NONE = "none"


@dataclass
class EmbeddingVector:
    """A vector tagged with the provider and model that produced it."""

    values: list[float]
    provider: str
    model: str

    @property
    def key(self) -> str:
        return f"{self.provider}:{self.model}"

    @property
    def dimension(self) -> int:
        return len(self.values)


@dataclass
class ProviderStatus:
    """Outcome of an availability probe."""

    available: bool
    message: str


@dataclass
class ProviderDescriptor:
    """Read-only view of one provider for listings and status lines."""

    name: str
    kind: ProviderKind
    model: str
    dimension: int
    is_available: bool
    status_message: str

    @property
    def key(self) -> str:
        return f"{self.name}:{self.model}"


class EmbeddingProvider(ABC):
    """Uniform interface over embedding backends."""

    name: str = "base"
    kind: ProviderKind = ProviderKind.NONE

    def __init__(self, model: str, dimension: int):
        self.model = model
        self._dimension = dimension
        self.is_available = False
        self.status_message = "Not checked"

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def key(self) -> str:
        return f"{self.name}:{self.model}"

    def describe(self) -> ProviderDescriptor:
        return ProviderDescriptor(
            name=self.name,
            kind=self.kind,
            model=self.model,
            dimension=self.dimension,
            is_available=self.is_available,
            status_message=self.status_message,
        )

    async def check_availability(self) -> ProviderStatus:
        """Probe the backend. Never raises."""
        try:
            status = await self._probe()
        except Exception as e:
            logger.warning(f"Availability probe failed for {self.name}: {e}", provider=self.name)
            status = ProviderStatus(False, f"{self.name} not available: {e}")
        self.is_available = status.available
        self.status_message = status.message
        return status

    async def embed(self, text: str, expected_dimension: int | None = None) -> EmbeddingVector:
        """Embed one text."""
        vectors = await self.embed_batch([text], expected_dimension=expected_dimension)
        return vectors[0]

    async def embed_batch(
        self, texts: list[str], expected_dimension: int | None = None
    ) -> list[EmbeddingVector]:
        """Embed many texts, returned in input order."""
        if not texts:
            return []
        self._require_available()
        raw = await self._embed_many(texts)
        if len(raw) != len(texts):
            raise GenerationFailed(
                f"backend returned {len(raw)} vectors for {len(texts)} inputs", self.name
            )
        vectors = [
            EmbeddingVector(values=[float(x) for x in v], provider=self.name, model=self.model)
            for v in raw
        ]
        self._check_dimensions(vectors, expected_dimension)
        return vectors

    @abstractmethod
    async def _probe(self) -> ProviderStatus:
        """Cheap liveness check."""
        ...

    @abstractmethod
    async def _embed_many(self, texts: list[str]) -> list[list[float]]:
        """Backend call producing one raw vector per input, in input order."""
        ...

    def _require_available(self) -> None:
        if not self.is_available:
            raise ProviderUnavailable(self.status_message, self.name)

    def _check_dimensions(
        self, vectors: list[EmbeddingVector], expected_dimension: int | None
    ) -> None:
        for vector in vectors:
            if expected_dimension is not None and vector.dimension != expected_dimension:
                raise DimensionMismatch(expected_dimension, vector.dimension, self.name)
            if not vector.values:
                raise GenerationFailed("backend returned an empty vector", self.name)
        # The first vector we see fixes the dimension for models missing from the table
        if vectors and self._dimension <= 0:
            self._dimension = vectors[0].dimension


class HttpEmbeddingProvider(EmbeddingProvider):
    """Shared plumbing for providers reached over HTTP."""

    def __init__(
        self,
        model: str,
        dimension: int,
        base_url: str,
        api_key: str | None = None,
        timeout: float = 30.0,
        batch_timeout: float = 180.0,
        max_retries: int = 3,
        http_client: httpx.AsyncClient | None = None,
    ):
        super().__init__(model, dimension)
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.batch_timeout = batch_timeout
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

    def _timeout_for(self, count: int) -> float:
        return self.timeout if count <= 1 else self.batch_timeout

    async def _request(
        self,
        method: str,
        path: str,
        payload: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> httpx.Response:
        """Send one request, retrying transport failures and mapping HTTP errors."""
        url = f"{self.base_url}{path}"
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_retries),
                wait=wait_exponential(multiplier=1, min=1, max=10),
                retry=retry_if_exception_type((httpx.TimeoutException, httpx.ConnectError)),
                reraise=True,
            ):
                with attempt:
                    response = await self.client.request(
                        method,
                        url,
                        json=payload,
                        headers=self._get_headers(),
                        timeout=timeout or self.timeout,
                    )
        except httpx.HTTPError as e:
            raise NetworkError(f"{type(e).__name__} talking to {url}: {e}", self.name) from e
        raise_for_backend_status(response, self.name, self.model)
        return response


def raise_for_backend_status(response: httpx.Response, provider: str, model: str) -> None:
    """Map an HTTP error status onto the engine error taxonomy."""
    if response.status_code < 400:
        return
    detail = _error_detail(response)
    if response.status_code in (401, 403):
        raise ApiKeyMissing(f"credentials rejected ({response.status_code}): {detail}", provider)
    if response.status_code == 404:
        raise ModelNotFound(f"model '{model}' not found: {detail}", provider)
    raise GenerationFailed(f"HTTP {response.status_code}: {detail}", provider)


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    if isinstance(body, dict):
        error = body.get("error", body)
        if isinstance(error, dict):
            return str(error.get("message", error))
        return str(error)
    return str(body)[:200]
