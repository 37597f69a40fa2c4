"""
Error taxonomy shared by embedding and generation backends.
"""


class EngineError(Exception):
    """Base class for recoverable backend failures."""

    def __init__(self, message: str, provider: str | None = None):
        super().__init__(message)
        self.provider = provider

    def __str__(self) -> str:
        base = super().__str__()
        return f"{self.provider}: {base}" if self.provider else base


class ProviderUnavailable(EngineError):
    """The backend is not reachable or was never probed successfully."""


class ModelNotFound(EngineError):
    """The backend is up but does not serve the requested model."""


class DimensionMismatch(EngineError):
    """A vector's length disagrees with the dimension the caller expected."""

    def __init__(self, expected: int, got: int, provider: str | None = None):
        super().__init__(f"expected dimension {expected}, got {got}", provider)
        self.expected = expected
        self.got = got


class NetworkError(EngineError):
    """Connection failure or timeout talking to a backend."""


class GenerationFailed(EngineError):
    """The backend answered, but with an error or a body we cannot use."""


class ApiKeyMissing(EngineError):
    """A cloud backend needs an API key that is absent or was rejected."""


class RetrievalError(EngineError):
    """Every retrieval tier failed for one query."""
