"""Embedding providers, their registry, and text generation backends."""

from .base import (
    EmbeddingProvider,
    EmbeddingVector,
    ProviderDescriptor,
    ProviderKind,
    ProviderStatus,
)
from .errors import (
    ApiKeyMissing,
    DimensionMismatch,
    EngineError,
    GenerationFailed,
    ModelNotFound,
    NetworkError,
    ProviderUnavailable,
    RetrievalError,
)
from .generation import GenerationBackend, create_generation_backend
from .registry import EmbeddingRegistry

__all__ = [
    "EmbeddingProvider",
    "EmbeddingVector",
    "ProviderDescriptor",
    "ProviderKind",
    "ProviderStatus",
    "EmbeddingRegistry",
    "GenerationBackend",
    "create_generation_backend",
    "EngineError",
    "ProviderUnavailable",
    "ModelNotFound",
    "DimensionMismatch",
    "NetworkError",
    "GenerationFailed",
    "ApiKeyMissing",
    "RetrievalError",
]
