"""
Configuration for the archive engine, built on Pydantic Settings.

Every section can be overridden from the environment with the
``ARCHIVIST_`` prefix and ``__`` as the nesting delimiter, for example
``ARCHIVIST_EMBEDDINGS__PROVIDER=openai`` or
``ARCHIVIST_GENERATION__MODEL=llama3.1:8b``.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ProviderName = Literal["ollama", "openai", "openai_compatible", "sentence_transformers", "none"]


def _validate_url(v: str) -> str:
    if not v.startswith(("http://", "https://")):
        raise ValueError("base_url must start with http:// or https://")
    return v.rstrip("/")


class EmbeddingsConfig(BaseModel):
    """Embedding backends and the one selected at startup."""

    provider: ProviderName = Field("ollama", description="Active embedding provider")

    ollama_base_url: str = Field("http://localhost:11434")
    ollama_model: str = Field("nomic-embed-text")

    openai_base_url: str = Field("https://api.openai.com/v1")
    openai_model: str = Field("text-embedding-3-small")
    openai_api_key: str | None = Field(None, description="API key for the OpenAI cloud")

    # Any server speaking the OpenAI embeddings dialect (Open WebUI, TinyChat, LM Studio)
    compatible_base_url: str = Field("http://localhost:8080/v1")
    compatible_model: str = Field("nomic-embed-text")
    compatible_api_key: str | None = Field(None)
    compatible_dimension: int | None = Field(None, gt=0)

    sentence_transformers_model: str = Field("all-MiniLM-L6-v2")

    timeout: float = Field(30.0, gt=0, description="Single embedding call timeout in seconds")
    batch_timeout: float = Field(180.0, gt=0, description="Batch embedding timeout in seconds")
    max_retries: int = Field(3, ge=1)

    @field_validator("ollama_base_url", "openai_base_url", "compatible_base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        return _validate_url(v)


class GenerationConfig(BaseModel):
    """Text generation backend used for answers, titles and summaries."""

    backend: Literal["ollama", "openai"] = Field("ollama")
    base_url: str = Field("http://localhost:11434")
    model: str = Field("llama2")
    api_key: str | None = Field(None)
    timeout: float = Field(180.0, gt=0)
    temperature: float = Field(0.7, ge=0.0, le=2.0)
    title_temperature: float = Field(0.3, ge=0.0, le=2.0)
    max_retries: int = Field(3, ge=1)

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        return _validate_url(v)


class RetrievalConfig(BaseModel):
    """How much evidence each question pulls in."""

    max_evidence: int = Field(20, gt=0)
    snippet_chars: int = Field(300, gt=20)
    sample_on_miss: int = Field(
        20, ge=0, description="Recent documents returned when nothing matches"
    )
    breadth: dict[str, int] = Field(
        default_factory=lambda: {
            "statistics": 0,
            "top_list": 10,
            "date_range": 20,
            "summary": 20,
            "analysis": 20,
            "time_travel": 20,
            "content_search": 10,
            "search": 10,
            "follow_up": 5,
        }
    )


class IndexingConfig(BaseModel):
    """Batch indexing limits."""

    max_concurrent: int = Field(5, gt=0)
    embedding_body_chars: int = Field(500, gt=0)


class ConversationConfig(BaseModel):
    """Conversation engine defaults."""

    max_context_messages: int = Field(10, gt=0)
    history_message_chars: int = Field(500, gt=0)
    default_title: str = Field("New Conversation")
    store: Literal["memory", "sqlite"] = Field("sqlite")
    store_path: Path = Field(Path("./data/conversations.db"))
    record_store_path: Path = Field(Path("./data/records.db"))


class ObservabilityConfig(BaseModel):
    """Logging configuration."""

    log_level: str = Field("INFO")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in allowed:
            raise ValueError(f"log_level must be one of {sorted(allowed)}")
        return v.upper()


class Settings(BaseSettings):
    """Main application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_prefix="ARCHIVIST_", env_nested_delimiter="__", case_sensitive=False, extra="ignore"
    )

    embeddings: EmbeddingsConfig = Field(default_factory=EmbeddingsConfig)
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    indexing: IndexingConfig = Field(default_factory=IndexingConfig)
    conversation: ConversationConfig = Field(default_factory=ConversationConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)

    data_directory: Path = Field(Path("./data"))

    def ensure_directories(self) -> None:
        """Create the directories the configured stores write into."""
        self.data_directory.mkdir(parents=True, exist_ok=True)
        if self.conversation.store == "sqlite":
            self.conversation.store_path.parent.mkdir(parents=True, exist_ok=True)
            self.conversation.record_store_path.parent.mkdir(parents=True, exist_ok=True)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
