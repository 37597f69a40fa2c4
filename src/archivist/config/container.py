"""
Dependency injection container for the archive engine.

Services are created lazily from factories on first ``get`` and cached, so
the embedding registry, the index and the engines are shared singletons
within one container. ``cleanup`` closes every HTTP client the container
created.
"""

from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Any, TypeVar

from ..observability.logging import get_logger
from .settings import Settings, get_settings

T = TypeVar("T")

logger = get_logger(__name__)


class Container:
    """Dependency injection container with async lifecycle management."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self._services: dict[str, Any] = {}
        self._factories: dict[str, Any] = {}
        self._singletons: dict[str, Any] = {}

    def register_factory(self, name: str, factory: Any) -> None:
        """Register a factory function for a service."""
        self._factories[name] = factory

    def register_singleton(self, name: str, instance: Any) -> None:
        """Register a singleton instance."""
        self._singletons[name] = instance

    def get(self, name: str, default: Any = None) -> Any:
        """Get a service by name."""
        if name in self._singletons:
            return self._singletons[name]

        if name in self._services:
            return self._services[name]

        if name in self._factories:
            instance = self._factories[name](self)
            self._services[name] = instance
            return instance

        return default

    def has(self, name: str) -> bool:
        return name in self._singletons or name in self._services or name in self._factories

    async def cleanup(self) -> None:
        """Close every instantiated service that owns a connection."""
        for name, service in list(self._services.items()):
            closer = getattr(service, "aclose", None)
            if closer is None:
                continue
            try:
                await closer()
            except Exception as e:
                logger.warning(f"Error cleaning up {name}: {e}", service=name)

        self._services.clear()

    @asynccontextmanager
    async def lifespan(self):
        """Async context manager for container lifecycle."""
        try:
            yield self
        finally:
            await self.cleanup()


def setup_container(settings: Settings | None = None) -> Container:
    """Setup container with default service factories."""
    container = Container(settings)

    def _http_client_factory(c: Container):
        import httpx

        return httpx.AsyncClient(
            timeout=httpx.Timeout(c.settings.embeddings.timeout),
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=5),
        )

    def _embedding_registry_factory(c: Container):
        from ..providers.registry import EmbeddingRegistry

        return EmbeddingRegistry.from_settings(c.settings.embeddings, c.get("http_client"))

    def _document_index_factory(c: Container):
        from ..rag.index import DocumentIndex

        return DocumentIndex(
            registry=c.get("embedding_registry"),
            max_concurrent=c.settings.indexing.max_concurrent,
            snippet_chars=c.settings.retrieval.snippet_chars,
            sample_on_miss=c.settings.retrieval.sample_on_miss,
            embedding_body_chars=c.settings.indexing.embedding_body_chars,
        )

    def _query_router_factory(c: Container):
        from ..rag.router import QueryRouter

        return QueryRouter()

    def _retrieval_engine_factory(c: Container):
        from ..rag.retriever import RetrievalEngine
        from ..rag.router import QueryType

        retrieval = c.settings.retrieval
        return RetrievalEngine(
            index=c.get("document_index"),
            router=c.get("query_router"),
            max_evidence=retrieval.max_evidence,
            breadth={QueryType(name): n for name, n in retrieval.breadth.items()},
        )

    def _generation_backend_factory(c: Container):
        from ..providers.generation import create_generation_backend

        return create_generation_backend(c.settings.generation)

    def _prompt_builder_factory(c: Container):
        from ..rag.context import PromptBuilder

        return PromptBuilder(
            history_message_chars=c.settings.conversation.history_message_chars,
            snippet_chars=c.settings.retrieval.snippet_chars,
        )

    def _conversation_store_factory(c: Container):
        from ..conversation.store import InMemoryConversationStore, SQLiteConversationStore

        conversation = c.settings.conversation
        if conversation.store == "sqlite":
            return SQLiteConversationStore(conversation.store_path)
        return InMemoryConversationStore()

    def _record_store_factory(c: Container):
        from ..storage.store import InMemoryRecordStore, SQLiteRecordStore

        conversation = c.settings.conversation
        if conversation.store == "sqlite":
            return SQLiteRecordStore(conversation.record_store_path)
        return InMemoryRecordStore()

    def _conversation_engine_factory(c: Container):
        from ..conversation.engine import ConversationEngine

        conversation = c.settings.conversation
        return ConversationEngine(
            retrieval=c.get("retrieval_engine"),
            generator=c.get("generation_backend"),
            store=c.get("conversation_store"),
            prompt_builder=c.get("prompt_builder"),
            max_context_messages=conversation.max_context_messages,
            default_title=conversation.default_title,
            temperature=c.settings.generation.temperature,
            title_temperature=c.settings.generation.title_temperature,
        )

    def _search_agent_factory(c: Container):
        from ..agent.search_agent import SearchAgent

        return SearchAgent(
            generator=c.get("generation_backend"),
            index=c.get("document_index"),
            router=c.get("query_router"),
        )

    container.register_factory("http_client", _http_client_factory)
    container.register_factory("embedding_registry", _embedding_registry_factory)
    container.register_factory("document_index", _document_index_factory)
    container.register_factory("query_router", _query_router_factory)
    container.register_factory("retrieval_engine", _retrieval_engine_factory)
    container.register_factory("generation_backend", _generation_backend_factory)
    container.register_factory("prompt_builder", _prompt_builder_factory)
    container.register_factory("conversation_store", _conversation_store_factory)
    container.register_factory("record_store", _record_store_factory)
    container.register_factory("conversation_engine", _conversation_engine_factory)
    container.register_factory("search_agent", _search_agent_factory)

    return container


@lru_cache
def get_container() -> Container:
    """Get cached container instance."""
    return setup_container()
