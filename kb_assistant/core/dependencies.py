"""
FastAPI dependency injection functions.

Long-lived collaborators (store, clients, orchestrator) are process-wide
singletons; tests swap them through ``app.dependency_overrides``.
"""

from functools import lru_cache

from kb_assistant.config import get_settings
from kb_assistant.core.database import get_supabase_client
from kb_assistant.features.knowledge.chat import ChatService
from kb_assistant.features.knowledge.chunker import get_chunker
from kb_assistant.features.knowledge.completion import CompletionClient
from kb_assistant.features.knowledge.embedding import EmbeddingClient
from kb_assistant.features.knowledge.file_source import FileSource, create_drive_source
from kb_assistant.features.knowledge.retriever import Retriever
from kb_assistant.features.knowledge.service import KnowledgeService
from kb_assistant.features.knowledge.store import (
    DocumentStore,
    InMemoryDocumentStore,
    SupabaseDocumentStore,
)
from kb_assistant.features.knowledge.sync import LoggingSyncObserver, SyncOrchestrator
from kb_assistant.features.settings.service import (
    InMemorySettingsRepository,
    SettingsService,
    SupabaseSettingsRepository,
)


def _uses_supabase() -> bool:
    backend = get_settings().KB_STORE_BACKEND
    if backend not in ("supabase", "memory"):
        raise ValueError(f"Unknown KB_STORE_BACKEND: '{backend}'. Supported: supabase, memory")
    return backend == "supabase"


@lru_cache
def get_document_store() -> DocumentStore:
    if _uses_supabase():
        return SupabaseDocumentStore(get_supabase_client())
    return InMemoryDocumentStore()


@lru_cache
def get_settings_service() -> SettingsService:
    settings = get_settings()
    if _uses_supabase():
        repository = SupabaseSettingsRepository(get_supabase_client())
    else:
        repository = InMemorySettingsRepository()
    return SettingsService(repository, cache_ttl=settings.SETTINGS_CACHE_TTL_SECONDS)


@lru_cache
def get_embedding_client() -> EmbeddingClient:
    return EmbeddingClient()


@lru_cache
def get_file_source() -> FileSource:
    return create_drive_source()


def close_file_source() -> None:
    """Close the cached file source, if one was created."""
    if get_file_source.cache_info().currsize:
        get_file_source().close()
        get_file_source.cache_clear()


@lru_cache
def get_sync_orchestrator() -> SyncOrchestrator:
    settings = get_settings()
    return SyncOrchestrator(
        source=get_file_source(),
        store=get_document_store(),
        embedder=get_embedding_client(),
        chunker=get_chunker(),
        observers=[LoggingSyncObserver()],
        min_content_length=settings.KB_MIN_CONTENT_LENGTH,
        change_prefix_length=settings.KB_CHANGE_PREFIX_LENGTH,
        embed_delay=settings.KB_EMBED_DELAY_SECONDS,
        file_delay=settings.KB_FILE_DELAY_SECONDS,
    )


def get_knowledge_service() -> KnowledgeService:
    """Dependency: document admin service."""
    return KnowledgeService(get_document_store(), get_embedding_client(), get_chunker())


@lru_cache
def get_chat_service() -> ChatService:
    settings = get_settings()
    return ChatService(
        embedder=get_embedding_client(),
        retriever=Retriever(get_document_store()),
        completion=CompletionClient(),
        settings_service=get_settings_service(),
        top_k=settings.KB_TOP_K,
        temperature=settings.LLM_TEMPERATURE,
        max_tokens=settings.LLM_MAX_TOKENS,
        preview_length=settings.KB_SOURCE_PREVIEW_LENGTH,
    )
