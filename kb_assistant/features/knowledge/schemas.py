"""
Knowledge feature: Schemas for stored chunks, sync status and request/response models.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


# ── Stored chunks ────────────────────────────────────────

class ChunkMetadata(BaseModel):
    """Metadata attached to every knowledge chunk (stored as jsonb)."""
    title: str | None = None
    subject: str | None = None
    grade: str | None = None
    tags: list[str] | None = None
    source: str | None = None
    external_file_id: str | None = None
    chunk_index: int | None = None
    total_chunks: int | None = None
    last_synced_at: str | None = None
    content_prefix: str | None = None  # source-document prefix used to detect changes

    model_config = ConfigDict(extra="allow")


class KnowledgeChunk(BaseModel):
    id: int
    content: str
    metadata: ChunkMetadata = Field(default_factory=ChunkMetadata)
    embedding: list[float] | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class NewChunk(BaseModel):
    """A chunk ready to be persisted: content, metadata and its vector."""
    content: str
    metadata: ChunkMetadata
    embedding: list[float]


class ScoredChunk(BaseModel):
    chunk: KnowledgeChunk
    similarity: float


# ── Sync ─────────────────────────────────────────────────

class SourceFile(BaseModel):
    """A file listed by the external file source."""
    id: str
    name: str
    mime_type: str = ""
    web_view_link: str | None = None


class SyncStatus(BaseModel):
    """Snapshot of one sync run. Counters are zeroed when a run starts."""
    is_running: bool = False
    started_at: datetime | None = None
    total: int = 0
    current: int = 0
    current_file: str | None = None
    progress: int = 0
    synced: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0
    completed_at: datetime | None = None
    error: str | None = None


class SyncResult(BaseModel):
    synced: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0


# ── Chat ─────────────────────────────────────────────────

class ConversationTurn(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class SourceReference(BaseModel):
    """A retrieved chunk returned with a chat answer for attribution."""
    id: int
    content: str  # preview
    metadata: ChunkMetadata
    similarity: float


class ChatResult(BaseModel):
    response: str
    sources: list[SourceReference] = []


# ── Requests ─────────────────────────────────────────────

class DocumentMetadataIn(BaseModel):
    title: str | None = None
    subject: str | None = None
    grade: str | None = None
    tags: list[str] | None = None
    source: str | None = None


class AddDocumentRequest(BaseModel):
    content: str = Field(..., min_length=10)
    metadata: DocumentMetadataIn | None = None


class UploadDocumentRequest(BaseModel):
    content: str = Field(..., min_length=10)
    title: str = Field(..., min_length=1)
    subject: str | None = None
    grade: str | None = None


class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1)
    history: list[ConversationTurn] = []


class SystemPromptUpdate(BaseModel):
    prompt: str = Field(..., min_length=1)


# ── Responses ────────────────────────────────────────────

class DocumentResponse(BaseModel):
    """A listed knowledge chunk (no vector)."""
    id: int
    content: str
    metadata: ChunkMetadata
    created_at: datetime | None = None


class AddDocumentResult(BaseModel):
    id: int
    success: bool = True
    chunks_created: int = 1
