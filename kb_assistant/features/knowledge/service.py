"""
Knowledge feature: Service layer for the document admin surface.
Manual uploads are chunked and embedded in the request, one chunk at a time.
"""

import logging
from datetime import datetime, timezone

from kb_assistant.core.exceptions import DocumentNotFoundError, EmptyContentError
from kb_assistant.features.knowledge.chunker import TextChunker
from kb_assistant.features.knowledge.embedding import EmbeddingClient
from kb_assistant.features.knowledge.extraction import part_title
from kb_assistant.features.knowledge.schemas import (
    AddDocumentResult,
    ChunkMetadata,
    KnowledgeChunk,
)
from kb_assistant.features.knowledge.store import DocumentStore

logger = logging.getLogger(__name__)

MANUAL_SOURCE = "Manual Upload"


class KnowledgeService:
    """Add, list and delete knowledge-base documents."""

    def __init__(self, store: DocumentStore, embedder: EmbeddingClient, chunker: TextChunker):
        self.store = store
        self.embedder = embedder
        self.chunker = chunker

    def add_document(self, text: str, metadata: ChunkMetadata | None = None) -> AddDocumentResult:
        """Embed and store text as a single chunk (no splitting)."""
        vector = self.embedder.embed(text)
        chunk_id = self.store.insert(text, metadata or ChunkMetadata(), vector)
        logger.info(f"✅ Added document {chunk_id} ({len(text)} chars)")
        return AddDocumentResult(id=chunk_id)

    def add_document_from_text(
        self,
        text: str,
        title: str,
        subject: str | None = None,
        grade: str | None = None,
        tags: list[str] | None = None,
    ) -> AddDocumentResult:
        """Chunk long text and store each chunk with part-of metadata.

        Raises:
            EmptyContentError: Nothing long enough to index.
        """
        chunks = self.chunker.split(text)
        if not chunks:
            raise EmptyContentError(title)

        synced_at = datetime.now(timezone.utc).isoformat()
        first_id: int | None = None
        for index, chunk in enumerate(chunks):
            metadata = ChunkMetadata(
                title=part_title(title, index, len(chunks)),
                subject=subject,
                grade=grade,
                tags=tags,
                source=MANUAL_SOURCE,
                chunk_index=index,
                total_chunks=len(chunks),
                last_synced_at=synced_at,
            )
            result = self.add_document(chunk, metadata)
            if first_id is None:
                first_id = result.id

        logger.info(f"✅ Uploaded '{title}' as {len(chunks)} chunk(s)")
        return AddDocumentResult(id=first_id, chunks_created=len(chunks))

    def list_documents(self) -> list[KnowledgeChunk]:
        return self.store.list_all()

    def delete_document(self, document_id: int) -> None:
        """Raises DocumentNotFoundError if the id does not exist."""
        if not self.store.delete_by_id(document_id):
            raise DocumentNotFoundError(document_id)
        logger.info(f"🗑️ Deleted document {document_id}")
