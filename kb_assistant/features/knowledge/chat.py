"""
Knowledge feature: Retrieval-augmented chat.

One request = embed query → top-k chunks → context block → one completion.
Message order sent to the provider:
  [system instruction, system context, *history, user query]
"""

import logging

from kb_assistant.core.exceptions import ExternalServiceError
from kb_assistant.features.knowledge.completion import CompletionClient
from kb_assistant.features.knowledge.embedding import EmbeddingClient
from kb_assistant.features.knowledge.prompts import (
    CONTEXT_HEADER,
    DOCUMENT_HEADER,
    NO_CONTEXT_FOUND,
    NO_SUBJECT,
)
from kb_assistant.features.knowledge.retriever import Retriever
from kb_assistant.features.knowledge.schemas import (
    ChatResult,
    ConversationTurn,
    ScoredChunk,
    SourceReference,
)
from kb_assistant.features.settings.service import AI_SYSTEM_PROMPT, SettingsService

logger = logging.getLogger(__name__)


def build_context(results: list[ScoredChunk]) -> str:
    """Render retrieved chunks, most similar first, each with a provenance header."""
    if not results:
        return NO_CONTEXT_FOUND

    blocks = []
    for index, result in enumerate(results, start=1):
        meta = result.chunk.metadata
        provenance = ""
        if meta.subject or meta.grade:
            provenance = f"[{meta.subject or NO_SUBJECT}{f', {meta.grade}' if meta.grade else ''}] "
        header = DOCUMENT_HEADER.format(index=index, provenance=provenance)
        blocks.append(f"{header}\n{result.chunk.content}")
    return "\n\n".join(blocks)


def preview(content: str, length: int = 200) -> str:
    return content[:length] + ("..." if len(content) > length else "")


class ChatService:
    """Stateless RAG chat; safe to call concurrently and during a sync."""

    def __init__(
        self,
        embedder: EmbeddingClient,
        retriever: Retriever,
        completion: CompletionClient,
        settings_service: SettingsService,
        top_k: int = 5,
        temperature: float = 0.7,
        max_tokens: int = 2000,
        preview_length: int = 200,
    ):
        self.embedder = embedder
        self.retriever = retriever
        self.completion = completion
        self.settings_service = settings_service
        self.top_k = top_k
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.preview_length = preview_length

    def build_messages(
        self,
        user_query: str,
        context: str,
        history: list[ConversationTurn],
    ) -> list[dict]:
        messages = [
            {"role": "system", "content": self.settings_service.get(AI_SYSTEM_PROMPT)},
            {"role": "system", "content": CONTEXT_HEADER.format(context=context)},
        ]
        messages.extend({"role": turn.role, "content": turn.content} for turn in history)
        messages.append({"role": "user", "content": user_query})
        return messages

    def chat(self, user_query: str, history: list[ConversationTurn] | None = None) -> ChatResult:
        """Answer a query from the knowledge base.

        Raises:
            ExternalServiceError: Embedding, retrieval or completion failed.
                No retry and no degraded answer.
        """
        history = history or []
        try:
            query_vector = self.embedder.embed(user_query)
            results = self.retriever.find_similar(query_vector, self.top_k)
            context = build_context(results)
            messages = self.build_messages(user_query, context, history)
            answer = self.completion.complete(messages, self.temperature, self.max_tokens)
        except ExternalServiceError:
            raise
        except Exception as e:
            logger.error(f"❌ Error in chat: {e}")
            raise ExternalServiceError("assistant", str(e)) from e

        logger.info(f"💬 Chat answered with {len(results)} source(s), history={len(history)}")
        return ChatResult(
            response=answer,
            sources=[
                SourceReference(
                    id=r.chunk.id,
                    content=preview(r.chunk.content, self.preview_length),
                    metadata=r.chunk.metadata,
                    similarity=r.similarity,
                )
                for r in results
            ],
        )
