"""Unit tests for retrieval-augmented chat."""
import pytest
from conftest import FakeChatModel
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from kb_assistant.core.exceptions import ExternalServiceError
from kb_assistant.features.knowledge.chat import ChatService, build_context, preview
from kb_assistant.features.knowledge.completion import EMPTY_ANSWER, CompletionClient
from kb_assistant.features.knowledge.prompts import DEFAULT_SYSTEM_PROMPT, NO_CONTEXT_FOUND
from kb_assistant.features.knowledge.retriever import Retriever
from kb_assistant.features.knowledge.schemas import (
    ChunkMetadata,
    ConversationTurn,
    KnowledgeChunk,
    ScoredChunk,
)
from kb_assistant.features.settings.service import AI_SYSTEM_PROMPT


@pytest.fixture
def chat_service(embedder, store, completion, settings_service):
    return ChatService(
        embedder=embedder,
        retriever=Retriever(store),
        completion=completion,
        settings_service=settings_service,
        top_k=2,
    )


def _add(store, embedder, content: str, **meta) -> int:
    return store.insert(content, ChunkMetadata(**meta), embedder.embed(content))


def test_empty_knowledge_base_still_answers_with_no_context_marker(chat_service, chat_model):
    result = chat_service.chat("Какие темы связаны с дробями?")

    assert result.response == "Ответ ассистента"
    assert result.sources == []
    messages = chat_model.calls[0]
    assert len(messages) == 3
    assert isinstance(messages[1], SystemMessage)
    assert NO_CONTEXT_FOUND in messages[1].content


def test_message_order_is_instruction_context_history_query(chat_service, chat_model):
    history = [
        ConversationTurn(role="user", content="Привет"),
        ConversationTurn(role="assistant", content="Здравствуйте!"),
    ]

    chat_service.chat("Составь урок по дробям", history)

    messages = chat_model.calls[0]
    assert [type(m) for m in messages] == [
        SystemMessage, SystemMessage, HumanMessage, AIMessage, HumanMessage,
    ]
    assert messages[0].content == DEFAULT_SYSTEM_PROMPT
    assert messages[2].content == "Привет"
    assert messages[3].content == "Здравствуйте!"
    assert messages[-1].content == "Составь урок по дробям"


def test_sources_are_ranked_capped_and_previewed(chat_service, store, embedder, chat_model):
    long_content = "дроби числитель знаменатель " * 20
    best = _add(store, embedder, long_content, subject="Математика", grade="5 класс")
    _add(store, embedder, "дроби и проценты в задачах", subject="Математика")
    _add(store, embedder, "строение растительной клетки", subject="Биология")

    result = chat_service.chat("дроби числитель знаменатель")

    assert len(result.sources) == 2, "top_k caps the number of sources"
    assert result.sources[0].id == best
    assert result.sources[0].similarity >= result.sources[1].similarity
    assert result.sources[0].content == long_content[:200] + "..."
    context = chat_model.calls[0][1].content
    assert "--- Документ 1 [Математика, 5 класс] ---" in context


def test_system_prompt_comes_from_settings(chat_service, settings_service, chat_model):
    settings_service.set(AI_SYSTEM_PROMPT, "Отвечай кратко.")

    chat_service.chat("Привет")

    assert chat_model.calls[0][0].content == "Отвечай кратко."


def test_completion_failure_is_reported_not_degraded(embedder, store, settings_service):
    failing = CompletionClient(llm=FakeChatModel(error=TimeoutError("provider timeout")))
    service = ChatService(embedder, Retriever(store), failing, settings_service)

    with pytest.raises(ExternalServiceError) as exc:
        service.chat("Вопрос")
    assert exc.value.service == "completion"


def test_embedding_failure_is_reported(chat_service, fake_embeddings):
    fake_embeddings.fail = True

    with pytest.raises(ExternalServiceError) as exc:
        chat_service.chat("Вопрос")
    assert exc.value.service == "embeddings"


def test_reasoning_block_is_stripped_and_empty_answer_replaced():
    thinking = CompletionClient(llm=FakeChatModel(reply="<think>план ответа</think>\nГотово."))
    assert thinking.complete([{"role": "user", "content": "?"}], 0.7, 100) == "Готово."

    silent = CompletionClient(llm=FakeChatModel(reply="<think>...</think>"))
    assert silent.complete([{"role": "user", "content": "?"}], 0.7, 100) == EMPTY_ANSWER


def test_build_context_provenance_headers():
    def scored(content, similarity, **meta):
        return ScoredChunk(
            chunk=KnowledgeChunk(id=1, content=content, metadata=ChunkMetadata(**meta)),
            similarity=similarity,
        )

    context = build_context([
        scored("Текст A", 0.9, subject="Физика", grade="7 класс"),
        scored("Текст B", 0.8, grade="8 класс"),
        scored("Текст C", 0.7),
    ])

    assert "--- Документ 1 [Физика, 7 класс] ---\nТекст A" in context
    assert "--- Документ 2 [Без предмета, 8 класс] ---\nТекст B" in context
    assert "--- Документ 3 ---\nТекст C" in context
    assert build_context([]) == NO_CONTEXT_FOUND


def test_preview_only_marks_truncated_content():
    assert preview("короткий", 200) == "короткий"
    assert preview("x" * 250, 200) == "x" * 200 + "..."
