"""Shared fakes and fixtures: no network, no provider SDK calls, no delays."""
import hashlib
import re
import threading

import pytest
from langchain_core.embeddings import Embeddings
from langchain_core.messages import AIMessage

from kb_assistant.core.exceptions import SourceListingError
from kb_assistant.features.knowledge.chunker import TextChunker
from kb_assistant.features.knowledge.completion import CompletionClient
from kb_assistant.features.knowledge.embedding import EmbeddingClient
from kb_assistant.features.knowledge.file_source import FileSource
from kb_assistant.features.knowledge.schemas import SourceFile
from kb_assistant.features.knowledge.store import InMemoryDocumentStore
from kb_assistant.features.knowledge.sync import SyncOrchestrator
from kb_assistant.features.settings.service import InMemorySettingsRepository, SettingsService

DIMENSIONS = 16
TXT = "text/plain"


class FakeEmbeddings(Embeddings):
    """Bag-of-words hashing: texts sharing words get similar vectors."""

    def __init__(self, dimensions: int = DIMENSIONS):
        self.dimensions = dimensions
        self.calls = 0
        self.fail = False

    def embed_query(self, text: str) -> list[float]:
        if self.fail:
            raise RuntimeError("embedding quota exceeded")
        self.calls += 1
        vector = [0.0] * self.dimensions
        for word in re.findall(r"\w+", text.lower()):
            bucket = int(hashlib.md5(word.encode("utf-8")).hexdigest(), 16) % self.dimensions
            vector[bucket] += 1.0
        return vector

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [self.embed_query(t) for t in texts]


class FakeChatModel:
    """Scripted chat model; records the messages of every invoke()."""

    def __init__(self, reply: str = "Ответ ассистента", error: Exception | None = None):
        self.reply = reply
        self.error = error
        self.calls: list[list] = []

    def invoke(self, messages):
        self.calls.append(list(messages))
        if self.error is not None:
            raise self.error
        return AIMessage(content=self.reply)


class FakeFileSource(FileSource):
    """In-memory folder. Text values may be exceptions to raise on fetch."""

    label = "Test Folder"

    def __init__(self):
        self.files: dict[str, SourceFile] = {}
        self.contents: dict[str, object] = {}
        self.listing_error: Exception | None = None
        # Optional hooks to hold a fetch mid-run
        self.fetch_started = threading.Event()
        self.release: threading.Event | None = None

    def add(self, file_id: str, name: str, content, mime_type: str = TXT) -> SourceFile:
        file = SourceFile(id=file_id, name=name, mime_type=mime_type)
        self.files[file_id] = file
        self.contents[file_id] = content
        return file

    def list_files(self) -> list[SourceFile]:
        if self.listing_error is not None:
            raise self.listing_error
        return list(self.files.values())

    def fetch_text(self, file: SourceFile) -> str:
        self.fetch_started.set()
        if self.release is not None:
            assert self.release.wait(timeout=5), "test never released the fetch"
        content = self.contents[file.id]
        if isinstance(content, Exception):
            raise content
        return content


def lesson_text(topic: str, paragraphs: int = 3) -> str:
    """A plain lesson plan long enough to be indexed."""
    body = [
        f"Абзац {i}. На уроке ученики разбирают {topic} на примерах "
        f"и обсуждают связь с другими предметами школы."
        for i in range(1, paragraphs + 1)
    ]
    return "\n\n".join(body)


@pytest.fixture
def fake_embeddings():
    return FakeEmbeddings()


@pytest.fixture
def embedder(fake_embeddings):
    return EmbeddingClient(model=fake_embeddings, dimensions=DIMENSIONS)


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def chunker():
    return TextChunker(max_size=200, overlap=40, min_size=20)


@pytest.fixture
def source():
    return FakeFileSource()


@pytest.fixture
def orchestrator(source, store, embedder, chunker):
    return SyncOrchestrator(
        source=source,
        store=store,
        embedder=embedder,
        chunker=chunker,
        embed_delay=0,
        file_delay=0,
        sleep=lambda _: None,
    )


@pytest.fixture
def settings_service():
    return SettingsService(InMemorySettingsRepository(), cache_ttl=60)


@pytest.fixture
def chat_model():
    return FakeChatModel()


@pytest.fixture
def completion(chat_model):
    return CompletionClient(llm=chat_model)


@pytest.fixture
def listing_error():
    return SourceListingError("folder not found")
