"""Unit tests for the sync orchestrator (fake folder, in-memory store)."""
import threading

import pytest
from conftest import lesson_text

from kb_assistant.core.exceptions import ExternalServiceError, SyncInProgressError
from kb_assistant.features.knowledge.sync import CANCELLED_MESSAGE, SyncObserver, SyncOrchestrator


class RecordingObserver(SyncObserver):
    def __init__(self):
        self.progress = []
        self.completed = []
        self.failed = []

    def on_progress(self, status):
        self.progress.append(status)

    def on_completed(self, status):
        self.completed.append(status)

    def on_failed(self, status):
        self.failed.append(status)


class ExplodingObserver(SyncObserver):
    def on_progress(self, status):
        raise RuntimeError("dashboard offline")


def test_first_run_indexes_every_supported_file(orchestrator, source, store):
    source.add("f1", "Математика - 5 класс - Дроби.txt", lesson_text("дроби"))
    source.add("f2", "История - 6 класс - Египет.md", lesson_text("Египет"), mime_type="text/markdown")

    status = orchestrator.run()

    assert (status.synced, status.updated, status.skipped, status.errors) == (2, 0, 0, 0)
    assert status.is_running is False
    assert status.progress == 100
    assert status.current == status.total == 2
    assert status.current_file is None
    assert status.completed_at is not None and status.error is None

    chunks = store.find_by_external_id("f1")
    assert chunks, "File chunks must be stored"
    meta = chunks[0].metadata
    assert (meta.subject, meta.grade, meta.source) == ("Математика", "5 класс", "Test Folder")
    assert meta.total_chunks == len(chunks)
    if len(chunks) > 1:
        assert meta.title == f"Дроби (часть 1/{len(chunks)})"
    else:
        assert meta.title == "Дроби"


def test_second_run_without_changes_is_idempotent(orchestrator, source, store, fake_embeddings):
    source.add("f1", "Математика - 5 класс - Дроби.txt", lesson_text("дроби"))
    source.add("f2", "Биология - Клетка.txt", lesson_text("клетку"))
    orchestrator.run()
    ids_before = sorted(c.id for c in store.list_all())
    calls_before = fake_embeddings.calls

    status = orchestrator.run()

    assert (status.synced, status.updated, status.skipped, status.errors) == (0, 0, 0, 0)
    assert sorted(c.id for c in store.list_all()) == ids_before
    assert fake_embeddings.calls == calls_before, "Unchanged files must not be re-embedded"


def test_changed_file_replaces_its_chunk_set(orchestrator, source, store):
    source.add("f1", "Физика - 7 класс - Сила.txt", lesson_text("силу тяжести"))
    orchestrator.run()
    old_ids = {c.id for c in store.find_by_external_id("f1")}

    source.contents["f1"] = "Новая редакция. " + lesson_text("силу упругости", paragraphs=4)
    status = orchestrator.run()

    assert (status.synced, status.updated) == (0, 1)
    new_chunks = store.find_by_external_id("f1")
    assert new_chunks and old_ids.isdisjoint(c.id for c in new_chunks)
    assert new_chunks[0].content.startswith("Новая редакция.")
    assert [c.metadata.chunk_index for c in new_chunks] == list(range(len(new_chunks)))


def test_unsupported_files_are_skipped(orchestrator, source):
    source.add("f1", "Алгебра.txt", lesson_text("уравнения"))
    source.add("f2", "Геометрия.docx", lesson_text("треугольники"),
               mime_type="application/vnd.openxmlformats-officedocument.wordprocessingml.document")
    source.add("f3", "Литература", lesson_text("басни"), mime_type="application/vnd.google-apps.document")
    source.add("f4", "Схема.png", "binary", mime_type="image/png")
    source.add("f5", "Учебник.pdf", "binary", mime_type="application/pdf")

    status = orchestrator.run()

    assert (status.synced, status.skipped, status.errors) == (3, 2, 0)
    assert status.total == 5


def test_empty_or_too_short_content_is_skipped(orchestrator, source, store):
    source.add("f1", "Пустой.txt", "   ")
    source.add("f2", "Короткий.txt", "Тема")

    status = orchestrator.run()

    assert (status.synced, status.skipped) == (0, 2)
    assert store.count() == 0


def test_one_failing_file_does_not_stop_the_run(orchestrator, source, store):
    source.add("f1", "Химия.txt", lesson_text("реакции"))
    source.add("f2", "Сломанный.txt", ExternalServiceError("google_drive", "403 Forbidden"))
    source.add("f3", "Музыка.txt", lesson_text("ритм"))

    status = orchestrator.run()

    assert (status.synced, status.errors) == (2, 1)
    assert store.find_by_external_id("f3"), "Files after a failure must still be synced"
    assert status.error is None


def test_embedding_failure_keeps_the_previous_chunk_set(orchestrator, source, store, fake_embeddings):
    source.add("f1", "География.txt", lesson_text("материки"))
    orchestrator.run()
    old = [(c.id, c.content) for c in store.find_by_external_id("f1")]

    source.contents["f1"] = "Исправлено. " + lesson_text("океаны")
    fake_embeddings.fail = True
    status = orchestrator.run()

    assert (status.updated, status.errors) == (0, 1)
    assert [(c.id, c.content) for c in store.find_by_external_id("f1")] == old


def test_listing_failure_fails_the_run(orchestrator, source, listing_error):
    observer = RecordingObserver()
    orchestrator.add_observer(observer)
    source.listing_error = listing_error

    status = orchestrator.run()

    assert status.is_running is False
    assert status.error and "folder not found" in status.error
    assert status.total == 0
    assert len(observer.failed) == 1 and not observer.completed


def test_observers_get_progress_per_file_then_completion(orchestrator, source):
    observer = RecordingObserver()
    orchestrator.add_observer(ExplodingObserver())
    orchestrator.add_observer(observer)
    for i in range(3):
        source.add(f"f{i}", f"Предмет {i}.txt", lesson_text(f"тему {i}"))

    orchestrator.run()

    assert [s.progress for s in observer.progress] == [33, 67, 100]
    assert [s.current for s in observer.progress] == [1, 2, 3]
    assert len(observer.completed) == 1 and not observer.failed


def test_delays_are_applied_between_chunks_and_files(source, store, embedder, chunker):
    sleeps = []
    orchestrator = SyncOrchestrator(
        source, store, embedder, chunker,
        embed_delay=0.2, file_delay=0.5, sleep=sleeps.append,
    )
    source.add("f1", "A.txt", lesson_text("первое", paragraphs=4))
    source.add("f2", "B.txt", lesson_text("второе", paragraphs=4))

    orchestrator.run()

    assert sleeps.count(0.5) == 1, "File delay only between files"
    chunks_per_file = [len(store.find_by_external_id(f)) for f in ("f1", "f2")]
    assert sleeps.count(0.2) == sum(n - 1 for n in chunks_per_file)


def test_background_run_rejects_a_second_start(orchestrator, source):
    source.add("f1", "Информатика.txt", lesson_text("алгоритмы"))
    orchestrator.run()

    source.release = threading.Event()
    source.fetch_started.clear()
    source.contents["f1"] = "Изменено. " + lesson_text("циклы")

    launch = orchestrator.start_background()
    assert launch.accepted
    assert source.fetch_started.wait(timeout=5)

    busy = orchestrator.start_background()
    assert busy.accepted is False
    with pytest.raises(SyncInProgressError):
        orchestrator.run()

    running = orchestrator.get_status()
    assert running.is_running is True
    assert (running.synced, running.updated, running.skipped, running.errors) == (0, 0, 0, 0)

    source.release.set()
    final = launch.handle.result(timeout=5)
    assert final.updated == 1
    assert orchestrator.is_running is False


def test_cancel_stops_before_the_next_file(orchestrator, source):
    source.add("f1", "Первый.txt", lesson_text("первое"))
    source.add("f2", "Второй.txt", lesson_text("второе"))
    source.release = threading.Event()

    launch = orchestrator.start_background()
    assert source.fetch_started.wait(timeout=5)
    assert orchestrator.cancel() is True
    source.release.set()

    final = launch.handle.result(timeout=5)
    assert final.error == CANCELLED_MESSAGE
    assert final.current == 1
    assert final.is_running is False
    assert orchestrator.cancel() is False


def test_to_result_copies_counters(orchestrator, source):
    source.add("f1", "Алгебра.txt", lesson_text("уравнения"))
    source.add("f2", "Схема.png", "binary", mime_type="image/png")

    result = SyncOrchestrator.to_result(orchestrator.run())

    assert result.model_dump() == {"synced": 1, "updated": 0, "skipped": 1, "errors": 0}


def test_document_with_emptied_chunk_set_is_indexed_again(orchestrator, source, store):
    source.add("f1", "География - Реки.txt", lesson_text("реки"))
    orchestrator.run()
    # A run interrupted between delete and insert leaves no chunks for the file
    store.delete_by_external_id("f1")

    status = orchestrator.run()

    assert (status.synced, status.updated, status.errors) == (1, 0, 0)
    assert store.find_by_external_id("f1"), "The file must be indexed again"


def test_busy_answer_during_foreground_run_has_no_stale_handle(orchestrator, source):
    source.add("f1", "Литература.txt", lesson_text("басни"))
    first = orchestrator.start_background()
    first.handle.result(timeout=5)

    source.contents["f1"] = "Изменено. " + lesson_text("сказки")
    source.release = threading.Event()
    source.fetch_started.clear()
    foreground = threading.Thread(target=orchestrator.run)
    foreground.start()
    assert source.fetch_started.wait(timeout=5)

    busy = orchestrator.start_background()

    source.release.set()
    foreground.join(timeout=5)
    assert busy.accepted is False
    assert busy.handle is None, "A finished run's handle must not be reported as the active one"
