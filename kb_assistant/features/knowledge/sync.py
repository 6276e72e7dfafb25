"""
Knowledge feature: Sync orchestrator (external file source → knowledge base).

State machine per orchestrator instance:
  Idle → Running → Completed | Failed → (next run) Running ...

Per file, sequentially:
  unsupported → skipped
  empty / too short → skipped
  stored prefix == fetched prefix → unchanged (no counter)
  stored but different → chunks replaced, updated
  not stored → chunks inserted, synced
  any exception → errors (the run continues)
Only a failure to list the source folder aborts the whole run.
"""

import logging
import math
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable

from kb_assistant.background.sync_tasks import SyncTaskHandle, submit_sync
from kb_assistant.core.exceptions import (
    EmptyContentError,
    SyncInProgressError,
    UnsupportedFormatError,
    describe_error,
)
from kb_assistant.features.knowledge.chunker import TextChunker
from kb_assistant.features.knowledge.embedding import EmbeddingClient
from kb_assistant.features.knowledge.extraction import metadata_from_file_name, part_title
from kb_assistant.features.knowledge.file_source import FileSource
from kb_assistant.features.knowledge.schemas import (
    ChunkMetadata,
    KnowledgeChunk,
    NewChunk,
    SourceFile,
    SyncResult,
    SyncStatus,
)
from kb_assistant.features.knowledge.store import DocumentStore

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Sync cancelled"


class FileOutcome(str, Enum):
    SYNCED = "synced"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"
    FAILED = "failed"


class SyncObserver:
    """Receives status snapshots: once per file, then once at the end."""

    def on_progress(self, status: SyncStatus) -> None:
        pass

    def on_completed(self, status: SyncStatus) -> None:
        pass

    def on_failed(self, status: SyncStatus) -> None:
        pass


class LoggingSyncObserver(SyncObserver):
    def on_progress(self, status: SyncStatus) -> None:
        logger.info(
            f"🔄 Sync progress {status.current}/{status.total} ({status.progress}%) "
            f": {status.current_file}"
        )

    def on_completed(self, status: SyncStatus) -> None:
        logger.info(
            f"✅ Sync completed: synced={status.synced}, updated={status.updated}, "
            f"skipped={status.skipped}, errors={status.errors}"
        )

    def on_failed(self, status: SyncStatus) -> None:
        logger.error(f"❌ Sync failed: {status.error}")


@dataclass
class SyncLaunch:
    """Answer to a background start request."""
    accepted: bool
    message: str
    handle: SyncTaskHandle | None = None


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SyncOrchestrator:
    """Pulls a file source into the document store.

    The status is owned by this instance; readers get copies through
    ``get_status()``. The in-process lock is the only single-flight guard,
    so separate processes can still run concurrently.
    """

    def __init__(
        self,
        source: FileSource,
        store: DocumentStore,
        embedder: EmbeddingClient,
        chunker: TextChunker,
        observers: list[SyncObserver] | None = None,
        min_content_length: int = 10,
        change_prefix_length: int = 500,
        embed_delay: float = 0.2,
        file_delay: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.source = source
        self.store = store
        self.embedder = embedder
        self.chunker = chunker
        self.observers = list(observers or [])
        self.min_content_length = min_content_length
        self.change_prefix_length = change_prefix_length
        self.embed_delay = embed_delay
        self.file_delay = file_delay
        self._sleep = sleep

        self._status = SyncStatus()
        self._lock = threading.Lock()
        self._cancel = threading.Event()
        self._handle: SyncTaskHandle | None = None

    def add_observer(self, observer: SyncObserver) -> None:
        self.observers.append(observer)

    # ── Status ───────────────────────────────────────────

    def get_status(self) -> SyncStatus:
        """Snapshot of the current (or last) run, safe to call any time."""
        with self._lock:
            return self._status.model_copy()

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._status.is_running

    # ── Control ──────────────────────────────────────────

    def run(self) -> SyncStatus:
        """Run a sync in the calling thread and return the final status.

        Raises:
            SyncInProgressError: Another run is in progress.
        """
        if not self._claim():
            raise SyncInProgressError()
        return self._execute()

    def start_background(self) -> SyncLaunch:
        """Start a detached run; returns immediately with accepted/busy."""
        if not self._claim():
            # A foreground run has no handle; a stored one may belong to a finished run
            active = self._handle if self._handle is not None and not self._handle.done() else None
            return SyncLaunch(False, "Synchronization is already running", active)
        self._handle = submit_sync(self._execute, self._cancel)
        return SyncLaunch(True, "Synchronization started in background", self._handle)

    def cancel(self) -> bool:
        """Ask the running sync to stop before its next file."""
        if not self.is_running:
            return False
        self._cancel.set()
        return True

    def _claim(self) -> bool:
        with self._lock:
            if self._status.is_running:
                return False
            self._status = SyncStatus(is_running=True, started_at=_now())
            self._cancel = threading.Event()
            return True

    # ── Run ──────────────────────────────────────────────

    def _execute(self) -> SyncStatus:
        try:
            files = self.source.list_files()
        except Exception as e:
            logger.error(f"❌ Could not list source files: {describe_error(e)}")
            return self._fail(describe_error(e))

        with self._lock:
            self._status.total = len(files)
        logger.info(f"📂 Sync started: {len(files)} file(s) from {self.source.label}")

        try:
            for index, file in enumerate(files, start=1):
                if self._cancel.is_set():
                    logger.warning(f"⚠️ Sync cancelled after {index - 1}/{len(files)} file(s)")
                    return self._fail(CANCELLED_MESSAGE)

                with self._lock:
                    self._status.current_file = file.name

                outcome = self._process_file(file)
                self._record(outcome, index, len(files))
                self._notify("on_progress")

                if index < len(files) and self.file_delay > 0:
                    self._sleep(self.file_delay)
        except Exception as e:
            logger.exception(f"❌ Sync aborted unexpectedly: {e}")
            return self._fail(str(e))

        with self._lock:
            self._status.is_running = False
            self._status.current_file = None
            self._status.progress = 100
            self._status.completed_at = _now()
        self._notify("on_completed")
        return self.get_status()

    def _fail(self, message: str) -> SyncStatus:
        with self._lock:
            self._status.is_running = False
            self._status.error = message
            self._status.completed_at = _now()
        self._notify("on_failed")
        return self.get_status()

    def _record(self, outcome: FileOutcome, current: int, total: int) -> None:
        with self._lock:
            status = self._status
            match outcome:
                case FileOutcome.SYNCED:
                    status.synced += 1
                case FileOutcome.UPDATED:
                    status.updated += 1
                case FileOutcome.SKIPPED:
                    status.skipped += 1
                case FileOutcome.FAILED:
                    status.errors += 1
            status.current = current
            status.progress = math.floor(current / total * 100 + 0.5)

    def _notify(self, event: str) -> None:
        snapshot = self.get_status()
        for observer in self.observers:
            try:
                getattr(observer, event)(snapshot)
            except Exception as e:
                logger.warning(f"⚠️ Sync observer {type(observer).__name__}.{event} failed: {e}")

    # ── One file ─────────────────────────────────────────

    def _process_file(self, file: SourceFile) -> FileOutcome:
        if not self.source.is_supported(file):
            logger.info(f"⏭️ Skipping unsupported file type: {file.name} ({file.mime_type})")
            return FileOutcome.SKIPPED

        stage = "fetch"
        try:
            content = self.source.fetch_text(file)
            if not content or len(content.strip()) < self.min_content_length:
                raise EmptyContentError(file.name)

            stage = "lookup"
            existing = self.store.find_by_external_id(file.id)
            if existing and self._is_unchanged(existing, content):
                logger.debug(f"Unchanged: {file.name}")
                return FileOutcome.UNCHANGED

            stage = "chunk"
            texts = self.chunker.split(content)
            if not texts:
                raise EmptyContentError(file.name)

            stage = "embed"
            chunks = self._embed_chunks(file, texts, content)

            stage = "store"
            if existing:
                self.store.replace_by_external_id(file.id, chunks)
                logger.info(f"🔄 Updated: {file.name} ({len(chunks)} chunks)")
                return FileOutcome.UPDATED

            self.store.insert_many(chunks)
            logger.info(f"✅ Synced: {file.name} ({len(chunks)} chunks)")
            return FileOutcome.SYNCED

        except (UnsupportedFormatError, EmptyContentError) as e:
            logger.info(f"⏭️ Skipping {file.name}: {e.message}")
            return FileOutcome.SKIPPED
        except Exception as e:
            logger.error(
                f"❌ Error processing file {file.name} (id={file.id}) at stage '{stage}': {describe_error(e)}"
            )
            return FileOutcome.FAILED

    def _is_unchanged(self, existing: list[KnowledgeChunk], content: str) -> bool:
        # Prefix heuristic: edits past the first N characters go unnoticed
        prefix = content[: self.change_prefix_length]
        stored = existing[0].metadata.content_prefix
        if stored is None:
            stored = existing[0].content[: self.change_prefix_length]
        return stored == prefix

    def _embed_chunks(self, file: SourceFile, texts: list[str], content: str) -> list[NewChunk]:
        base = metadata_from_file_name(file.name)
        synced_at = _now().isoformat()
        prefix = content[: self.change_prefix_length]

        chunks: list[NewChunk] = []
        for index, text in enumerate(texts):
            if index > 0 and self.embed_delay > 0:
                self._sleep(self.embed_delay)
            metadata = ChunkMetadata(
                title=part_title(base["title"], index, len(texts)),
                subject=base["subject"],
                grade=base["grade"],
                source=self.source.label,
                external_file_id=file.id,
                chunk_index=index,
                total_chunks=len(texts),
                last_synced_at=synced_at,
                content_prefix=prefix,
            )
            chunks.append(NewChunk(content=text, metadata=metadata, embedding=self.embedder.embed(text)))
        return chunks

    @staticmethod
    def to_result(status: SyncStatus) -> SyncResult:
        return SyncResult(
            synced=status.synced,
            updated=status.updated,
            skipped=status.skipped,
            errors=status.errors,
        )
