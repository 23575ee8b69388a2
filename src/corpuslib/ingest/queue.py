"""Upload queue: the pipeline controller for bulk ingestion.

Owns the ordered list of :class:`~corpuslib.models.UploadItem` records
and is their single writer.  Files are admitted into processing in FIFO
order, at most ``max_concurrent_items`` at a time.  Every status change
goes through :meth:`UploadQueue._apply`, which validates it against the
item FSM, applies all field changes at once, and only then publishes a
fresh :class:`~corpuslib.models.UploadState` snapshot on a reactivex
``BehaviorSubject``.

Usage::

    queue = UploadQueue(processor, config)
    queue.subscribe(render)
    queue.submit([SourceFile.from_path(p) for p in paths])
    await queue.join()
    queue.retry_failed()
    await queue.join()
"""

from __future__ import annotations

import asyncio
import collections
import logging
import uuid
from functools import partial
from typing import Callable, Iterable

from reactivex import Observable
from reactivex.abc import DisposableBase
from reactivex.subject import BehaviorSubject

from corpuslib.ingest.aggregate import build_state
from corpuslib.ingest.classifier import error_info_for
from corpuslib.ingest.exceptions import QueueBusyError
from corpuslib.ingest.fsm import check_transition
from corpuslib.ingest.processor import FileProcessor, ProcessingCheckpoint
from corpuslib.models import (
    ErrorCategory,
    ErrorInfo,
    IngestConfig,
    SourceFile,
    UploadItem,
    UploadState,
    UploadStatus,
)

logger = logging.getLogger(__name__)


def validate_source(source: SourceFile, config: IngestConfig) -> str | None:
    """Check submit-time acceptance constraints.

    Returns:
        A human-readable rejection message, or ``None`` if accepted.
    """
    if source.size > config.max_file_size_bytes:
        limit_mb = config.max_file_size_bytes / 1024 / 1024
        return f"File size exceeds {limit_mb:g}MB limit"
    if source.extension not in config.allowed_extensions:
        allowed = ", ".join(sorted(config.allowed_extensions))
        shown = source.extension or "(none)"
        return f"File type {shown} not supported. Only {allowed} files are allowed."
    if source.size == 0:
        return "File is empty"
    return None


class UploadQueue:
    """Bounded-concurrency controller for a batch of file ingestions.

    Must be driven from a running asyncio event loop: :meth:`submit` and
    the retry operations schedule processing tasks on it.

    Args:
        processor: Runs the per-file step sequence.
        config: Admission limit and file acceptance constraints.
    """

    def __init__(self, processor: FileProcessor, config: IngestConfig) -> None:
        self._processor = processor
        self._config = config

        self._items: dict[str, UploadItem] = {}
        self._pending: collections.deque[str] = collections.deque()
        self._active: dict[str, asyncio.Task[None]] = {}
        self._checkpoints: dict[str, ProcessingCheckpoint] = {}
        self._idle = asyncio.Event()
        self._idle.set()

        self._state = build_state(())
        self._subject: BehaviorSubject[UploadState] = BehaviorSubject(self._state)

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def state(self) -> UploadState:
        """The latest published snapshot."""
        return self._state

    @property
    def states(self) -> Observable[UploadState]:
        """Stream of snapshots; new subscribers receive the latest one first."""
        return self._subject

    @property
    def active_count(self) -> int:
        return len(self._active)

    def subscribe(self, on_next: Callable[[UploadState], None]) -> DisposableBase:
        """Register a snapshot callback; dispose the result to unsubscribe."""
        return self._subject.subscribe(on_next)

    def close(self) -> None:
        """Complete the snapshot stream (subscribers receive on_completed)."""
        self._subject.on_completed()

    async def join(self) -> None:
        """Wait until no item is queued or in flight."""
        await self._idle.wait()

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def submit(self, files: Iterable[SourceFile]) -> list[UploadItem]:
        """Create one item per file and start draining.

        Files failing the acceptance constraints become ``error`` items
        immediately and never enter the admission queue.

        Returns:
            Snapshots of the created items, in submission order.
        """
        created: list[str] = []
        for source in files:
            item = UploadItem(id=uuid.uuid4().hex, source=source)
            self._items[item.id] = item
            created.append(item.id)

            rejection = validate_source(source, self._config)
            if rejection is not None:
                logger.warning("Rejected %s: %s", source.name, rejection)
                self._apply(
                    item.id,
                    UploadStatus.ERROR,
                    error=rejection,
                    error_info=error_info_for(ErrorCategory.FILE),
                )
                continue

            self._pending.append(item.id)
            self._publish()

        logger.info(
            "Submitted %d files (%d queued, %d active)",
            len(created),
            len(self._pending),
            len(self._active),
        )
        self._admit()
        return [self._items[item_id].snapshot() for item_id in created]

    def retry_file(self, item_id: str) -> bool:
        """Re-queue a failed item at the back of the admission queue.

        Returns:
            ``False`` (no-op) for unknown ids, items not in ``error``, and
            non-retryable failures; ``True`` when the item was re-queued.
        """
        item = self._items.get(item_id)
        if item is None:
            logger.debug("retry_file: unknown item %s", item_id)
            return False
        if item.status != UploadStatus.ERROR:
            logger.debug("retry_file: %s is %s, not error", item_id, item.status.value)
            return False
        if item.error_info is None or not item.error_info.retryable:
            logger.info("Not retrying %s: failure is permanent", item.source.name)
            return False

        self._apply(item_id, UploadStatus.QUEUED, progress=0)
        self._pending.append(item_id)
        logger.info("Retrying %s", item.source.name)
        self._admit()
        return True

    def retry_failed(self) -> list[str]:
        """Retry every retryable failed item, in submission order.

        Returns:
            Ids of the re-queued items.
        """
        candidates = [
            item.id
            for item in self._items.values()
            if item.status == UploadStatus.ERROR
            and item.error_info is not None
            and item.error_info.retryable
        ]
        return [item_id for item_id in candidates if self.retry_file(item_id)]

    def clear_completed(self) -> int:
        """Remove all ``complete`` items, keeping the others in order.

        Raises:
            QueueBusyError: While any item is uploading or processing.
        """
        self._ensure_idle("clear completed items")
        completed = [
            item_id
            for item_id, item in self._items.items()
            if item.status == UploadStatus.COMPLETE
        ]
        for item_id in completed:
            del self._items[item_id]
            self._checkpoints.pop(item_id, None)
        if completed:
            self._publish()
        return len(completed)

    def clear_all(self) -> int:
        """Remove every item regardless of status.

        Raises:
            QueueBusyError: While any item is uploading or processing.
        """
        self._ensure_idle("clear all items")
        removed = len(self._items)
        self._items.clear()
        self._pending.clear()
        self._checkpoints.clear()
        self._idle.set()
        self._publish()
        return removed

    # ------------------------------------------------------------------
    # Admission and processing
    # ------------------------------------------------------------------

    def _admit(self) -> None:
        """Start queued items (FIFO) while admission slots are free."""
        while self._pending and len(self._active) < self._config.max_concurrent_items:
            item_id = self._pending.popleft()
            item = self._items.get(item_id)
            if item is None or item.status != UploadStatus.QUEUED:
                continue
            loop = asyncio.get_running_loop()
            self._active[item_id] = loop.create_task(
                self._run_item(item_id), name=f"ingest-{item_id[:8]}"
            )

        if self._pending or self._active:
            self._idle.clear()
        else:
            self._idle.set()

    async def _run_item(self, item_id: str) -> None:
        item = self._items[item_id]
        checkpoint = self._checkpoints.pop(item_id, None)
        try:
            leftover = await self._processor.process(
                item.source, partial(self._apply, item_id), checkpoint
            )
            if leftover is not None:
                self._checkpoints[item_id] = leftover
        except Exception as exc:
            logger.exception("Unexpected failure processing %s", item.source.name)
            current = self._items.get(item_id)
            if current is not None and current.status in (
                UploadStatus.UPLOADING,
                UploadStatus.PROCESSING,
            ):
                self._apply(
                    item_id,
                    UploadStatus.ERROR,
                    error=str(exc) or type(exc).__name__,
                    error_info=error_info_for(ErrorCategory.UNKNOWN),
                )
        finally:
            self._active.pop(item_id, None)
            self._admit()
            self._log_if_drained()

    def _log_if_drained(self) -> None:
        if self._idle.is_set() and self._items:
            logger.info(
                "Queue drained: %d complete, %d failed of %d",
                self._state.completed_count,
                self._state.failed_count,
                len(self._items),
            )

    # ------------------------------------------------------------------
    # Single-writer mutation path
    # ------------------------------------------------------------------

    def _apply(
        self,
        item_id: str,
        status: UploadStatus,
        *,
        progress: int | None = None,
        error: str | None = None,
        error_info: ErrorInfo | None = None,
        document_id: str | None = None,
    ) -> None:
        """Validate and apply one change to an item, then publish.

        A change to the item's current status is a progress-only update.
        Progress never decreases except on the retry reset to ``queued``.
        """
        item = self._items.get(item_id)
        if item is None:
            logger.debug("Ignoring update for removed item %s", item_id)
            return

        if status != item.status:
            check_transition(item.status, status)
        if status == UploadStatus.ERROR and not error:
            raise ValueError("An error transition requires an error message")
        if status == UploadStatus.COMPLETE and not document_id:
            raise ValueError("A complete transition requires a document id")

        new_progress = item.progress if progress is None else progress
        if status != UploadStatus.QUEUED:
            new_progress = max(item.progress, new_progress)

        logger.debug(
            "%s: %s -> %s (%d%%)",
            item.source.name,
            item.status.value,
            status.value,
            new_progress,
        )
        item.status = status
        item.progress = min(new_progress, 100)
        item.error = error if status == UploadStatus.ERROR else None
        item.error_info = (
            (error_info or error_info_for(ErrorCategory.UNKNOWN))
            if status == UploadStatus.ERROR
            else None
        )
        item.document_id = document_id if status == UploadStatus.COMPLETE else None
        self._publish()

    def _publish(self) -> None:
        self._state = build_state(self._items.values())
        try:
            self._subject.on_next(self._state)
        except Exception:
            # A failing subscriber must not corrupt the pipeline.
            logger.exception("Upload state subscriber raised")

    def _ensure_idle(self, action: str) -> None:
        if self._state.is_uploading or self._active:
            raise QueueBusyError(f"Cannot {action} while uploads are in progress")
