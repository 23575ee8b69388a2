"""Tests for the UploadQueue pipeline controller.

Covers submission and rejection, bounded FIFO admission, snapshot
invariants, retries (including resumption after an embedding failure),
clearing, and the end-to-end mixed-outcome batch.
"""

from __future__ import annotations

import asyncio

import pytest
from conftest import FakeExtractor, make_source

from corpuslib.ingest.exceptions import (
    EmbeddingError,
    ExtractionError,
    NetworkError,
    QueueBusyError,
)
from corpuslib.ingest.processor import FileProcessor
from corpuslib.ingest.queue import UploadQueue, validate_source
from corpuslib.models import (
    ACTIVE_STATUSES,
    ErrorCategory,
    IngestConfig,
    SourceFile,
    UploadState,
    UploadStatus,
)


def assert_invariants(state: UploadState, max_active: int) -> None:
    """Field/status consistency and the admission bound for one snapshot."""
    active = 0
    for item in state.items:
        assert (item.error is not None) == (item.status == UploadStatus.ERROR)
        assert (item.error_info is not None) == (item.status == UploadStatus.ERROR)
        assert (item.document_id is not None) == (item.status == UploadStatus.COMPLETE)
        assert 0 <= item.progress <= 100
        if item.status == UploadStatus.COMPLETE:
            assert item.progress == 100
        if item.status in ACTIVE_STATUSES:
            active += 1
    assert active <= max_active
    assert state.is_uploading == (active > 0)


# ======================================================================
# Submission
# ======================================================================


class TestValidateSource:
    """Submit-time acceptance rules."""

    def test_accepts_text(self, config):
        assert validate_source(make_source("a.md"), config) is None

    def test_rejects_oversized(self, config):
        big = SourceFile(name="big.txt", size=config.max_file_size_bytes + 1)
        assert validate_source(big, config) == "File size exceeds 10MB limit"

    def test_rejects_extension(self, config):
        pdf = make_source("paper.pdf")
        assert validate_source(pdf, config) == (
            "File type .pdf not supported. Only .md, .txt files are allowed."
        )

    def test_rejects_empty(self, config):
        assert validate_source(SourceFile.from_bytes("e.txt", b""), config) == "File is empty"

    def test_extension_case_insensitive(self, config):
        assert validate_source(make_source("NOTES.TXT"), config) is None


class TestSubmit:
    """submit() creates one item per file, in order."""

    async def test_every_file_ends_complete(self, queue, repository):
        names = [f"file-{i}.txt" for i in range(5)]
        items = queue.submit([make_source(n, f"content {n}") for n in names])

        assert [i.source.name for i in items] == names
        assert all(i.status == UploadStatus.QUEUED for i in items)

        await queue.join()

        state = queue.state
        assert [i.source.name for i in state.items] == names
        assert state.completed_count == 5
        assert not state.is_uploading
        assert state.overall_progress == 100.0
        assert len(repository.documents) == 5
        assert len({i.document_id for i in state.items}) == 5

    async def test_rejected_files_fail_immediately(self, queue, extractor):
        sources = [
            SourceFile(name="big.txt", size=11 * 1024 * 1024, data=b"x"),
            make_source("paper.pdf"),
            SourceFile.from_bytes("empty.md", b""),
            make_source("ok.txt"),
        ]
        items = queue.submit(sources)

        # Rejected before any processing is scheduled.
        assert [i.status for i in items] == [
            UploadStatus.ERROR,
            UploadStatus.ERROR,
            UploadStatus.ERROR,
            UploadStatus.QUEUED,
        ]
        for item in items[:3]:
            assert item.error_info.category == ErrorCategory.FILE
            assert item.error_info.retryable is False
            assert item.progress == 0

        await queue.join()
        assert extractor.calls == ["ok.txt"]
        assert queue.state.completed_count == 1
        assert queue.state.failed_count == 3

    async def test_submit_returns_snapshots(self, queue):
        items = queue.submit([make_source("a.txt")])
        await queue.join()
        assert items[0].status == UploadStatus.QUEUED
        assert queue.state.items[0].status == UploadStatus.COMPLETE

    async def test_empty_submit_is_idle(self, queue):
        assert queue.submit([]) == []
        await asyncio.wait_for(queue.join(), timeout=1)


# ======================================================================
# Admission
# ======================================================================


class TestAdmission:
    """Bounded concurrency and FIFO order."""

    async def test_never_exceeds_concurrency(self, repository, embeddings):
        config = IngestConfig(max_concurrent_items=2, auto_retry_base_delay=0)
        extractor = FakeExtractor(delay=0.01)
        queue = UploadQueue(FileProcessor(extractor, repository, embeddings, config), config)
        published: list[UploadState] = []
        queue.subscribe(published.append)
        queue.submit([make_source(f"f{i}.txt") for i in range(7)])
        assert queue.active_count <= 2
        await queue.join()

        for state in published:
            assert_invariants(state, config.max_concurrent_items)
        peak = max(sum(s.counts[st] for st in ACTIVE_STATUSES) for s in published)
        assert peak == 2
        assert queue.state.completed_count == 7

    async def test_fifo_admission(self, repository, embeddings):
        config = IngestConfig(max_concurrent_items=1, auto_retry_base_delay=0)
        extractor = FakeExtractor()
        queue = UploadQueue(FileProcessor(extractor, repository, embeddings, config), config)
        names = [f"f{i}.txt" for i in range(5)]

        queue.submit([make_source(n) for n in names])
        await queue.join()

        assert extractor.calls == names

    async def test_later_submit_joins_back_of_queue(self, repository, embeddings):
        config = IngestConfig(max_concurrent_items=1, auto_retry_base_delay=0)
        extractor = FakeExtractor()
        gate = asyncio.Event()
        extractor.gates["first.txt"] = gate
        queue = UploadQueue(FileProcessor(extractor, repository, embeddings, config), config)

        queue.submit([make_source("first.txt"), make_source("second.txt")])
        await asyncio.sleep(0)
        queue.submit([make_source("third.txt")])
        gate.set()
        await queue.join()

        assert extractor.calls == ["first.txt", "second.txt", "third.txt"]


# ======================================================================
# Snapshots
# ======================================================================


class TestSnapshots:
    """Published state is consistent and detached."""

    async def test_invariants_hold_in_every_snapshot(
        self, queue, snapshots, extractor, embeddings, config
    ):
        extractor.failures["bad.txt"] = ExtractionError("File is empty or contains no readable text")
        embeddings.failures.append(EmbeddingError("Embedding generation failed"))
        queue.submit([make_source(n) for n in ("a.txt", "bad.txt", "c.txt", "d.txt")])
        await queue.join()

        assert len(snapshots) > 1
        for state in snapshots:
            assert_invariants(state, config.max_concurrent_items)

    async def test_behavior_subject_replays_latest(self, queue):
        queue.submit([make_source("a.txt")])
        await queue.join()

        seen: list[UploadState] = []
        queue.states.subscribe(seen.append)

        assert len(seen) == 1
        assert seen[0] is queue.state

    async def test_snapshots_are_detached(self, queue, snapshots):
        queue.submit([make_source("a.txt")])
        first_queued = snapshots[1]
        await queue.join()
        assert first_queued.items[0].status == UploadStatus.QUEUED

    async def test_failing_subscriber_does_not_break_pipeline(self, queue):
        def explode(state: UploadState) -> None:
            if state.items:
                raise RuntimeError("subscriber bug")

        queue.subscribe(explode)
        queue.submit([make_source("a.txt")])
        await queue.join()
        assert queue.state.completed_count == 1

    async def test_dispose_stops_updates(self, queue):
        seen: list[UploadState] = []
        subscription = queue.subscribe(seen.append)
        subscription.dispose()
        queue.submit([make_source("a.txt")])
        await queue.join()
        assert len(seen) == 1


# ======================================================================
# Retry
# ======================================================================


class TestRetry:
    """retry_file / retry_failed semantics."""

    async def test_retry_unknown_id_is_noop(self, queue):
        assert queue.retry_file("missing") is False

    async def test_retry_complete_item_is_noop(self, queue):
        (item,) = queue.submit([make_source("a.txt")])
        await queue.join()
        assert queue.retry_file(item.id) is False
        assert queue.state.get(item.id).status == UploadStatus.COMPLETE

    async def test_retry_permanent_failure_is_noop(self, queue, extractor):
        extractor.failures["bad.txt"] = ExtractionError("unreadable")
        (item,) = queue.submit([make_source("bad.txt")])
        await queue.join()

        assert queue.retry_file(item.id) is False
        assert queue.state.get(item.id).status == UploadStatus.ERROR

    async def test_retry_resets_progress_and_error(self, queue, snapshots, config, extractor):
        extractor.failures["a.txt"] = [NetworkError("down")] * config.auto_retry_attempts
        (item,) = queue.submit([make_source("a.txt")])
        await queue.join()
        failed = queue.state.get(item.id)
        assert failed.status == UploadStatus.ERROR
        assert failed.error_info.category == ErrorCategory.NETWORK

        assert queue.retry_file(item.id) is True
        requeued = queue.state.get(item.id)
        assert requeued.status == UploadStatus.QUEUED
        assert requeued.progress == 0
        assert requeued.error is None
        # Second retry while queued is a no-op.
        assert queue.retry_file(item.id) is False

        await queue.join()
        assert queue.state.get(item.id).status == UploadStatus.COMPLETE

    async def test_embedding_retry_reuses_document(
        self, queue, extractor, repository, embeddings
    ):
        embeddings.fail_for["doc-1"] = EmbeddingError("Embedding generation failed")
        (item,) = queue.submit([make_source("a.txt", "kept text")])
        await queue.join()

        failed = queue.state.get(item.id)
        assert failed.status == UploadStatus.ERROR
        assert failed.error_info.category == ErrorCategory.AI_PROCESSING
        assert failed.document_id is None

        assert queue.retry_file(item.id) is True
        await queue.join()

        done = queue.state.get(item.id)
        assert done.status == UploadStatus.COMPLETE
        assert done.document_id == "doc-1"
        assert list(repository.documents) == ["doc-1"]
        assert extractor.calls == ["a.txt"]
        assert embeddings.calls == ["doc-1", "doc-1"]

    async def test_retry_failed_only_retryable(self, queue, extractor, embeddings):
        extractor.failures["perm.txt"] = ExtractionError("unreadable")
        embeddings.fail_for["doc-1"] = EmbeddingError("Embedding generation failed")
        items = queue.submit([make_source("first.txt"), make_source("perm.txt")])
        await queue.join()

        retried = queue.retry_failed()
        assert retried == [items[0].id]
        await queue.join()

        assert queue.state.get(items[0].id).status == UploadStatus.COMPLETE
        assert queue.state.get(items[1].id).status == UploadStatus.ERROR

    async def test_retry_failed_with_nothing_to_retry(self, queue):
        queue.submit([make_source("a.txt")])
        await queue.join()
        assert queue.retry_failed() == []


# ======================================================================
# Clearing
# ======================================================================


class TestClear:
    """clear_completed / clear_all."""

    async def test_clear_completed_keeps_others_in_order(self, queue, extractor):
        extractor.failures["b.txt"] = ExtractionError("unreadable")
        extractor.failures["d.txt"] = ExtractionError("unreadable")
        queue.submit([make_source(n) for n in ("a.txt", "b.txt", "c.txt", "d.txt")])
        await queue.join()

        assert queue.clear_completed() == 2
        assert [i.source.name for i in queue.state.items] == ["b.txt", "d.txt"]
        assert queue.state.completed_count == 0

    async def test_clear_completed_with_none_complete(self, queue, extractor):
        extractor.failures["b.txt"] = ExtractionError("unreadable")
        queue.submit([make_source("b.txt")])
        await queue.join()
        assert queue.clear_completed() == 0
        assert len(queue.state.items) == 1

    async def test_clear_all(self, queue):
        queue.submit([make_source("a.txt"), make_source("b.pdf")])
        await queue.join()
        assert queue.clear_all() == 2
        assert queue.state.items == ()
        assert queue.state.overall_progress == 0.0

    async def test_clear_rejected_while_busy(self, queue, extractor):
        gate = asyncio.Event()
        extractor.gates["slow.txt"] = gate
        queue.submit([make_source("slow.txt")])
        await asyncio.sleep(0)
        assert queue.state.is_uploading

        with pytest.raises(QueueBusyError):
            queue.clear_completed()
        with pytest.raises(QueueBusyError):
            queue.clear_all()

        gate.set()
        await queue.join()
        assert queue.clear_completed() == 1


# ======================================================================
# End-to-end
# ======================================================================


class TestMixedBatch:
    """One success, one permanent failure, one retryable embedding failure."""

    async def test_retry_failed_converts_only_embedding_failure(
        self, queue, extractor, repository, embeddings
    ):
        extractor.failures["b.txt"] = ExtractionError("File is empty or contains no readable text")
        embeddings.fail_for["text of c"] = EmbeddingError("Embedding generation failed")

        a, b, c = queue.submit(
            [
                make_source("a.txt", "text of a"),
                make_source("b.txt", "text of b"),
                make_source("c.txt", "text of c"),
            ]
        )
        await queue.join()

        state = queue.state
        assert state.get(a.id).status == UploadStatus.COMPLETE
        assert state.get(b.id).error_info.category == ErrorCategory.FILE
        assert state.get(c.id).error_info.category == ErrorCategory.AI_PROCESSING
        assert state.completed_count == 1
        assert state.failed_count == 2
        # B stopped at the extraction step, C after its document was stored.
        assert [state.get(i.id).progress for i in (a, b, c)] == [100, 10, 70]
        assert state.overall_progress == 60.0

        assert queue.retry_failed() == [c.id]
        await queue.join()

        state = queue.state
        assert state.get(a.id).status == UploadStatus.COMPLETE
        assert state.get(b.id).status == UploadStatus.ERROR
        assert state.get(c.id).status == UploadStatus.COMPLETE
        c_doc = state.get(c.id).document_id
        assert repository.documents[c_doc]["content"] == "text of c"
        assert len(repository.documents) == 2
        assert embeddings.calls.count(c_doc) == 2
        assert [state.get(i.id).progress for i in (a, b, c)] == [100, 10, 100]
        assert state.overall_progress == 70.0
