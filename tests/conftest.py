"""Shared pytest fixtures for corpuslib ingestion tests.

Provides an instant-retry pipeline config, in-memory fakes for the three
pipeline collaborators (extractor, repository, embedding service), and
a helper for building in-memory source files.
"""

from __future__ import annotations

import asyncio
import itertools

import pytest

from corpuslib.ingest.processor import FileProcessor
from corpuslib.ingest.queue import UploadQueue
from corpuslib.models import IngestConfig, SourceFile, UploadState


def make_source(name: str = "notes.txt", text: str = "Some readable content") -> SourceFile:
    """Build an in-memory SourceFile."""
    return SourceFile.from_bytes(name, text.encode("utf-8"), content_type="text/plain")


class FakeExtractor:
    """Decodes in-memory data; ``failures`` maps file names to exceptions.

    A failure value that is a list is consumed one entry per call, so
    ``[NetworkError("x")]`` fails once and then succeeds.
    """

    def __init__(self, delay: float = 0.0) -> None:
        self.delay = delay
        self.failures: dict[str, BaseException | list[BaseException]] = {}
        self.calls: list[str] = []
        self.gates: dict[str, asyncio.Event] = {}

    async def extract_text(self, source: SourceFile) -> str:
        self.calls.append(source.name)
        if source.name in self.gates:
            await self.gates[source.name].wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        failure = self.failures.get(source.name)
        if isinstance(failure, list):
            if failure:
                raise failure.pop(0)
        elif failure is not None:
            raise failure
        return source.data.decode("utf-8")


class FakeRepository:
    """Records created documents; ``fail_next`` raises on the next insert."""

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self.documents: dict[str, dict] = {}
        self.fail_next: BaseException | None = None

    async def create_document(self, title: str, content: str, word_count: int) -> str:
        if self.fail_next is not None:
            exc, self.fail_next = self.fail_next, None
            raise exc
        document_id = f"doc-{next(self._ids)}"
        self.documents[document_id] = {
            "title": title,
            "content": content,
            "word_count": word_count,
        }
        return document_id


class FakeEmbeddings:
    """Records attached embeddings.

    ``failures`` is a queue of exceptions raised by successive calls;
    ``fail_for`` fails once for a given document id or text.
    """

    def __init__(self) -> None:
        self.attached: list[str] = []
        self.calls: list[str] = []
        self.failures: list[BaseException] = []
        self.fail_for: dict[str, BaseException] = {}

    async def embed_and_attach(self, document_id: str, text: str) -> None:
        self.calls.append(document_id)
        for key in (document_id, text):
            if key in self.fail_for:
                raise self.fail_for.pop(key)
        if self.failures:
            raise self.failures.pop(0)
        self.attached.append(document_id)


@pytest.fixture
def config() -> IngestConfig:
    """Pipeline config with instant in-step retries."""
    return IngestConfig(
        max_concurrent_items=3,
        auto_retry_attempts=3,
        auto_retry_base_delay=0,
        auto_retry_max_delay=0,
    )


@pytest.fixture
def extractor() -> FakeExtractor:
    return FakeExtractor()


@pytest.fixture
def repository() -> FakeRepository:
    return FakeRepository()


@pytest.fixture
def embeddings() -> FakeEmbeddings:
    return FakeEmbeddings()


@pytest.fixture
def processor(
    extractor: FakeExtractor,
    repository: FakeRepository,
    embeddings: FakeEmbeddings,
    config: IngestConfig,
) -> FileProcessor:
    return FileProcessor(extractor, repository, embeddings, config)


@pytest.fixture
def queue(processor: FileProcessor, config: IngestConfig) -> UploadQueue:
    """An UploadQueue wired to the fake collaborators (needs a running loop)."""
    return UploadQueue(processor, config)


@pytest.fixture
def snapshots(queue: UploadQueue) -> list[UploadState]:
    """Every UploadState published by the queue fixture, in order."""
    published: list[UploadState] = []
    queue.subscribe(published.append)
    return published
