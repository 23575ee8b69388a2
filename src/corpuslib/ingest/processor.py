"""Single-file processing for the ingestion pipeline.

Drives one UploadItem through the step sequence:

1. ``uploading``  -- extract text (failure: File Error), then pick a title
2. ``processing`` -- create the document row (failure: Database Error)
3. ``processing`` -- embed and attach (failure: AI Processing Error)
4. ``complete``   -- document id recorded, progress 100

Every collaborator failure is caught at the step that invoked it,
classified, and reported through the ``update`` callback -- nothing
escapes :meth:`FileProcessor.process`.

An embedding-stage failure happens *after* the document row exists.  The
returned :class:`ProcessingCheckpoint` keeps the created document id (and
the extracted text) so a retry resumes at the embedding step against the
same row instead of inserting a duplicate.

A generically named file (``Untitled.txt``) is titled by the optional
:class:`~corpuslib.ingest.protocols.TitleGenerator`.  A titling failure
never fails the item; the title then falls back to the first words of
the content.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Protocol

from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from corpuslib.ingest.classifier import classify_step_error, is_transient
from corpuslib.ingest.protocols import (
    DocumentRepository,
    EmbeddingService,
    TextExtractor,
    TitleGenerator,
)
from corpuslib.models import ErrorCategory, ErrorInfo, IngestConfig, SourceFile, UploadStatus
from corpuslib.titles import count_words, derive_title, is_generic_filename

logger = logging.getLogger(__name__)

PROGRESS_UPLOADING = 10
PROGRESS_EXTRACTED = 40
PROGRESS_PERSISTED = 70
PROGRESS_COMPLETE = 100


class ItemUpdate(Protocol):
    """Callback applying a status/field change to the item being processed."""

    def __call__(
        self,
        status: UploadStatus,
        *,
        progress: int | None = None,
        error: str | None = None,
        error_info: ErrorInfo | None = None,
        document_id: str | None = None,
    ) -> None: ...


@dataclass(slots=True)
class ProcessingCheckpoint:
    """Work retained between attempts for a partially processed file."""

    text: str
    word_count: int
    title: str
    document_id: str | None = None


class FileProcessor:
    """Runs the extract -> persist -> embed sequence for one file.

    Args:
        extractor: Text extraction collaborator.
        repository: Document persistence collaborator.
        embeddings: Embedding collaborator.
        config: Pipeline configuration (auto-retry settings).
        title_generator: Optional AI titler for generically named files.
            Without one (or when it fails) the title comes from
            :func:`~corpuslib.titles.derive_title`.
    """

    def __init__(
        self,
        extractor: TextExtractor,
        repository: DocumentRepository,
        embeddings: EmbeddingService,
        config: IngestConfig,
        title_generator: TitleGenerator | None = None,
    ) -> None:
        self._extractor = extractor
        self._repository = repository
        self._embeddings = embeddings
        self._config = config
        self._title_generator = title_generator

    async def process(
        self,
        source: SourceFile,
        update: ItemUpdate,
        checkpoint: ProcessingCheckpoint | None = None,
    ) -> ProcessingCheckpoint | None:
        """Process *source*, reporting every transition through *update*.

        Args:
            source: The raw file to ingest.
            update: Callback applying status/field changes to the item.
            checkpoint: Work kept from a previous embedding-stage failure.

        Returns:
            The checkpoint to keep when the item failed after its document
            was persisted, otherwise ``None``.
        """
        update(UploadStatus.UPLOADING, progress=PROGRESS_UPLOADING)

        if checkpoint is None or checkpoint.document_id is None:
            try:
                text = await self._call_with_retry(self._extractor.extract_text, source)
            except Exception as exc:
                self._fail(update, source, exc, ErrorCategory.FILE, "extraction")
                return None
            checkpoint = ProcessingCheckpoint(
                text=text,
                word_count=count_words(text),
                title=await self._resolve_title(source, text),
            )
        else:
            logger.info(
                "Resuming %s at embedding step (document %s)",
                source.name,
                checkpoint.document_id,
            )

        update(UploadStatus.PROCESSING, progress=PROGRESS_EXTRACTED)

        if checkpoint.document_id is None:
            # Not auto-retried: a lost response could mean the row exists.
            try:
                checkpoint.document_id = await self._repository.create_document(
                    checkpoint.title, checkpoint.text, checkpoint.word_count
                )
            except Exception as exc:
                self._fail(update, source, exc, ErrorCategory.DATABASE, "persistence")
                return None
            logger.debug(
                "Created document %s for %s (%d words)",
                checkpoint.document_id,
                source.name,
                checkpoint.word_count,
            )
            update(UploadStatus.PROCESSING, progress=PROGRESS_PERSISTED)

        try:
            await self._call_with_retry(
                self._embeddings.embed_and_attach,
                checkpoint.document_id,
                checkpoint.text,
            )
        except Exception as exc:
            self._fail(update, source, exc, ErrorCategory.AI_PROCESSING, "embedding")
            return checkpoint

        update(
            UploadStatus.COMPLETE,
            progress=PROGRESS_COMPLETE,
            document_id=checkpoint.document_id,
        )
        logger.info("Ingested %s as document %s", source.name, checkpoint.document_id)
        return None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _resolve_title(self, source: SourceFile, text: str) -> str:
        if self._title_generator is None or not is_generic_filename(source.name):
            return derive_title(source.name, text)
        try:
            title = await self._call_with_retry(self._title_generator.generate_title, text)
        except Exception as exc:
            logger.warning(
                "Title generation failed for %s, using content words: %s",
                source.name,
                exc,
            )
            return derive_title(source.name, text)
        return title.strip() or derive_title(source.name, text)

    async def _call_with_retry(
        self, func: Callable[..., Awaitable[Any]], *args: Any
    ) -> Any:
        """Await ``func(*args)``, retrying network/rate-limit failures in place."""
        attempts = max(1, self._config.auto_retry_attempts)
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(attempts),
            wait=wait_exponential(
                multiplier=self._config.auto_retry_base_delay,
                max=self._config.auto_retry_max_delay,
            ),
            retry=retry_if_exception(is_transient),
            reraise=True,
        ):
            with attempt:
                result = await func(*args)
        return result

    @staticmethod
    def _fail(
        update: ItemUpdate,
        source: SourceFile,
        exc: BaseException,
        step_category: ErrorCategory,
        step: str,
    ) -> None:
        info = classify_step_error(exc, step_category)
        message = str(exc) or type(exc).__name__
        logger.warning(
            "%s failed for %s [%s]: %s",
            step.capitalize(),
            source.name,
            info.category.value,
            message,
        )
        update(UploadStatus.ERROR, error=message, error_info=info)
