"""Collaborator interfaces consumed by the FileProcessor.

Concrete adapters live in :mod:`corpuslib.extractors`,
:mod:`corpuslib.store`, :mod:`corpuslib.embeddings` and
:mod:`corpuslib.title_generator`; tests substitute in-memory fakes.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from corpuslib.models import SourceFile


@runtime_checkable
class TextExtractor(Protocol):
    """Turns a raw source file into plain text."""

    async def extract_text(self, source: SourceFile) -> str:
        """Return the file's text.

        Raises:
            ExtractionError: Unreadable, unsupported or empty content.
        """
        ...


@runtime_checkable
class DocumentRepository(Protocol):
    """Creates persisted document rows."""

    async def create_document(self, title: str, content: str, word_count: int) -> str:
        """Insert a document and return its id.

        Raises:
            PersistenceError: The row could not be created.
        """
        ...


@runtime_checkable
class EmbeddingService(Protocol):
    """Computes an embedding for a document's text and stores it."""

    async def embed_and_attach(self, document_id: str, text: str) -> None:
        """Embed *text* and attach the vector to *document_id*.

        Raises:
            EmbeddingError: The vector could not be computed or attached.
        """
        ...


@runtime_checkable
class TitleGenerator(Protocol):
    """Writes a title for content whose file name says nothing about it."""

    async def generate_title(self, content: str) -> str:
        """Return a short descriptive title for *content*.

        Raises:
            AIProcessingError: No usable title came back.
        """
        ...
