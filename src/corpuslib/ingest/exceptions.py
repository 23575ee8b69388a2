"""Typed errors raised by ingestion collaborators and the upload queue.

Collaborators raise these at the source so the classifier can pick the
category from the type; free-text matching is only the fallback for
exceptions that arrive untyped.
"""

from __future__ import annotations

from corpuslib.models import ErrorCategory


class IngestError(Exception):
    """Base class for failures recorded on an UploadItem."""

    category: ErrorCategory = ErrorCategory.UNKNOWN


class FileError(IngestError):
    """Permanent problem with the source file (format, empty, oversized)."""

    category = ErrorCategory.FILE


class ExtractionError(FileError):
    """Raised when text cannot be extracted from a source file."""


class NetworkError(IngestError):
    """Raised on transport failures (connection reset, timeout, DNS)."""

    category = ErrorCategory.NETWORK


class RateLimitError(IngestError):
    """Raised when a downstream service answers 429 / too many requests."""

    category = ErrorCategory.RATE_LIMIT


class AIProcessingError(IngestError):
    """Raised when the AI service fails for a non-transport reason."""

    category = ErrorCategory.AI_PROCESSING


class EmbeddingError(AIProcessingError):
    """Raised when an embedding cannot be computed or attached."""


class DatabaseError(IngestError):
    """Raised on failures of the persistence layer."""

    category = ErrorCategory.DATABASE


class PersistenceError(DatabaseError):
    """Raised when a document row cannot be created or updated."""


class UnknownError(IngestError):
    """Raised when a failure fits no other category."""


class InvalidTransitionError(ValueError):
    """Raised when an UploadItem status change is not a legal FSM transition."""


class QueueBusyError(RuntimeError):
    """Raised when a clearing operation is attempted while items are in flight."""
