"""Bulk ingestion pipeline: queue, per-file processor and error handling.

Public API
----------
.. autoclass:: UploadQueue
.. autoclass:: FileProcessor
.. autoclass:: ProcessingCheckpoint
.. autoclass:: UploadItemSM
.. autoclass:: UploadProgressTracker
"""

from corpuslib.ingest.aggregate import build_state, count_by_status, overall_progress
from corpuslib.ingest.classifier import (
    classify_error,
    classify_message,
    classify_step_error,
    error_info_for,
    is_transient,
)
from corpuslib.ingest.exceptions import (
    AIProcessingError,
    DatabaseError,
    EmbeddingError,
    ExtractionError,
    FileError,
    IngestError,
    InvalidTransitionError,
    NetworkError,
    PersistenceError,
    QueueBusyError,
    RateLimitError,
    UnknownError,
)
from corpuslib.ingest.fsm import UploadItemSM, check_transition, create_fsm
from corpuslib.ingest.processor import FileProcessor, ProcessingCheckpoint
from corpuslib.ingest.progress import (
    UploadProgressTracker,
    build_error_tables,
    format_file_size,
)
from corpuslib.ingest.queue import UploadQueue, validate_source

__all__ = [
    "AIProcessingError",
    "DatabaseError",
    "EmbeddingError",
    "ExtractionError",
    "FileError",
    "FileProcessor",
    "IngestError",
    "InvalidTransitionError",
    "NetworkError",
    "PersistenceError",
    "ProcessingCheckpoint",
    "QueueBusyError",
    "RateLimitError",
    "UnknownError",
    "UploadItemSM",
    "UploadProgressTracker",
    "UploadQueue",
    "build_error_tables",
    "build_state",
    "check_transition",
    "classify_error",
    "classify_message",
    "classify_step_error",
    "count_by_status",
    "create_fsm",
    "error_info_for",
    "format_file_size",
    "is_transient",
    "overall_progress",
    "validate_source",
]
