"""Bulk text-document ingestion into a searchable SQLite corpus."""

__version__ = "0.1.0"

from corpuslib.models import (
    ErrorCategory,
    ErrorInfo,
    IngestConfig,
    SourceFile,
    UploadItem,
    UploadState,
    UploadStatus,
)

__all__ = [
    "ErrorCategory",
    "ErrorInfo",
    "IngestConfig",
    "SourceFile",
    "UploadItem",
    "UploadState",
    "UploadStatus",
    "__version__",
]
