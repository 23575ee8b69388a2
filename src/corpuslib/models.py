"""Data models and enums for the corpus ingestion pipeline."""

from __future__ import annotations

import mimetypes
from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Mapping


class UploadStatus(str, Enum):
    """Lifecycle status of a single file in the ingestion pipeline."""

    QUEUED = "queued"
    UPLOADING = "uploading"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"


ACTIVE_STATUSES: frozenset[UploadStatus] = frozenset(
    {UploadStatus.UPLOADING, UploadStatus.PROCESSING}
)


class ErrorCategory(str, Enum):
    """Classified failure category shown next to a failed file."""

    NETWORK = "Network Error"
    RATE_LIMIT = "Rate Limit"
    AI_PROCESSING = "AI Processing Error"
    FILE = "File Error"
    DATABASE = "Database Error"
    UNKNOWN = "Unknown Error"


@dataclass(frozen=True, slots=True)
class ErrorInfo:
    """Result of classifying a failure: category, retry policy, remediation."""

    category: ErrorCategory
    retryable: bool
    suggestion: str


@dataclass(frozen=True, slots=True)
class SourceFile:
    """Immutable reference to a raw input file.

    Either *path* (a file on disk) or *data* (in-memory bytes) supplies the
    content; *size* is always the byte size reported at selection time.
    """

    name: str
    size: int
    content_type: str = ""
    path: Path | None = None
    data: bytes | None = field(default=None, repr=False)

    @property
    def extension(self) -> str:
        """Lower-cased extension including the dot, or ``""``."""
        dot = self.name.rfind(".")
        return self.name[dot:].lower() if dot != -1 else ""

    @classmethod
    def from_path(cls, path: Path | str) -> SourceFile:
        """Build a SourceFile from a file on disk (size read via ``stat``)."""
        path = Path(path)
        content_type, _ = mimetypes.guess_type(path.name)
        return cls(
            name=path.name,
            size=path.stat().st_size,
            content_type=content_type or "",
            path=path,
        )

    @classmethod
    def from_bytes(cls, name: str, data: bytes, content_type: str = "") -> SourceFile:
        """Build a SourceFile from in-memory content."""
        return cls(name=name, size=len(data), content_type=content_type, data=data)


@dataclass(slots=True)
class UploadItem:
    """Per-file state record owned and mutated by the UploadQueue.

    Invariants (enforced by the queue):
        * ``error``/``error_info`` are set iff ``status == ERROR``
        * ``document_id`` is set iff ``status == COMPLETE``
    """

    id: str
    source: SourceFile
    status: UploadStatus = UploadStatus.QUEUED
    progress: int = 0
    error: str | None = None
    error_info: ErrorInfo | None = None
    document_id: str | None = None

    def snapshot(self) -> UploadItem:
        """Return a detached copy safe to hand to readers."""
        return replace(self)

    def to_dict(self) -> dict[str, object]:
        """Convert to a plain dict with enum values as strings."""
        return {
            "id": self.id,
            "name": self.source.name,
            "size": self.source.size,
            "status": self.status.value,
            "progress": self.progress,
            "error": self.error,
            "error_category": self.error_info.category.value if self.error_info else None,
            "retryable": self.error_info.retryable if self.error_info else None,
            "document_id": self.document_id,
        }


def _empty_counts() -> Mapping[UploadStatus, int]:
    return MappingProxyType({status: 0 for status in UploadStatus})


@dataclass(frozen=True)
class UploadState:
    """Immutable aggregate snapshot published after every item transition."""

    items: tuple[UploadItem, ...] = ()
    is_uploading: bool = False
    overall_progress: float = 0.0
    counts: Mapping[UploadStatus, int] = field(default_factory=_empty_counts)

    @property
    def completed_count(self) -> int:
        return self.counts[UploadStatus.COMPLETE]

    @property
    def failed_count(self) -> int:
        return self.counts[UploadStatus.ERROR]

    @property
    def failed_items(self) -> list[UploadItem]:
        return [item for item in self.items if item.status == UploadStatus.ERROR]

    def get(self, item_id: str) -> UploadItem | None:
        """Look up an item snapshot by id."""
        for item in self.items:
            if item.id == item_id:
                return item
        return None


@dataclass
class IngestConfig:
    """Configuration for the bulk ingestion pipeline.

    Controls admission concurrency, file acceptance constraints, in-step
    auto-retry behaviour, and the storage/embedding targets.
    """

    max_concurrent_items: int = 3
    max_file_size_bytes: int = 10 * 1024 * 1024
    allowed_extensions: set[str] = field(default_factory=lambda: {".txt", ".md"})
    max_embedding_chars: int = 30_000
    auto_retry_attempts: int = 3
    auto_retry_base_delay: float = 1.0
    auto_retry_max_delay: float = 10.0
    db_path: str = "data/corpus.db"
    embedding_model: str = "text-embedding-004"
    generate_titles: bool = True
    title_model: str = "gemini-2.0-flash"
    api_key: str | None = None

    def __post_init__(self) -> None:
        if self.max_concurrent_items < 1:
            raise ValueError("max_concurrent_items must be at least 1")
        self.allowed_extensions = {
            ext.lower() if ext.startswith(".") else f".{ext.lower()}"
            for ext in self.allowed_extensions
        }

    def to_dict(self) -> dict[str, object]:
        """Convert to dictionary, hiding the API key."""
        d = asdict(self)
        d["allowed_extensions"] = sorted(self.allowed_extensions)
        d["api_key"] = "***" if self.api_key else None
        return d
