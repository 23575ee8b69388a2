"""Stateless aggregate computations over the upload item list."""

from __future__ import annotations

from types import MappingProxyType
from typing import Iterable, Mapping, Sequence

from corpuslib.models import ACTIVE_STATUSES, UploadItem, UploadState, UploadStatus


def count_by_status(items: Iterable[UploadItem]) -> Mapping[UploadStatus, int]:
    """Return a read-only count of items per status (every status present)."""
    counts = {status: 0 for status in UploadStatus}
    for item in items:
        counts[item.status] += 1
    return MappingProxyType(counts)


def overall_progress(items: Sequence[UploadItem]) -> float:
    """Mean of all items' progress, weighted equally (0.0 for no items)."""
    if not items:
        return 0.0
    return sum(item.progress for item in items) / len(items)


def build_state(items: Iterable[UploadItem]) -> UploadState:
    """Snapshot *items* (in order) into an immutable UploadState."""
    snapshots = tuple(item.snapshot() for item in items)
    counts = count_by_status(snapshots)
    return UploadState(
        items=snapshots,
        is_uploading=sum(counts[s] for s in ACTIVE_STATUSES) > 0,
        overall_progress=overall_progress(snapshots),
        counts=counts,
    )
