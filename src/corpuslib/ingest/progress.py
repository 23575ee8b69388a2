"""Rich progress display and failure reporting for the ingestion pipeline.

The tracker is a plain subscriber of the queue's state stream::

    tracker = UploadProgressTracker(total_files=len(sources))
    with tracker:
        subscription = queue.subscribe(tracker.update)
        queue.submit(sources)
        await queue.join()
        subscription.dispose()
"""

from __future__ import annotations

from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeRemainingColumn,
)
from rich.table import Table

from corpuslib.models import UploadItem, UploadState, UploadStatus

_STATUS_STYLES: dict[UploadStatus, str] = {
    UploadStatus.QUEUED: "dim",
    UploadStatus.UPLOADING: "cyan",
    UploadStatus.PROCESSING: "blue",
    UploadStatus.COMPLETE: "green",
    UploadStatus.ERROR: "red",
}


class UploadProgressTracker:
    """Pipeline-level Rich progress bar driven by UploadState snapshots.

    The bar counts finished items (complete or error) against the number
    of items in the latest snapshot; the status column shows the most
    recently changed file and running counts.
    """

    def __init__(self, total_files: int, console: Console | None = None) -> None:
        self._total_files = total_files
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            TimeRemainingColumn(),
            TextColumn("{task.fields[status]}", style="dim"),
            console=console,
        )
        self._pipeline_task: TaskID | None = None
        self._last_seen: dict[str, UploadStatus] = {}
        self._stats: dict[str, int] = {"succeeded": 0, "failed": 0, "retried": 0}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the Rich progress display."""
        self._progress.start()
        self._pipeline_task = self._progress.add_task(
            "[green]Ingest",
            total=self._total_files,
            status="starting...",
        )

    def stop(self) -> None:
        """Stop the Rich progress display."""
        self._progress.stop()

    def __enter__(self) -> UploadProgressTracker:
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        self.stop()

    # ------------------------------------------------------------------
    # State stream
    # ------------------------------------------------------------------

    def update(self, state: UploadState) -> None:
        """Render one snapshot (use as the queue subscriber callback)."""
        changed: UploadItem | None = None
        for item in state.items:
            previous = self._last_seen.get(item.id)
            if previous == item.status:
                continue
            changed = item
            if item.status == UploadStatus.COMPLETE:
                self._stats["succeeded"] += 1
            elif item.status == UploadStatus.ERROR:
                self._stats["failed"] += 1
            elif item.status == UploadStatus.QUEUED and previous == UploadStatus.ERROR:
                self._stats["retried"] += 1
            self._last_seen[item.id] = item.status

        if self._pipeline_task is None:
            return

        finished = state.completed_count + state.failed_count
        status = (
            f"{state.completed_count} done, {state.failed_count} failed"
        )
        if changed is not None:
            style = _STATUS_STYLES[changed.status]
            name = _truncate_path(changed.source.name)
            status = f"[{style}]{changed.status.value}[/{style}] {name} | {status}"

        self._progress.update(
            self._pipeline_task,
            total=max(len(state.items), 1),
            completed=finished,
            status=status,
        )

    @property
    def stats(self) -> dict[str, int]:
        """Return a copy of the transition counters seen so far."""
        return dict(self._stats)


def format_file_size(size: int) -> str:
    """Render a byte count as ``Bytes``/``KB``/``MB``/``GB``."""
    units = ["Bytes", "KB", "MB", "GB"]
    if size <= 0:
        return "0 Bytes"
    exponent = 0
    while size >= 1024 ** (exponent + 1) and exponent < len(units) - 1:
        exponent += 1
    value = round(size / 1024**exponent, 2)
    return f"{value:g} {units[exponent]}"


def build_error_tables(state: UploadState) -> list[Table]:
    """Build Rich tables of failed items, retryable first, then permanent.

    Returns an empty list when nothing failed.
    """
    failed = state.failed_items
    retryable = [i for i in failed if i.error_info and i.error_info.retryable]
    permanent = [i for i in failed if not (i.error_info and i.error_info.retryable)]

    tables: list[Table] = []
    if retryable:
        noun = "File Failed" if len(retryable) == 1 else "Files Failed"
        tables.append(
            _error_table(
                f"[yellow]{len(retryable)} {noun}[/yellow] (can be retried)",
                retryable,
                "yellow",
            )
        )
    if permanent:
        noun = (
            "File Cannot Be Processed"
            if len(permanent) == 1
            else "Files Cannot Be Processed"
        )
        tables.append(
            _error_table(
                f"[red]{len(permanent)} {noun}[/red] (fix the file and upload again)",
                permanent,
                "red",
            )
        )
    return tables


def _error_table(title: str, items: list[UploadItem], style: str) -> Table:
    table = Table(title=title, title_justify="left")
    table.add_column("File", style="cyan", no_wrap=True)
    table.add_column("Category", style=style)
    table.add_column("Suggestion")
    table.add_column("Error", style="dim")
    for item in items:
        info = item.error_info
        table.add_row(
            _truncate_path(item.source.name),
            info.category.value if info else "",
            info.suggestion if info else "",
            item.error or "",
        )
    return table


def _truncate_path(file_path: str, max_len: int = 40) -> str:
    """Truncate a file path for display, keeping its tail."""
    if len(file_path) <= max_len:
        return file_path
    return "..." + file_path[-(max_len - 3) :]
