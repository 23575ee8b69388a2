"""CLI entry point for corpuslib.

Provides commands:
  - ingest: Extract, store and embed text documents with progress tracking
  - config: Manage configuration (API keys)
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, NoReturn

import keyring
import typer
from keyring.errors import KeyringError, PasswordDeleteError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from corpuslib.config import (
    API_KEY_ENV,
    KEY_NAME,
    SERVICE_NAME,
    find_api_key,
    mask_api_key,
    stored_api_key,
)

if TYPE_CHECKING:
    from corpuslib.models import IngestConfig, SourceFile, UploadState

logger = logging.getLogger(__name__)

app = typer.Typer(
    help="corpuslib - Bulk ingestion of text documents into a searchable corpus",
    rich_markup_mode="rich",
)
console = Console()

# Config command group
config_app = typer.Typer(help="Manage configuration (API keys, settings)")
app.add_typer(config_app, name="config")

DRY_RUN_PREVIEW_LIMIT = 20


def _collect_sources(paths: list[Path], config: IngestConfig) -> list[SourceFile]:
    """Expand *paths* into SourceFiles.

    Files given explicitly are always submitted (unsupported ones are
    rejected by the queue); directories contribute only files with an
    allowed extension, in sorted order.
    """
    from corpuslib.models import SourceFile

    sources: list[SourceFile] = []
    for path in paths:
        if path.is_dir():
            for child in sorted(path.rglob("*")):
                if child.is_file() and child.suffix.lower() in config.allowed_extensions:
                    sources.append(SourceFile.from_path(child))
        else:
            sources.append(SourceFile.from_path(path))
    return sources


def _enable_debug_log() -> None:
    debug_dir = Path.home() / ".corpuslib"
    debug_dir.mkdir(exist_ok=True)
    fh = logging.FileHandler(debug_dir / "debug.log")
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    )
    pkg_logger = logging.getLogger("corpuslib")
    pkg_logger.setLevel(logging.DEBUG)
    pkg_logger.addHandler(fh)


def _print_dry_run(sources: list[SourceFile], config: IngestConfig) -> None:
    from corpuslib.ingest.progress import format_file_size
    from corpuslib.ingest.queue import validate_source

    console.print(
        Panel(
            f"[bold]{len(sources)}[/bold] files would be ingested into "
            f"[bold]{config.db_path}[/bold]",
            title="Dry Run",
        )
    )

    shown = min(DRY_RUN_PREVIEW_LIMIT, len(sources))
    preview_table = Table(title=f"Files (showing first {shown})")
    preview_table.add_column("File", style="cyan", no_wrap=True)
    preview_table.add_column("Size", justify="right")
    preview_table.add_column("Accepted")

    for source in sources[:DRY_RUN_PREVIEW_LIMIT]:
        rejection = validate_source(source, config)
        verdict = "[green]yes[/green]" if rejection is None else f"[red]{rejection}[/red]"
        preview_table.add_row(source.name, format_file_size(source.size), verdict)

    if len(sources) > DRY_RUN_PREVIEW_LIMIT:
        preview_table.add_row(
            f"... and {len(sources) - DRY_RUN_PREVIEW_LIMIT} more", "", ""
        )
    console.print(preview_table)


def _print_summary(state: UploadState, retried: int) -> None:
    from corpuslib.ingest.progress import build_error_tables

    summary_table = Table(title="Ingest Summary")
    summary_table.add_column("Metric", style="bold")
    summary_table.add_column("Count", justify="right")

    summary_table.add_row("Total files", str(len(state.items)))
    summary_table.add_row("Succeeded", f"[green]{state.completed_count}[/green]")
    summary_table.add_row("Failed", f"[red]{state.failed_count}[/red]")
    summary_table.add_row("Retried", f"[yellow]{retried}[/yellow]")

    console.print(Panel(summary_table, title="Ingest Complete"))

    for table in build_error_tables(state):
        console.print(table)


@app.command()
def ingest(
    paths: Annotated[
        list[Path],
        typer.Argument(exists=True, help="Files or directories to ingest"),
    ],
    db_path: Annotated[
        Path | None,
        typer.Option("--db", "-d", help="Path to SQLite database file"),
    ] = None,
    concurrency: Annotated[
        int | None,
        typer.Option("--concurrency", "-n", min=1, help="Max files processed at once"),
    ] = None,
    max_size_mb: Annotated[
        float | None,
        typer.Option("--max-size-mb", help="Reject files larger than this"),
    ] = None,
    retry_failed: Annotated[
        bool,
        typer.Option("--retry-failed", help="Retry retryable failures once after the run"),
    ] = False,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="Show what would be ingested without ingesting"),
    ] = False,
    ai_titles: Annotated[
        bool,
        typer.Option(
            "--ai-titles/--no-ai-titles",
            help="Ask Gemini for titles of generically named files",
        ),
    ] = True,
    debug: Annotated[
        bool, typer.Option("--debug", help="Write debug log to ~/.corpuslib/debug.log")
    ] = False,
) -> None:
    """Ingest text documents: extract, store, and embed each file.

    The Gemini API key is read from the system keyring (service: corpuslib-gemini),
    falling back to the GEMINI_API_KEY environment variable.
    """
    from corpuslib.config import load_ingest_config

    if debug:
        _enable_debug_log()

    config = load_ingest_config()
    if db_path is not None:
        config.db_path = str(db_path)
    if concurrency is not None:
        config.max_concurrent_items = concurrency
    if max_size_mb is not None:
        config.max_file_size_bytes = int(max_size_mb * 1024 * 1024)
    if not ai_titles:
        config.generate_titles = False

    sources = _collect_sources(paths, config)
    if not sources:
        console.print("[green]No files to ingest.[/green]")
        return

    if dry_run:
        _print_dry_run(sources, config)
        return

    # Get API key from keyring/env
    try:
        from corpuslib.config import get_api_key

        api_key = config.api_key or get_api_key()
    except RuntimeError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)

    # Import pipeline modules here to keep CLI startup fast for config commands
    import asyncio

    from corpuslib.embeddings import GeminiEmbeddingClient, StoreEmbeddingService
    from corpuslib.extractors import PlainTextExtractor
    from corpuslib.ingest.processor import FileProcessor
    from corpuslib.ingest.progress import UploadProgressTracker
    from corpuslib.ingest.queue import UploadQueue
    from corpuslib.store import AsyncDocumentStore
    from corpuslib.title_generator import GeminiTitleGenerator

    console.print(
        Panel(
            f"Ingesting [bold]{len(sources)}[/bold] files into "
            f"[bold]{config.db_path}[/bold]\n"
            f"Concurrency: {config.max_concurrent_items} | "
            f"Model: {config.embedding_model}",
            title="Ingest Pipeline",
        )
    )

    client = GeminiEmbeddingClient(
        api_key=api_key,
        model=config.embedding_model,
        max_chars=config.max_embedding_chars,
    )
    title_generator = (
        GeminiTitleGenerator(api_key=api_key, model=config.title_model)
        if config.generate_titles
        else None
    )
    tracker = UploadProgressTracker(total_files=len(sources), console=console)

    async def _run_ingest() -> UploadState:
        async with AsyncDocumentStore(config.db_path) as store:
            processor = FileProcessor(
                extractor=PlainTextExtractor(),
                repository=store,
                embeddings=StoreEmbeddingService(client, store),
                config=config,
                title_generator=title_generator,
            )
            queue = UploadQueue(processor, config)
            with tracker:
                subscription = queue.subscribe(tracker.update)
                queue.submit(sources)
                await queue.join()
                if retry_failed and queue.retry_failed():
                    await queue.join()
                subscription.dispose()
            queue.close()
            return queue.state

    state = asyncio.run(_run_ingest())

    _print_summary(state, tracker.stats["retried"])

    if state.failed_count:
        raise typer.Exit(code=1)


def _abort(message: str) -> NoReturn:
    console.print(f"[red]Error:[/red] {message}")
    raise typer.Exit(code=1)


@config_app.command("set-api-key")
def set_api_key(
    key: Annotated[str, typer.Argument(help="Gemini API key used by `ingest`")],
) -> None:
    """Save the Gemini API key in the system keyring."""
    key = key.strip()
    if not key:
        _abort("API key cannot be empty")
    try:
        keyring.set_password(SERVICE_NAME, KEY_NAME, key)
    except KeyringError as e:
        _abort(f"keyring refused the key: {e}")
    console.print(f"[green]Saved[/green] {mask_api_key(key)} under '{SERVICE_NAME}'")


@config_app.command("show-api-key")
def show_api_key() -> None:
    """Show which API key `ingest` would use (masked) and where it comes from."""
    found = find_api_key()
    if found is None:
        console.print(
            "[yellow]No API key found[/yellow] in the keyring or "
            f"${API_KEY_ENV}.\nRun [bold]corpuslib config set-api-key KEY[/bold]."
        )
        raise typer.Exit(code=1)
    key, source = found
    console.print(f"{mask_api_key(key)} [dim](from {source})[/dim]")


@config_app.command("remove-api-key")
def remove_api_key() -> None:
    """Forget the API key saved in the system keyring."""
    if stored_api_key() is None:
        console.print("[yellow]No key saved in the keyring.[/yellow] Nothing to remove.")
        return
    try:
        keyring.delete_password(SERVICE_NAME, KEY_NAME)
    except PasswordDeleteError as e:
        _abort(f"keyring could not delete the key: {e}")
    console.print(f"[green]Removed[/green] the key saved under '{SERVICE_NAME}'")
