"""Command line interface for pdfrag."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Coroutine, Optional, TypeVar

import typer
from rich.console import Console
from rich.table import Table

from pdfrag.config import MissingCredentialsError, RagConfig
from pdfrag.index.manifest import ManifestStore
from pdfrag.pipeline import RagPipeline, init_pipeline

console = Console()
app = typer.Typer(help="pdfrag - incremental PDF retrieval for chat assistants")

_DEFAULTS = RagConfig()

T = TypeVar("T")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _build_config(
    data_dir: Optional[Path],
    cache_dir: Optional[Path],
    model: Optional[str],
    local: bool = False,
) -> RagConfig:
    overrides: dict = {}
    if data_dir is not None:
        overrides["data_dir"] = data_dir
    if cache_dir is not None:
        overrides["cache_dir"] = cache_dir
    if model is not None:
        overrides["embedding_model"] = model
    if local:
        overrides["embedding_backend"] = "local"
    return RagConfig.from_env(**overrides).resolve(Path.cwd())


def _run(coro: Coroutine[Any, Any, T]) -> T:
    try:
        return asyncio.run(coro)
    except MissingCredentialsError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc


DataDirOption = typer.Option(None, "--data-dir", help="Directory holding source PDFs")
CacheDirOption = typer.Option(None, "--cache-dir", help="Directory for manifest, vectors and images")
ModelOption = typer.Option(None, "--model", help=f"Embedding model (default {_DEFAULTS.embedding_model})")
LocalOption = typer.Option(False, "--local", help="Embed with a local sentence-transformers model")
VerboseOption = typer.Option(False, "--verbose", "-v", help="Verbose logging")


@app.command()
def index(
    data_dir: Path = DataDirOption,
    cache_dir: Path = CacheDirOption,
    model: str = ModelOption,
    local: bool = LocalOption,
    verbose: bool = VerboseOption,
) -> None:
    """Bring the cache up to date with the PDFs in the data directory."""
    _setup_logging(verbose)
    config = _build_config(data_dir, cache_dir, model, local)
    console.print(f"Indexing [bold]{config.data_dir}[/bold] into [bold]{config.cache_dir}[/bold]...")

    async def run() -> RagPipeline:
        pipeline = await init_pipeline(config)
        await pipeline.aclose()
        return pipeline

    pipeline = _run(run())
    stats = pipeline.stats
    console.print(
        f"Inserted: {stats.inserted}, updated: {stats.updated}, unchanged: {stats.unchanged}, "
        f"deleted: {stats.deleted}, skipped: {stats.skipped}, failed: {stats.failed}"
    )
    console.print(f"{pipeline.document_count} document(s), {pipeline.chunk_count} chunks indexed.")


@app.command()
def query(
    text: str = typer.Argument(..., help="Query text"),
    data_dir: Path = DataDirOption,
    cache_dir: Path = CacheDirOption,
    model: str = ModelOption,
    local: bool = LocalOption,
    verbose: bool = VerboseOption,
) -> None:
    """Show the context that would be attached for a query."""
    _setup_logging(verbose)
    config = _build_config(data_dir, cache_dir, model, local)

    async def run() -> None:
        pipeline = await init_pipeline(config)
        async with pipeline:
            result = await pipeline.query(text)

        if result.context is None:
            console.print("[yellow]No relevant context found.[/yellow]")
            return
        console.print(f"[bold]Sources:[/bold] {result.sources_line}")
        console.print(f"[bold]Page images:[/bold] {len(result.page_images)}")
        console.print(result.context.strip())

    _run(run())


@app.command()
def status(
    cache_dir: Path = CacheDirOption,
) -> None:
    """List the documents recorded in the manifest."""
    config = _build_config(None, cache_dir, None)
    manifest = ManifestStore.load(config.manifest_path)
    if not len(manifest):
        console.print("[yellow]Manifest is empty.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Document")
    table.add_column("Chunks")
    table.add_column("Model")
    table.add_column("Strategy")
    table.add_column("Key")

    for file_path, entry in manifest.items():
        table.add_row(
            Path(file_path).name,
            str(entry.chunk_count),
            entry.embedding_model,
            entry.chunking_strategy,
            entry.image_hash_prefix or "-",
        )
    console.print(table)
