"""CLI entrypoint for the RAG pipeline."""

from __future__ import annotations

import json
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, NoReturn, Optional

import typer

from rag_pipeline.core.config import Settings
from rag_pipeline.core.errors import PipelineError
from rag_pipeline.core.logging import configure_logging
from rag_pipeline.core.metrics import INDEX_SIZE, render_metrics
from rag_pipeline.db.gateway import VectorStoreGateway
from rag_pipeline.ingest.drive import DriveClient, DriveWatcher
from rag_pipeline.ingest.embeddings import Embedder, build_embedder
from rag_pipeline.ingest.pipeline import IngestOrchestrator
from rag_pipeline.ingest.watcher import LocalWatcher
from rag_pipeline.memory.service import MemoryService, format_memories
from rag_pipeline.retrieval.tool import RetrievalTool
from rag_pipeline.utils.ids import source_id_for_filename

app = typer.Typer(name="ragp", help="RAG pipeline: document processing, embedding and retrieval")
memory_app = typer.Typer(name="memory", help="Long-term user memories")
app.add_typer(memory_app, name="memory")

CHUNK_SIZE_OPTION = typer.Option(None, "--chunk-size", "-c", help="Chunk size for text splitting")
CHUNK_OVERLAP_OPTION = typer.Option(None, "--chunk-overlap", "-o", help="Chunk overlap")


class Runtime:
    """Components built from one Settings object for a single command."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.gateway = VectorStoreGateway.open(settings)
        self._embedder: Embedder | None = None

    @property
    def embedder(self) -> Embedder:
        if self._embedder is None:
            self._embedder = build_embedder(self.settings)
        return self._embedder

    def orchestrator(self) -> IngestOrchestrator:
        return IngestOrchestrator(self.gateway, self.embedder, self.settings)

    def close(self) -> None:
        self.gateway.close()


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(None, "--config", help="Path to a YAML config file"),
) -> None:
    ctx.obj = {"config": config}


@contextmanager
def _runtime(ctx: typer.Context, **overrides: Any) -> Iterator[Runtime]:
    config = (ctx.obj or {}).get("config")
    try:
        settings = Settings.load(config, **overrides)
        configure_logging(settings.log_level, use_json=settings.log_json)
        runtime = Runtime(settings)
    except PipelineError as exc:
        _fail(exc)
    try:
        yield runtime
    except PipelineError as exc:
        _fail(exc)
    finally:
        runtime.close()


def _fail(exc: PipelineError) -> NoReturn:
    typer.echo(f"Error: {exc.message}", err=True)
    raise typer.Exit(code=1)


def _echo_json(payload: Any) -> None:
    typer.echo(json.dumps(payload, indent=2, default=str))


def _wait_for_interrupt() -> None:
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        typer.echo("Stopping...", err=True)


@app.command("watch-local")
def watch_local(
    ctx: typer.Context,
    directory: Optional[Path] = typer.Option(None, "--directory", "-d", help="Directory to watch"),
    chunk_size: Optional[int] = CHUNK_SIZE_OPTION,
    chunk_overlap: Optional[int] = CHUNK_OVERLAP_OPTION,
) -> None:
    """Watch a local directory for file changes."""
    with _runtime(ctx, watch_directory=directory, chunk_size=chunk_size, chunk_overlap=chunk_overlap) as runtime:
        watcher = LocalWatcher(runtime.orchestrator(), runtime.settings)
        watcher.start()
        typer.echo(f"Watching {watcher.root}. Press Ctrl+C to stop.", err=True)
        try:
            _wait_for_interrupt()
        finally:
            watcher.stop()


@app.command("watch-drive")
def watch_drive(
    ctx: typer.Context,
    folder_id: Optional[str] = typer.Option(None, "--folder-id", "-f", help="Google Drive folder ID"),
    interval: Optional[float] = typer.Option(None, "--interval", "-i", help="Poll interval in seconds"),
) -> None:
    """Watch a Google Drive folder for changes."""
    with _runtime(ctx, drive_folder_id=folder_id, poll_interval_seconds=interval) as runtime:
        watcher = DriveWatcher(runtime.orchestrator(), DriveClient.from_settings(runtime.settings), runtime.settings)
        watcher.start()
        typer.echo(f"Watching Drive folder {watcher.folder_id}. Press Ctrl+C to stop.", err=True)
        try:
            _wait_for_interrupt()
        finally:
            watcher.stop()


@app.command("process-file")
def process_file(
    ctx: typer.Context,
    filepath: Path = typer.Argument(..., help="Path to file to process"),
    source_id: Optional[str] = typer.Option(None, "--source-id", help="Override the derived source id"),
    chunk_size: Optional[int] = CHUNK_SIZE_OPTION,
    chunk_overlap: Optional[int] = CHUNK_OVERLAP_OPTION,
) -> None:
    """Process a single file."""
    with _runtime(ctx, chunk_size=chunk_size, chunk_overlap=chunk_overlap) as runtime:
        resolved_id = source_id or source_id_for_filename(filepath.name)
        if not runtime.orchestrator().ingest_file(filepath, source_id=resolved_id):
            typer.echo(f"File processing failed: {filepath}", err=True)
            raise typer.Exit(code=1)
        _echo_json({"status": "ok", "source_id": resolved_id, "chunks": runtime.gateway.count_chunks(resolved_id)})


@app.command("process-directory")
def process_directory(
    ctx: typer.Context,
    directory: Path = typer.Argument(..., help="Directory to process"),
    recursive: bool = typer.Option(False, "--recursive", "-r", help="Process subdirectories recursively"),
    chunk_size: Optional[int] = CHUNK_SIZE_OPTION,
    chunk_overlap: Optional[int] = CHUNK_OVERLAP_OPTION,
) -> None:
    """Process every supported file in a directory without watching it."""
    if not directory.is_dir():
        typer.echo(f"Not a directory: {directory}", err=True)
        raise typer.Exit(code=1)
    with _runtime(ctx, chunk_size=chunk_size, chunk_overlap=chunk_overlap) as runtime:
        stats, results = runtime.orchestrator().ingest_directory(directory, recursive=recursive)
        _echo_json(
            {
                "stats": stats.to_dict(),
                "results": [item.to_dict() for item in results],
            }
        )
        if stats.failed:
            raise typer.Exit(code=1)


@app.command()
def delete(
    ctx: typer.Context,
    source_id: str = typer.Argument(..., help="Source identifier"),
) -> None:
    """Remove a source with all its chunks and rows."""
    with _runtime(ctx) as runtime:
        runtime.gateway.delete_source(source_id)
        _echo_json({"status": "ok", "source_id": source_id})


@app.command()
def query(
    ctx: typer.Context,
    text: str = typer.Argument(..., help="Query text"),
    top_k: Optional[int] = typer.Option(None, "--top-k", "-k", help="Number of results to return"),
    threshold: Optional[float] = typer.Option(None, "--threshold", "-t", help="Minimum similarity 0-1"),
) -> None:
    """Query the knowledge base and print the formatted context."""
    with _runtime(ctx) as runtime:
        tool = RetrievalTool(runtime.gateway, runtime.embedder, runtime.settings)
        typer.echo(tool.retrieve(text, top_k=top_k, similarity_threshold=threshold))


@app.command()
def sources(ctx: typer.Context) -> None:
    """List indexed sources."""
    with _runtime(ctx) as runtime:
        _echo_json(
            [
                {
                    "source_id": source.source_id,
                    "title": source.title,
                    "origin_url": source.origin_url,
                    "mime_type": source.mime_type,
                    "schema": source.schema,
                    "chunks": runtime.gateway.count_chunks(source.source_id),
                    "updated_at": source.updated_at.isoformat(),
                }
                for source in runtime.gateway.list_sources()
            ]
        )


@app.command()
def metrics(ctx: typer.Context) -> None:
    """Print Prometheus metrics."""
    with _runtime(ctx) as runtime:
        INDEX_SIZE.set(runtime.gateway.count_chunks())
        typer.echo(render_metrics())


@memory_app.command("add")
def memory_add(
    ctx: typer.Context,
    user_id: str = typer.Argument(..., help="User identifier"),
    content: str = typer.Argument(..., help="Memory text"),
    conversation_id: Optional[str] = typer.Option(None, "--conversation-id", help="Conversation identifier"),
    importance: float = typer.Option(0.5, "--importance", min=0.0, max=1.0, help="Importance 0-1"),
) -> None:
    """Store a memory for a user."""
    with _runtime(ctx) as runtime:
        service = MemoryService(runtime.gateway, runtime.embedder, runtime.settings)
        memory_id = service.add(user_id, content, conversation_id=conversation_id, importance=importance)
        _echo_json({"status": "ok", "memory_id": memory_id})


@memory_app.command("search")
def memory_search(
    ctx: typer.Context,
    user_id: str = typer.Argument(..., help="User identifier"),
    text: str = typer.Argument(..., help="Query text"),
    top_k: Optional[int] = typer.Option(None, "--top-k", "-k", help="Number of memories to return"),
    threshold: Optional[float] = typer.Option(None, "--threshold", "-t", help="Minimum similarity 0-1"),
) -> None:
    """Search a user's memories."""
    with _runtime(ctx) as runtime:
        service = MemoryService(runtime.gateway, runtime.embedder, runtime.settings)
        typer.echo(format_memories(service.search(user_id, text, top_k=top_k, threshold=threshold)))


@memory_app.command("purge")
def memory_purge(ctx: typer.Context) -> None:
    """Delete expired memories."""
    with _runtime(ctx) as runtime:
        _echo_json({"status": "ok", "removed": runtime.gateway.purge_expired_memories()})


if __name__ == "__main__":
    app()
