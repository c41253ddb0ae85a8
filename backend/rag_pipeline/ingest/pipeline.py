"""Ingest pipeline orchestration."""

from __future__ import annotations

import base64
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator

from rag_pipeline.core.config import Settings
from rag_pipeline.core.errors import ConfigurationError, EmbeddingError, PipelineError, StoreError
from rag_pipeline.core.logging import get_logger
from rag_pipeline.core.metrics import INDEX_SIZE, INGEST_DURATION, INGEST_TOTAL
from rag_pipeline.db.gateway import VectorStoreGateway
from rag_pipeline.ingest.chunker import chunk_text, validate_window
from rag_pipeline.ingest.embeddings import Embedder
from rag_pipeline.ingest.extract import ExtractorRegistry
from rag_pipeline.ingest.tabular import extract_rows, extract_schema, is_tabular
from rag_pipeline.ingest.types import IngestResult, IngestStats, IngestStatus
from rag_pipeline.models.entities import ChunkInput
from rag_pipeline.utils.ids import source_id_for_filename, source_id_for_path
from rag_pipeline.utils.mime import guess_mime_type

logger = get_logger(__name__)


@dataclass(slots=True)
class _LockEntry:
    lock: threading.RLock = field(default_factory=threading.RLock)
    holders: int = 0


class KeyedLock:
    """One reentrant lock per key; entries are dropped once nobody holds or waits on them."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: dict[str, _LockEntry] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._entries.setdefault(key, _LockEntry())
            entry.holders += 1
        entry.lock.acquire()
        try:
            yield
        finally:
            entry.lock.release()
            with self._guard:
                entry.holders -= 1
                if entry.holders == 0:
                    self._entries.pop(key, None)


class IngestOrchestrator:
    """Turn one source's bytes into stored metadata, rows and embedded chunks.

    Every run starts by deleting whatever the store holds for the source, so
    re-ingesting identical input leaves identical state. Runs for the same
    ``source_id`` are serialized; different sources may run concurrently.
    """

    def __init__(
        self,
        gateway: VectorStoreGateway,
        embedder: Embedder,
        settings: Settings,
        extractors: ExtractorRegistry | None = None,
    ) -> None:
        self.gateway = gateway
        self.embedder = embedder
        self.settings = settings
        self.extractors = extractors or ExtractorRegistry()
        self._locks = KeyedLock()

    def ingest(
        self,
        source_id: str,
        data: bytes,
        mime_type: str | None,
        title: str,
        origin_url: str,
        chunk_size: int | None = None,
        chunk_overlap: int | None = None,
    ) -> bool:
        """Index one source, replacing any previous version of it.

        Returns ``False`` when any step fails; the source may then hold
        partial rows or metadata and must be ingested again in full.
        """
        kind = mime_type or "text/plain"
        size = self.settings.chunk_size if chunk_size is None else chunk_size
        overlap = self.settings.chunk_overlap if chunk_overlap is None else chunk_overlap
        context = {"ctx_source_id": source_id, "ctx_mime_type": kind}
        logger.info("Processing file for RAG: %s", title, extra=context)

        started = time.perf_counter()
        with self._locks.hold(source_id):
            try:
                chunk_count = self._run(source_id, data, kind, title, origin_url, size, overlap)
            except PipelineError as exc:
                logger.error("File processing failed for %s: %s", title, exc, exc_info=True, extra=context)
                INGEST_TOTAL.labels(status="failed").inc()
                return False
            finally:
                INGEST_DURATION.labels(mime_type=kind).observe(time.perf_counter() - started)

        INGEST_TOTAL.labels(status="success").inc()
        self._update_index_metric()
        logger.info("File processing completed: %s (%s chunks)", title, chunk_count, extra=context)
        return True

    def delete(self, source_id: str) -> bool:
        """Remove a source and everything stored for it; unknown ids succeed."""
        with self._locks.hold(source_id):
            try:
                self.gateway.delete_source(source_id)
            except StoreError as exc:
                logger.error("Failed to delete source %s: %s", source_id, exc, extra={"ctx_source_id": source_id})
                return False
        self._update_index_metric()
        return True

    def ingest_file(
        self,
        path: Path,
        source_id: str | None = None,
        chunk_size: int | None = None,
        chunk_overlap: int | None = None,
    ) -> bool:
        """Read a local file and ingest it with MIME type, title and URL derived from its path."""
        resolved = path.expanduser().resolve()
        try:
            data = resolved.read_bytes()
        except OSError as exc:
            logger.error("Failed to read %s: %s", resolved, exc)
            return False
        return self.ingest(
            source_id or source_id_for_filename(resolved.name),
            data,
            guess_mime_type(resolved),
            resolved.name,
            resolved.as_uri(),
            chunk_size=chunk_size,
            chunk_overlap=chunk_overlap,
        )

    def ingest_directory(
        self,
        root: Path,
        recursive: bool = False,
        chunk_size: int | None = None,
        chunk_overlap: int | None = None,
    ) -> tuple[IngestStats, list[IngestResult]]:
        """Ingest every supported file in ``root``; one file's failure never stops the rest."""
        base = root.expanduser().resolve()
        pattern = "**/*" if recursive else "*"
        stats = IngestStats()
        results: list[IngestResult] = []
        for path in sorted(base.glob(pattern)):
            if not path.is_file():
                continue
            source_id = source_id_for_path(base, path)
            if path.suffix.lower() not in self.settings.watch_extensions:
                status, detail = IngestStatus.SKIPPED, "unsupported extension"
            elif self.ingest_file(path, source_id=source_id, chunk_size=chunk_size, chunk_overlap=chunk_overlap):
                status, detail = IngestStatus.PROCESSED, None
            else:
                status, detail = IngestStatus.FAILED, None
            results.append(stats.record(IngestResult(source_id, path, status, detail)))
        logger.info("Directory processing complete: %s", base, extra={"ctx_stats": stats.to_dict()})
        return stats, results

    # Internal helpers -------------------------------------------------

    def _run(
        self,
        source_id: str,
        data: bytes,
        mime_type: str,
        title: str,
        origin_url: str,
        chunk_size: int,
        chunk_overlap: int,
    ) -> int:
        try:
            validate_window(chunk_size, chunk_overlap)
        except ValueError as exc:
            raise ConfigurationError(str(exc), chunk_size=chunk_size, chunk_overlap=chunk_overlap) from exc

        self.gateway.delete_source(source_id)

        schema: list[str] | None = None
        rows: list[dict] = []
        if is_tabular(mime_type):
            schema = extract_schema(data)
            rows = extract_rows(data)

        # Metadata first: rows and chunks reference the source record.
        self.gateway.upsert_source_metadata(source_id, title, origin_url, schema=schema, mime_type=mime_type)
        if rows:
            self.gateway.insert_rows(source_id, rows)

        text = self.extractors.extract(data, mime_type, title)
        chunks = chunk_text(text, chunk_size, chunk_overlap)
        if not chunks:
            logger.warning("No chunks created for %s", title, extra={"ctx_source_id": source_id})
            return 0

        vectors = self.embedder.embed(chunks)
        if len(vectors) != len(chunks):
            raise EmbeddingError(
                f"Embedding count mismatch: {len(chunks)} chunks, {len(vectors)} vectors",
                source_id=source_id,
            )

        metadata: dict[str, str] = {"mime_type": mime_type, "title": title, "origin_url": origin_url}
        if mime_type.startswith("image/"):
            metadata["file_contents"] = base64.b64encode(data).decode("ascii")
        return self.gateway.insert_chunks(
            source_id,
            [ChunkInput(content=chunk, embedding=vector, metadata=dict(metadata)) for chunk, vector in zip(chunks, vectors)],
        )

    def _update_index_metric(self) -> None:
        try:
            INDEX_SIZE.set(self.gateway.count_chunks())
        except StoreError as exc:
            logger.warning("Failed to refresh index size metric: %s", exc)


__all__ = ["IngestOrchestrator", "KeyedLock"]
