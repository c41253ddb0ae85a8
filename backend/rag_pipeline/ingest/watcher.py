"""Filesystem watcher that feeds changed files to the ingest pipeline."""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass
from pathlib import Path

from watchdog.events import FileSystemEvent, PatternMatchingEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver

from rag_pipeline.core.config import Settings
from rag_pipeline.core.logging import get_logger
from rag_pipeline.ingest.pipeline import IngestOrchestrator
from rag_pipeline.utils.ids import source_id_for_path

logger = get_logger(__name__)


@dataclass(slots=True)
class _Pending:
    size: int
    timer: threading.Timer | None = None


class WatchEventHandler(PatternMatchingEventHandler):
    """Dispatch watchdog events for supported files to a :class:`LocalWatcher`."""

    def __init__(self, watcher: "LocalWatcher") -> None:
        super().__init__(
            patterns=[f"*{ext}" for ext in watcher.extensions],
            ignore_directories=True,
            case_sensitive=False,
        )
        self.watcher = watcher

    def on_created(self, event: FileSystemEvent) -> None:
        self.watcher.schedule(Path(os.fsdecode(event.src_path)))

    def on_modified(self, event: FileSystemEvent) -> None:
        self.watcher.schedule(Path(os.fsdecode(event.src_path)))

    def on_moved(self, event: FileSystemEvent) -> None:
        self.watcher.handle_deleted(Path(os.fsdecode(event.src_path)))
        self.watcher.schedule(Path(os.fsdecode(event.dest_path)))

    def on_deleted(self, event: FileSystemEvent) -> None:
        self.watcher.handle_deleted(Path(os.fsdecode(event.src_path)))


class LocalWatcher:
    """Keep a directory tree indexed.

    ``start`` ingests every supported file already present, then reacts to
    filesystem events. Created or modified files are ingested once they
    have stopped changing for ``debounce_seconds``: when the timer fires and
    the file size differs from the size seen when it was armed, the timer
    is armed again. A file whose mtime and size match its last successful
    ingest is not ingested again. Hidden files and directories are ignored.
    """

    def __init__(
        self,
        orchestrator: IngestOrchestrator,
        settings: Settings,
        directory: Path | None = None,
        chunk_size: int | None = None,
        chunk_overlap: int | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.root = (directory or settings.watch_directory).expanduser().resolve()
        self.extensions = tuple(settings.watch_extensions)
        self.debounce_seconds = settings.debounce_seconds
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self._lock = threading.Lock()
        self._pending: dict[Path, _Pending] = {}
        self._processed: dict[Path, tuple[int, int]] = {}
        self._observer: BaseObserver | None = None
        self._stopped = False

    @property
    def processed(self) -> dict[Path, tuple[int, int]]:
        """``(mtime_ns, size)`` of the last successful ingest per path; a soft cache, safe to lose."""
        with self._lock:
            return dict(self._processed)

    def start(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        self._stopped = False
        logger.info("Starting file watcher on %s", self.root)
        self.scan()
        observer = Observer()
        observer.schedule(WatchEventHandler(self), str(self.root), recursive=True)
        observer.start()
        self._observer = observer
        logger.info("File watcher started")

    def stop(self) -> None:
        """Cancel pending timers and the observer; running ingestions finish on their own."""
        with self._lock:
            self._stopped = True
            for pending in self._pending.values():
                if pending.timer is not None:
                    pending.timer.cancel()
            self._pending.clear()
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None
        logger.info("File watcher stopped")

    def scan(self) -> int:
        """Ingest every supported file under the root; returns how many succeeded."""
        processed = 0
        for path in sorted(self.root.rglob("*")):
            if path.is_file() and self.is_watched(path) and self.process_file(path):
                processed += 1
        logger.info("Initial scan complete: %s files processed", processed)
        return processed

    def is_watched(self, path: Path) -> bool:
        try:
            relative = path.resolve().relative_to(self.root)
        except ValueError:
            return False
        if any(part.startswith(".") for part in relative.parts):
            return False
        return path.suffix.lower() in self.extensions

    def schedule(self, path: Path) -> None:
        """Arm (or re-arm) the debounce timer for ``path``."""
        if not self.is_watched(path):
            return
        with self._lock:
            if self._stopped:
                return
            self._arm(path.resolve())

    def handle_deleted(self, path: Path) -> None:
        if not self.is_watched(path):
            return
        resolved = path.resolve()
        with self._lock:
            pending = self._pending.pop(resolved, None)
            if pending is not None and pending.timer is not None:
                pending.timer.cancel()
            self._processed.pop(resolved, None)
        logger.info("File deleted: %s", resolved)
        self.orchestrator.delete(source_id_for_path(self.root, resolved))

    def process_file(self, path: Path) -> bool:
        source_id = source_id_for_path(self.root, path)
        try:
            signature = _signature(path)
            success = self.orchestrator.ingest_file(
                path,
                source_id=source_id,
                chunk_size=self.chunk_size,
                chunk_overlap=self.chunk_overlap,
            )
        except Exception:
            logger.exception("File processing failed: %s", path, extra={"ctx_source_id": source_id})
            return False
        if success and signature is not None:
            with self._lock:
                self._processed[path.resolve()] = signature
            logger.info("File processed: %s", path, extra={"ctx_source_id": source_id})
        return success

    def _arm(self, path: Path) -> None:
        existing = self._pending.get(path)
        if existing is not None and existing.timer is not None:
            existing.timer.cancel()
        pending = _Pending(size=_size(path))
        pending.timer = threading.Timer(self.debounce_seconds, self._fire, args=(path, pending))
        pending.timer.daemon = True
        self._pending[path] = pending
        pending.timer.start()

    def _fire(self, path: Path, pending: _Pending) -> None:
        with self._lock:
            if self._stopped or self._pending.get(path) is not pending:
                return
            current = _size(path)
            if current < 0:
                self._pending.pop(path, None)
                return
            if current != pending.size:
                self._arm(path)
                return
            self._pending.pop(path, None)
            signature = _signature(path)
            unchanged = signature is not None and self._processed.get(path) == signature
        if unchanged:
            logger.debug("Skipping unchanged file: %s", path)
            return
        self.process_file(path)


def _size(path: Path) -> int:
    try:
        return path.stat().st_size
    except OSError:
        return -1


def _signature(path: Path) -> tuple[int, int] | None:
    try:
        stat = path.stat()
    except OSError:
        return None
    return stat.st_mtime_ns, stat.st_size


__all__ = ["LocalWatcher", "WatchEventHandler"]
