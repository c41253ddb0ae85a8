"""Tests for the local filesystem watcher."""

import threading
import time
from pathlib import Path

from rag_pipeline.ingest.watcher import LocalWatcher


class RecordingOrchestrator:
    """Captures what the watcher asks for, reading file content at call time."""

    def __init__(self) -> None:
        self.ingested: list[tuple[str, bytes]] = []
        self.deleted: list[str] = []
        self.called = threading.Event()
        self.fail_for: set[str] = set()

    def ingest_file(self, path: Path, source_id=None, chunk_size=None, chunk_overlap=None) -> bool:
        if source_id in self.fail_for:
            raise RuntimeError("boom")
        self.ingested.append((source_id, path.read_bytes()))
        self.called.set()
        return True

    def delete(self, source_id: str) -> bool:
        self.deleted.append(source_id)
        return True


def _watcher(tmp_path: Path, settings) -> tuple[LocalWatcher, RecordingOrchestrator, Path]:
    root = tmp_path / "docs"
    root.mkdir(exist_ok=True)
    recorder = RecordingOrchestrator()
    return LocalWatcher(recorder, settings, directory=root), recorder, root


def test_scan_ingests_supported_visible_files(tmp_path: Path, settings) -> None:
    watcher, recorder, root = _watcher(tmp_path, settings)
    (root / "nested").mkdir()
    (root / "a.txt").write_text("a", encoding="utf-8")
    (root / "nested" / "b.md").write_text("b", encoding="utf-8")
    (root / "skip.bin").write_bytes(b"x")
    (root / ".hidden.txt").write_text("h", encoding="utf-8")
    (root / ".git").mkdir()
    (root / ".git" / "c.txt").write_text("c", encoding="utf-8")

    assert watcher.scan() == 2
    assert sorted(source_id for source_id, _ in recorder.ingested) == ["a.txt", "nested/b.md"]
    assert set(watcher.processed) == {(root / "a.txt").resolve(), (root / "nested" / "b.md").resolve()}


def test_scan_isolates_per_file_errors(tmp_path: Path, settings) -> None:
    watcher, recorder, root = _watcher(tmp_path, settings)
    (root / "a.txt").write_text("a", encoding="utf-8")
    (root / "b.txt").write_text("b", encoding="utf-8")
    recorder.fail_for.add("a.txt")
    assert watcher.scan() == 1
    assert [source_id for source_id, _ in recorder.ingested] == ["b.txt"]


def test_rapid_changes_collapse_into_one_ingest(tmp_path: Path, settings) -> None:
    watcher, recorder, root = _watcher(tmp_path, settings)
    path = root / "f.txt"
    path.write_text("first", encoding="utf-8")
    watcher.schedule(path)
    time.sleep(0.05)
    path.write_text("second version", encoding="utf-8")
    watcher.schedule(path)

    assert recorder.called.wait(3)
    time.sleep(0.5)
    assert recorder.ingested == [("f.txt", b"second version")]


def test_growing_file_rearms_timer(tmp_path: Path, settings) -> None:
    watcher, recorder, root = _watcher(tmp_path, settings)
    path = root / "grow.txt"
    path.write_text("a", encoding="utf-8")
    watcher.schedule(path)
    time.sleep(0.1)
    path.write_text("abc", encoding="utf-8")

    assert recorder.called.wait(3)
    time.sleep(0.3)
    assert recorder.ingested == [("grow.txt", b"abc")]


def test_delete_removes_source(tmp_path: Path, settings) -> None:
    watcher, recorder, root = _watcher(tmp_path, settings)
    watcher.handle_deleted(root / "sub" / "gone.txt")
    watcher.handle_deleted(root / "ignored.bin")
    assert recorder.deleted == ["sub/gone.txt"]


def test_stop_cancels_pending_timers(tmp_path: Path, settings) -> None:
    watcher, recorder, root = _watcher(tmp_path, settings)
    path = root / "f.txt"
    path.write_text("content", encoding="utf-8")
    watcher.schedule(path)
    watcher.stop()
    time.sleep(0.4)
    assert recorder.ingested == []


def test_start_runs_cold_scan(tmp_path: Path, settings) -> None:
    watcher, recorder, root = _watcher(tmp_path, settings)
    (root / "existing.txt").write_text("hello", encoding="utf-8")
    watcher.start()
    try:
        assert recorder.ingested == [("existing.txt", b"hello")]
    finally:
        watcher.stop()


def test_unchanged_file_is_not_ingested_again(tmp_path: Path, settings) -> None:
    watcher, recorder, root = _watcher(tmp_path, settings)
    path = root / "same.txt"
    path.write_text("stable", encoding="utf-8")
    assert watcher.process_file(path)
    recorder.called.clear()

    watcher.schedule(path)
    assert not recorder.called.wait(0.6)
    assert recorder.ingested == [("same.txt", b"stable")]

    path.write_text("edited content", encoding="utf-8")
    watcher.schedule(path)
    assert recorder.called.wait(3)
    assert recorder.ingested[-1] == ("same.txt", b"edited content")


def test_nested_and_flat_names_get_distinct_ids(tmp_path: Path, settings) -> None:
    watcher, recorder, root = _watcher(tmp_path, settings)
    (root / "a").mkdir()
    (root / "a" / "b.txt").write_text("nested", encoding="utf-8")
    (root / "a_b.txt").write_text("flat", encoding="utf-8")
    assert watcher.scan() == 2
    assert dict(recorder.ingested) == {"a/b.txt": b"nested", "a_b.txt": b"flat"}
