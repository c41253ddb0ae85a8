"""Tests for the vector store gateway."""

from datetime import timedelta

import pytest

from conftest import TEST_DIM, basis
from rag_pipeline.core.errors import StoreError
from rag_pipeline.models.entities import ChunkInput, Memory
from rag_pipeline.utils.time import utc_now


def _store(gateway, source_id: str, vectors, metadata=None) -> None:
    gateway.upsert_source_metadata(source_id, f"{source_id}.txt", f"file:///{source_id}.txt")
    gateway.insert_chunks(
        source_id,
        [ChunkInput(content=f"{source_id}-{i}", embedding=v, metadata=dict(metadata or {})) for i, v in enumerate(vectors)],
    )


def test_upsert_updates_in_place(gateway) -> None:
    gateway.upsert_source_metadata("s1", "Old", "file:///old", schema=["a"], mime_type="text/csv")
    created = gateway.get_source("s1").created_at
    gateway.upsert_source_metadata("s1", "New", "file:///new")
    source = gateway.get_source("s1")
    assert (source.title, source.origin_url) == ("New", "file:///new")
    assert source.schema == ["a"]
    assert source.mime_type == "text/csv"
    assert source.created_at == created
    assert [s.source_id for s in gateway.list_sources()] == ["s1"]


def test_insert_chunks_indexes_from_zero_across_batches(gateway) -> None:
    _store(gateway, "s1", [basis(1.0)] * 5)
    chunks = gateway.get_chunks("s1")
    assert [chunk.chunk_index for chunk in chunks] == [0, 1, 2, 3, 4]
    assert gateway.count_chunks("s1") == 5
    assert chunks[0].embedding == basis(1.0)


def test_insert_chunks_rejects_wrong_dimension(gateway) -> None:
    gateway.upsert_source_metadata("s1", "t", "u")
    with pytest.raises(StoreError):
        gateway.insert_chunks("s1", [ChunkInput(content="x", embedding=[1.0, 0.0])])


def test_insert_chunks_requires_metadata(gateway) -> None:
    with pytest.raises(StoreError):
        gateway.insert_chunks("missing", [ChunkInput(content="x", embedding=basis(1.0))])


def test_delete_source_removes_everything(gateway) -> None:
    _store(gateway, "s1", [basis(1.0)])
    gateway.insert_rows("s1", [{"a": 1}])
    _store(gateway, "s2", [basis(1.0)])
    gateway.delete_source("s1")
    assert gateway.get_source("s1") is None
    assert gateway.get_chunks("s1") == []
    assert gateway.get_rows("s1") == []
    assert gateway.count_chunks() == 1
    gateway.delete_source("never-existed")


def test_rows_round_trip_in_order(gateway) -> None:
    gateway.upsert_source_metadata("sheet", "sheet.csv", "file:///sheet.csv")
    rows = [{"name": f"n{i}", "amount": i} for i in range(5)]
    assert gateway.insert_rows("sheet", rows) == 5
    stored = gateway.get_rows("sheet")
    assert [row.row_index for row in stored] == [0, 1, 2, 3, 4]
    assert [row.row_data for row in stored] == rows
    assert list(stored[0].row_data) == ["name", "amount"]


def test_similarity_search_threshold_and_limit(gateway) -> None:
    _store(gateway, "s1", [basis(1.0), basis(0.8, 0.6), basis(0.0, 1.0)])
    hits = gateway.similarity_search(basis(1.0), top_k=5, similarity_threshold=0.5)
    assert [hit.chunk.content for hit in hits] == ["s1-0", "s1-1"]
    assert hits[0].similarity == pytest.approx(1.0)
    assert hits[1].similarity == pytest.approx(0.8, abs=1e-6)
    assert len(gateway.similarity_search(basis(1.0), top_k=1, similarity_threshold=0.0)) == 1


def test_similarity_search_below_threshold_is_empty(gateway) -> None:
    _store(gateway, "s1", [basis(1.0)])
    query = basis(0.7, (1 - 0.49) ** 0.5)
    assert gateway.similarity_search(query, top_k=4, similarity_threshold=0.9) == []
    hits = gateway.similarity_search(query, top_k=4, similarity_threshold=0.5)
    assert hits[0].similarity == pytest.approx(0.7, abs=1e-6)


def test_similarity_search_ties_keep_insertion_order(gateway) -> None:
    _store(gateway, "s1", [basis(1.0)] * 4)
    hits = gateway.similarity_search(basis(1.0), top_k=4, similarity_threshold=0.0)
    assert [hit.chunk.chunk_index for hit in hits] == [0, 1, 2, 3]


def test_similarity_search_filters(gateway) -> None:
    _store(gateway, "a", [basis(1.0)], metadata={"mime_type": "text/plain"})
    _store(gateway, "b", [basis(1.0)], metadata={"mime_type": "application/pdf"})
    by_source = gateway.similarity_search(basis(1.0), 4, 0.0, filter={"source_id": "b"})
    assert [hit.chunk.source_id for hit in by_source] == ["b"]
    by_meta = gateway.similarity_search(basis(1.0), 4, 0.0, filter={"mime_type": ["text/plain"]})
    assert [hit.chunk.source_id for hit in by_meta] == ["a"]


def test_similarity_search_rejects_wrong_query_dimension(gateway) -> None:
    with pytest.raises(StoreError):
        gateway.similarity_search([1.0], top_k=1, similarity_threshold=0.0)


def test_memories_exclude_expired_and_purge(gateway) -> None:
    now = utc_now()
    fresh = Memory("m1", "u1", None, "likes tea", 0.5, basis(1.0), now, now + timedelta(days=1))
    stale = Memory("m2", "u1", None, "old fact", 0.5, basis(1.0), now - timedelta(days=3), now - timedelta(days=1))
    other = Memory("m3", "u2", "c1", "likes tea", 0.5, basis(1.0), now)
    for memory in (fresh, stale, other):
        gateway.insert_memory(memory)
    hits = gateway.search_memories("u1", basis(1.0), top_k=5, similarity_threshold=0.5)
    assert [hit.memory.memory_id for hit in hits] == ["m1"]
    assert gateway.purge_expired_memories() == 1
    assert gateway.purge_expired_memories() == 0


def test_memory_validates_importance() -> None:
    with pytest.raises(ValueError):
        Memory("m", "u", None, "x", 1.5, [0.0] * TEST_DIM, utc_now())


def _block_deletes(gateway, table: str) -> None:
    with gateway.db.transaction() as cursor:
        cursor.execute(
            f"CREATE TRIGGER block_{table}_delete BEFORE DELETE ON {table} "
            f"BEGIN SELECT RAISE(ABORT, '{table} locked'); END"
        )


def test_chunk_delete_failure_raises(gateway) -> None:
    _store(gateway, "s1", [basis(1.0)])
    _block_deletes(gateway, "chunks")
    with pytest.raises(StoreError):
        gateway.delete_source("s1")
    assert gateway.count_chunks("s1") == 1


def test_row_delete_failure_is_logged_not_raised(gateway, caplog) -> None:
    _store(gateway, "s1", [basis(1.0)])
    gateway.insert_rows("s1", [{"name": "x"}])
    _block_deletes(gateway, "document_rows")
    gateway.delete_source("s1")
    assert gateway.get_chunks("s1") == []
    assert len(gateway.get_rows("s1")) == 1
    assert "Error deleting rows for s1" in caplog.text


def test_metadata_delete_failure_is_logged_not_raised(gateway, caplog) -> None:
    _store(gateway, "s1", [basis(1.0)])
    gateway.insert_rows("s1", [{"name": "x"}])
    _block_deletes(gateway, "sources")
    gateway.delete_source("s1")
    assert gateway.get_chunks("s1") == []
    assert gateway.get_rows("s1") == []
    assert gateway.get_source("s1") is not None
    assert "Error deleting metadata for s1" in caplog.text


def test_records_of_another_dimension_are_skipped(gateway, settings) -> None:
    from rag_pipeline.db.gateway import VectorStoreGateway

    _store(gateway, "s1", [basis(1.0)])
    gateway.insert_memory(Memory("m1", "u1", None, "likes tea", 0.5, basis(1.0), utc_now()))
    narrow = VectorStoreGateway.open(settings.model_copy(update={"embedding_dim": 8}))
    try:
        query = basis(1.0, dim=8)
        assert narrow.similarity_search(query, top_k=4, similarity_threshold=0.0) == []
        assert narrow.search_memories("u1", query, top_k=4, similarity_threshold=0.0) == []
        _store(narrow, "s2", [query])
        hits = narrow.similarity_search(query, top_k=4, similarity_threshold=0.5)
        assert [hit.chunk.source_id for hit in hits] == ["s2"]
    finally:
        narrow.close()
