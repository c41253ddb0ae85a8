"""Vector store gateway: every read and write of sources, chunks, rows and memories."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator, Mapping, Sequence, TypeVar

import orjson

from rag_pipeline.core.config import Settings
from rag_pipeline.core.errors import StoreError
from rag_pipeline.core.logging import get_logger
from rag_pipeline.db.sqlite import SQLiteDatabase
from rag_pipeline.models.entities import Chunk, ChunkInput, Memory, MemoryHit, Row, SearchHit, Source
from rag_pipeline.retrieval.vector_index import VectorIndex, pack_vector, unpack_vector
from rag_pipeline.utils.time import from_ms, now_ms, to_ms, utc_now

logger = get_logger(__name__)

_CHUNK_COLUMNS = "id, source_id, chunk_index, content, embedding, meta_json, created_at"
_Embedded = TypeVar("_Embedded", Chunk, Memory)


class VectorStoreGateway:
    """Owns persistence of Source, Chunk, Row and Memory records.

    Bulk inserts are split into batches of ``insert_batch_size`` chunks and
    ``row_batch_size`` rows. Callers must upsert source metadata before
    inserting chunks or rows for that source.
    """

    def __init__(self, database: SQLiteDatabase, settings: Settings) -> None:
        self.db = database
        self.dim = settings.embedding_dim
        self.insert_batch_size = settings.insert_batch_size
        self.row_batch_size = settings.row_batch_size

    @classmethod
    def open(cls, settings: Settings) -> "VectorStoreGateway":
        database = SQLiteDatabase(settings.db_path, timeout=settings.store_timeout_seconds)
        try:
            database.ensure_schema()
        except sqlite3.Error as exc:
            raise StoreError(f"Failed to initialize store at {settings.db_path}: {exc}") from exc
        return cls(database, settings)

    def close(self) -> None:
        self.db.close()

    # Sources -----------------------------------------------------------

    def delete_source(self, source_id: str) -> None:
        """Remove chunks, rows and metadata for ``source_id``; unknown ids are a no-op."""
        with _store_errors("delete chunks", source_id):
            with self.db.transaction() as cursor:
                cursor.execute("DELETE FROM chunks WHERE source_id = ?", [source_id])
                deleted_chunks = cursor.rowcount

        try:
            with self.db.transaction() as cursor:
                cursor.execute("DELETE FROM document_rows WHERE source_id = ?", [source_id])
        except sqlite3.Error as exc:
            logger.warning("Error deleting rows for %s: %s", source_id, exc, extra={"ctx_source_id": source_id})

        try:
            with self.db.transaction() as cursor:
                cursor.execute("DELETE FROM sources WHERE id = ?", [source_id])
        except sqlite3.Error as exc:
            logger.warning("Error deleting metadata for %s: %s", source_id, exc, extra={"ctx_source_id": source_id})

        logger.info(
            "Deleted %s chunks for source %s",
            deleted_chunks,
            source_id,
            extra={"ctx_source_id": source_id},
        )

    def upsert_source_metadata(
        self,
        source_id: str,
        title: str,
        origin_url: str,
        schema: Sequence[str] | None = None,
        mime_type: str | None = None,
    ) -> None:
        now = now_ms()
        schema_json = orjson.dumps(list(schema)).decode("utf-8") if schema is not None else None
        with _store_errors("upsert metadata", source_id):
            with self.db.transaction() as cursor:
                cursor.execute(
                    """
                    INSERT INTO sources (id, title, origin_url, mime_type, schema_json, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                      title = excluded.title,
                      origin_url = excluded.origin_url,
                      mime_type = COALESCE(excluded.mime_type, sources.mime_type),
                      schema_json = COALESCE(excluded.schema_json, sources.schema_json),
                      updated_at = excluded.updated_at
                    """,
                    [source_id, title, origin_url, mime_type, schema_json, now, now],
                )
        logger.debug("Saved metadata for %s", title, extra={"ctx_source_id": source_id})

    def get_source(self, source_id: str) -> Source | None:
        with _store_errors("read metadata", source_id):
            rows = self.db.query(
                "SELECT id, title, origin_url, mime_type, schema_json, created_at, updated_at FROM sources WHERE id = ?",
                [source_id],
            )
        return _to_source(rows[0]) if rows else None

    def list_sources(self) -> list[Source]:
        with _store_errors("list sources"):
            rows = self.db.query(
                "SELECT id, title, origin_url, mime_type, schema_json, created_at, updated_at FROM sources ORDER BY id"
            )
        return [_to_source(row) for row in rows]

    # Chunks ------------------------------------------------------------

    def insert_chunks(self, source_id: str, chunks: Sequence[ChunkInput]) -> int:
        """Bulk insert ``chunks`` with contiguous ``chunk_index`` values from 0."""
        for chunk in chunks:
            if len(chunk.embedding) != self.dim:
                raise StoreError(
                    f"Embedding dimension {len(chunk.embedding)} does not match store dimension {self.dim}",
                    source_id=source_id,
                )
        now = now_ms()
        records = [
            (
                source_id,
                index,
                chunk.content,
                pack_vector(chunk.embedding),
                self.dim,
                orjson.dumps(chunk.metadata).decode("utf-8"),
                now,
            )
            for index, chunk in enumerate(chunks)
        ]
        with _store_errors("insert chunks", source_id):
            self.db.executemany(
                """
                INSERT INTO chunks (source_id, chunk_index, content, embedding, dim, meta_json, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                records,
                batch_size=self.insert_batch_size,
            )
        logger.info("Inserted %s chunks for source %s", len(records), source_id, extra={"ctx_source_id": source_id})
        return len(records)

    def get_chunks(self, source_id: str) -> list[Chunk]:
        with _store_errors("read chunks", source_id):
            rows = self.db.query(
                f"SELECT {_CHUNK_COLUMNS} FROM chunks WHERE source_id = ? ORDER BY chunk_index",
                [source_id],
            )
        return [_to_chunk(row) for row in rows]

    def count_chunks(self, source_id: str | None = None) -> int:
        with _store_errors("count chunks", source_id):
            if source_id is None:
                count = self.db.scalar("SELECT COUNT(*) FROM chunks")
            else:
                count = self.db.scalar("SELECT COUNT(*) FROM chunks WHERE source_id = ?", [source_id])
        return int(count or 0)

    def similarity_search(
        self,
        query_embedding: Sequence[float],
        top_k: int,
        similarity_threshold: float,
        filter: Mapping[str, Any] | None = None,
    ) -> list[SearchHit]:
        """Rank stored chunks by cosine similarity to ``query_embedding``.

        Returns at most ``top_k`` hits, each scoring at least
        ``similarity_threshold``, best first; equal scores keep insertion
        order. ``filter`` matches ``source_id`` or any chunk metadata key by
        equality, and a list value matches any of its members.
        """
        if len(query_embedding) != self.dim:
            raise StoreError(f"Query dimension {len(query_embedding)} does not match store dimension {self.dim}")
        sql = f"SELECT {_CHUNK_COLUMNS} FROM chunks"
        params: list[Any] = []
        source_filter = (filter or {}).get("source_id")
        if source_filter is not None:
            source_ids = _as_list(source_filter)
            sql += f" WHERE source_id IN ({','.join('?' for _ in source_ids)})"
            params.extend(source_ids)
        sql += " ORDER BY id"
        with _store_errors("similarity search"):
            rows = self.db.query(sql, params)

        candidates = self._same_dim([_to_chunk(row) for row in rows], "chunks")
        candidates = [chunk for chunk in candidates if _matches_filter(chunk, filter)]
        index = VectorIndex(dim=self.dim)
        index.add(list(range(len(candidates))), [chunk.embedding for chunk in candidates])
        results = index.search(query_embedding, top_k=top_k, threshold=similarity_threshold)
        return [SearchHit(chunk=candidates[int(result.key)], similarity=result.score) for result in results]

    # Rows --------------------------------------------------------------

    def insert_rows(self, source_id: str, rows: Sequence[Mapping[str, Any]]) -> int:
        records = [
            (source_id, index, orjson.dumps(dict(row), default=str).decode("utf-8"))
            for index, row in enumerate(rows)
        ]
        with _store_errors("insert rows", source_id):
            self.db.executemany(
                "INSERT INTO document_rows (source_id, row_index, row_data_json) VALUES (?, ?, ?)",
                records,
                batch_size=self.row_batch_size,
            )
        logger.info("Inserted %s rows for source %s", len(records), source_id, extra={"ctx_source_id": source_id})
        return len(records)

    def get_rows(self, source_id: str) -> list[Row]:
        with _store_errors("read rows", source_id):
            rows = self.db.query(
                "SELECT source_id, row_index, row_data_json FROM document_rows WHERE source_id = ? ORDER BY row_index",
                [source_id],
            )
        return [
            Row(source_id=row["source_id"], row_index=row["row_index"], row_data=orjson.loads(row["row_data_json"]))
            for row in rows
        ]

    # Memories ----------------------------------------------------------

    def insert_memory(self, memory: Memory) -> None:
        if len(memory.embedding) != self.dim:
            raise StoreError(f"Embedding dimension {len(memory.embedding)} does not match store dimension {self.dim}")
        with _store_errors("insert memory"):
            with self.db.transaction() as cursor:
                cursor.execute(
                    """
                    INSERT INTO memories (id, user_id, conversation_id, content, importance, embedding, dim, created_at, expires_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    [
                        memory.memory_id,
                        memory.user_id,
                        memory.conversation_id,
                        memory.content,
                        memory.importance,
                        pack_vector(memory.embedding),
                        self.dim,
                        to_ms(memory.created_at),
                        to_ms(memory.expires_at) if memory.expires_at else None,
                    ],
                )

    def search_memories(
        self,
        user_id: str,
        query_embedding: Sequence[float],
        top_k: int,
        similarity_threshold: float,
        now: datetime | None = None,
    ) -> list[MemoryHit]:
        """Similarity search over one user's memories that have not expired."""
        cutoff = to_ms(now or utc_now())
        with _store_errors("search memories"):
            rows = self.db.query(
                """
                SELECT id, user_id, conversation_id, content, importance, embedding, created_at, expires_at
                FROM memories
                WHERE user_id = ? AND (expires_at IS NULL OR expires_at > ?)
                ORDER BY created_at, id
                """,
                [user_id, cutoff],
            )
        memories = self._same_dim([_to_memory(row) for row in rows], "memories")
        index = VectorIndex(dim=self.dim)
        index.add(list(range(len(memories))), [memory.embedding for memory in memories])
        results = index.search(query_embedding, top_k=top_k, threshold=similarity_threshold)
        return [MemoryHit(memory=memories[int(result.key)], similarity=result.score) for result in results]

    def purge_expired_memories(self, now: datetime | None = None) -> int:
        cutoff = to_ms(now or utc_now())
        with _store_errors("purge memories"):
            with self.db.transaction() as cursor:
                cursor.execute("DELETE FROM memories WHERE expires_at IS NOT NULL AND expires_at <= ?", [cutoff])
                return cursor.rowcount

    def _same_dim(self, records: list[_Embedded], kind: str) -> list[_Embedded]:
        """Drop records embedded at another dimension, e.g. by a previous model."""
        kept = [record for record in records if len(record.embedding) == self.dim]
        if len(kept) != len(records):
            logger.warning(
                "Skipped %s stored %s whose dimension differs from %s",
                len(records) - len(kept),
                kind,
                self.dim,
            )
        return kept


@contextmanager
def _store_errors(operation: str, source_id: str | None = None) -> Iterator[None]:
    try:
        yield
    except sqlite3.Error as exc:
        logger.error("Store operation '%s' failed: %s", operation, exc, extra={"ctx_source_id": source_id})
        raise StoreError(f"Failed to {operation}: {exc}", source_id=source_id) from exc


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, (list, tuple, set, frozenset)):
        return list(value)
    return [value]


def _matches_filter(chunk: Chunk, filter: Mapping[str, Any] | None) -> bool:
    if not filter:
        return True
    for key, expected in filter.items():
        if key == "source_id":
            continue
        if chunk.metadata.get(key) not in _as_list(expected):
            return False
    return True


def _to_source(row: sqlite3.Row) -> Source:
    return Source(
        source_id=row["id"],
        title=row["title"],
        origin_url=row["origin_url"],
        mime_type=row["mime_type"],
        schema=orjson.loads(row["schema_json"]) if row["schema_json"] else None,
        created_at=from_ms(row["created_at"]),
        updated_at=from_ms(row["updated_at"]),
    )


def _to_chunk(row: sqlite3.Row) -> Chunk:
    return Chunk(
        id=row["id"],
        source_id=row["source_id"],
        chunk_index=row["chunk_index"],
        content=row["content"],
        embedding=unpack_vector(row["embedding"]),
        metadata=orjson.loads(row["meta_json"]) if row["meta_json"] else {},
        created_at=from_ms(row["created_at"]),
    )


def _to_memory(row: sqlite3.Row) -> Memory:
    return Memory(
        memory_id=row["id"],
        user_id=row["user_id"],
        conversation_id=row["conversation_id"],
        content=row["content"],
        importance=row["importance"],
        embedding=unpack_vector(row["embedding"]),
        created_at=from_ms(row["created_at"]),
        expires_at=from_ms(row["expires_at"]) if row["expires_at"] is not None else None,
    )


__all__ = ["VectorStoreGateway"]
