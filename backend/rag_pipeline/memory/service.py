"""Long-term per-user memory for agent conversations."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Mapping, Sequence

from rag_pipeline.core.config import Settings
from rag_pipeline.core.errors import PipelineError
from rag_pipeline.core.logging import get_logger
from rag_pipeline.db.gateway import VectorStoreGateway
from rag_pipeline.ingest.embeddings import Embedder
from rag_pipeline.models.entities import Memory
from rag_pipeline.utils.ids import new_id
from rag_pipeline.utils.time import utc_now

logger = get_logger(__name__)

NO_MEMORIES = "No relevant memories found."
MEMORY_KEYWORDS = ("my", "i am", "i like", "i prefer", "remember", "favorite")
EXTRACTED_IMPORTANCE = 0.6


class MemoryService:
    """Store and recall short facts about a user, ranked by semantic similarity.

    Memories expire ``memory_retention_days`` after creation (never when the
    setting is 0); expired memories are excluded from search and removed by
    :meth:`purge_expired`.
    """

    def __init__(self, gateway: VectorStoreGateway, embedder: Embedder, settings: Settings) -> None:
        self.gateway = gateway
        self.embedder = embedder
        self.retention_days = settings.memory_retention_days
        self.top_k = settings.memory_top_k
        self.threshold = settings.similarity_threshold

    def add(
        self,
        user_id: str,
        content: str,
        conversation_id: str | None = None,
        importance: float = 0.5,
        now: datetime | None = None,
    ) -> str:
        """Embed and store one memory; returns its id.

        Raises:
            EmbeddingError, StoreError: the memory was not stored.
            ValueError: ``importance`` is outside ``[0, 1]``.
        """
        created_at = now or utc_now()
        expires_at = created_at + timedelta(days=self.retention_days) if self.retention_days > 0 else None
        memory = Memory(
            memory_id=new_id("mem"),
            user_id=user_id,
            conversation_id=conversation_id,
            content=content,
            importance=importance,
            embedding=self.embedder.embed_one(content),
            created_at=created_at,
            expires_at=expires_at,
        )
        self.gateway.insert_memory(memory)
        logger.info(
            "Memory stored",
            extra={"ctx_memory_id": memory.memory_id, "ctx_user_id": user_id, "ctx_importance": importance},
        )
        return memory.memory_id

    def search(
        self,
        user_id: str,
        query: str,
        top_k: int | None = None,
        threshold: float | None = None,
    ) -> list[Memory]:
        """Unexpired memories of ``user_id`` most similar to ``query``; empty on failure."""
        try:
            embedding = self.embedder.embed_one(query)
            hits = self.gateway.search_memories(
                user_id,
                embedding,
                top_k=self.top_k if top_k is None else top_k,
                similarity_threshold=self.threshold if threshold is None else threshold,
            )
        except PipelineError as exc:
            logger.error("Failed to search memories: %s", exc, extra={"ctx_user_id": user_id})
            return []
        logger.info("Memory search completed", extra={"ctx_user_id": user_id, "ctx_results": len(hits)})
        return [hit.memory for hit in hits]

    def extract_and_store(
        self,
        user_id: str,
        conversation_id: str | None,
        messages: Sequence[Mapping[str, str]],
    ) -> list[str]:
        """Keep user messages that look like personal facts or preferences.

        A message qualifies when it is longer than 10 characters and
        contains one of :data:`MEMORY_KEYWORDS`. Returns the ids stored;
        a failure on one message is logged and the rest still run.
        """
        stored: list[str] = []
        for message in messages:
            if message.get("role") != "user":
                continue
            content = message.get("content") or ""
            if len(content) <= 10 or not any(keyword in content.lower() for keyword in MEMORY_KEYWORDS):
                continue
            try:
                stored.append(
                    self.add(user_id, content, conversation_id=conversation_id, importance=EXTRACTED_IMPORTANCE)
                )
            except PipelineError as exc:
                logger.error("Failed to store conversation memory: %s", exc, extra={"ctx_user_id": user_id})
        return stored

    def purge_expired(self, now: datetime | None = None) -> int:
        removed = self.gateway.purge_expired_memories(now=now)
        logger.info("Purged %s expired memories", removed)
        return removed


def format_memories(memories: Sequence[Memory], now: datetime | None = None) -> str:
    if not memories:
        return NO_MEMORIES
    reference = now or utc_now()
    blocks = []
    for position, memory in enumerate(memories, start=1):
        age_days = (reference - memory.created_at).days
        blocks.append(
            f"Memory {position} ({age_days} days ago, importance: {memory.importance * 100:.0f}%):\n{memory.content}"
        )
    return "Relevant memories:\n\n" + "\n\n".join(blocks)


__all__ = ["MemoryService", "format_memories", "NO_MEMORIES", "MEMORY_KEYWORDS"]
