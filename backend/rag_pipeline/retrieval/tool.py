"""Retrieval tool exposed to an LLM agent."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Mapping, Sequence

from rag_pipeline.core.config import Settings
from rag_pipeline.core.errors import PipelineError
from rag_pipeline.core.logging import get_logger
from rag_pipeline.core.metrics import RETRIEVAL_RESULTS
from rag_pipeline.ingest.embeddings import Embedder
from rag_pipeline.models.entities import SearchHit

if TYPE_CHECKING:
    from rag_pipeline.db.gateway import VectorStoreGateway

logger = get_logger(__name__)

NOTHING_FOUND = "No relevant documents found in the knowledge base."


class RetrievalTool:
    """Embed a query, search the store and format the hits for an LLM.

    Never mutates the store. Failures and empty results both produce
    :data:`NOTHING_FOUND` so a caller always receives some text.
    """

    def __init__(self, gateway: VectorStoreGateway, embedder: Embedder, settings: Settings) -> None:
        self.gateway = gateway
        self.embedder = embedder
        self.default_top_k = settings.retrieval_top_k
        self.default_threshold = settings.similarity_threshold

    def search(
        self,
        query: str,
        top_k: int | None = None,
        similarity_threshold: float | None = None,
        filter: Mapping[str, Any] | None = None,
    ) -> list[SearchHit]:
        """Raw hits, best first; raises on embedding or store failure."""
        k = self.default_top_k if top_k is None else top_k
        threshold = self.default_threshold if similarity_threshold is None else similarity_threshold
        embedding = self.embedder.embed_one(query)
        return self.gateway.similarity_search(embedding, top_k=k, similarity_threshold=threshold, filter=filter)

    def retrieve(
        self,
        query: str,
        top_k: int | None = None,
        similarity_threshold: float | None = None,
        filter: Mapping[str, Any] | None = None,
    ) -> str:
        logger.info("Executing retrieval", extra={"ctx_top_k": top_k, "ctx_threshold": similarity_threshold})
        try:
            hits = self.search(query, top_k=top_k, similarity_threshold=similarity_threshold, filter=filter)
        except PipelineError as exc:
            logger.error("Retrieval failed: %s", exc, exc_info=True)
            RETRIEVAL_RESULTS.observe(0)
            return NOTHING_FOUND
        RETRIEVAL_RESULTS.observe(len(hits))
        logger.info(
            "Retrieval completed",
            extra={
                "ctx_results": len(hits),
                "ctx_top_similarity": hits[0].similarity if hits else 0.0,
            },
        )
        return format_hits(hits)


def format_hits(hits: Sequence[SearchHit]) -> str:
    if not hits:
        return NOTHING_FOUND
    blocks = []
    for position, hit in enumerate(hits, start=1):
        metadata = hit.chunk.metadata
        title = metadata.get("title") or metadata.get("filename") or metadata.get("source") or "Unknown"
        blocks.append(
            f"Document {position} ({title}, relevance: {hit.similarity * 100:.1f}%):\n{hit.chunk.content.strip()}"
        )
    return f"Found {len(hits)} relevant document(s):\n\n" + "\n\n---\n\n".join(blocks)


@dataclass(frozen=True)
class ToolDescriptor:
    """Name, description and JSON schema an agent framework needs to offer a tool."""

    name: str
    description: str
    input_schema: dict[str, Any] = field(default_factory=dict)

    def bind(self, tool: RetrievalTool) -> Callable[..., str]:
        """Return a callable accepting the schema's arguments as keywords."""

        def call(query: str, top_k: int | None = None, threshold: float | None = None, **_: Any) -> str:
            return tool.retrieve(query, top_k=top_k, similarity_threshold=threshold)

        call.__name__ = self.name
        call.__doc__ = self.description
        return call

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "description": self.description, "input_schema": self.input_schema}


RETRIEVAL_TOOL = ToolDescriptor(
    name="retrieve_relevant_documents",
    description=(
        "Retrieve relevant document chunks based on the query. Use this to search through "
        "uploaded documents, files and knowledge base content."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "query": {"type": "string", "description": "The search query or question"},
            "top_k": {
                "type": "integer",
                "description": "Number of top results to return (default: 4)",
                "default": 4,
            },
            "threshold": {
                "type": "number",
                "description": "Minimum similarity threshold 0-1 (default: 0.7)",
                "default": 0.7,
            },
        },
        "required": ["query"],
    },
)


__all__ = ["RetrievalTool", "RETRIEVAL_TOOL", "ToolDescriptor", "NOTHING_FOUND", "format_hits"]
