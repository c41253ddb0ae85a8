"""Retrieval components."""

from .vector_index import VectorIndex
from .tool import NOTHING_FOUND, RETRIEVAL_TOOL, RetrievalTool, ToolDescriptor

__all__ = [
    "VectorIndex",
    "RetrievalTool",
    "RETRIEVAL_TOOL",
    "ToolDescriptor",
    "NOTHING_FOUND",
]
