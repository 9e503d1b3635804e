"""Repository-scoped code search for the engineer agent."""

from src.triage.knowledge.vector import (
    DEFAULT_NUM_RESULTS,
    CodeChunk,
    CodeSearchClient,
    VectorStoreError,
)

__all__ = [
    "CodeChunk",
    "CodeSearchClient",
    "DEFAULT_NUM_RESULTS",
    "VectorStoreError",
]
