"""Abstract vector storage interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional

from ..core.models import IndexStats, SearchResult, SourceChunk


class VectorStore(ABC):
    """Abstract base class for vector storage backends.

    All vectors in one store share a dimensionality, fixed by the first insert.
    Searching a store that is empty or was never created raises
    ``IndexNotReadyError`` instead of returning no results.
    """

    @abstractmethod
    def insert(self, chunks: List[SourceChunk]) -> int:
        """Store chunks that carry a non-empty vector; returns how many were stored."""

    @abstractmethod
    def check_dimensions(self, chunks: List[SourceChunk]) -> None:
        """Raise ``SchemaMismatchError`` when ``chunks`` could not be inserted as they are."""

    @abstractmethod
    def vector_search(
        self, query_vector: List[float], limit: int, min_similarity: float = 0.0
    ) -> List[SearchResult]:
        """Nearest chunks by vector similarity, best first."""

    @abstractmethod
    def hybrid_search(
        self,
        query_text: str,
        query_vector: List[float],
        limit: int,
        min_similarity: float = 0.0,
    ) -> List[SearchResult]:
        """Vector and lexical rankings fused with reciprocal rank fusion."""

    @abstractmethod
    def delete_file(self, file_path: str) -> int:
        """Remove every chunk of ``file_path``; returns how many were removed."""

    @abstractmethod
    def clear(self) -> None:
        """Drop all records, including the stored dimensionality."""

    @abstractmethod
    def count(self) -> int:
        """Number of stored chunks (0 when the collection does not exist)."""

    @abstractmethod
    def stats(self) -> IndexStats:
        pass

    @property
    @abstractmethod
    def dimension(self) -> Optional[int]:
        """Vector dimensionality of the store, None before the first insert."""

    def is_ready(self) -> bool:
        return self.count() > 0
