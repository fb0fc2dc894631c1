"""Vector storage backends (Qdrant only)."""

from .base import VectorStore
from .qdrant import QdrantVectorStore
from .factory import make_vector_store

__all__ = [
    "VectorStore",
    "QdrantVectorStore",
    "make_vector_store",
]
