"""Core functionality for semantic-grep."""

from .models import ChunkResult, ChunkType, SearchResult, SourceChunk
from .chunking import AstChunker, Chunker, LineChunker, chunk_files, chunk_source, count_tokens
from .grammars import GrammarRegistry, default_registry
from .embeddings import EmbeddingProvider, make_provider, normalize_vector
from .pipeline import EmbeddingPipeline

__all__ = [
    "ChunkResult",
    "ChunkType",
    "SearchResult",
    "SourceChunk",
    "AstChunker",
    "Chunker",
    "LineChunker",
    "chunk_files",
    "chunk_source",
    "count_tokens",
    "GrammarRegistry",
    "default_registry",
    "EmbeddingProvider",
    "make_provider",
    "normalize_vector",
    "EmbeddingPipeline",
]
