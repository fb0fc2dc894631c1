"""Semantic search over an indexed collection."""

from __future__ import annotations

import logging
import time
from typing import List, Optional, Sequence

from ..core.embeddings import EmbeddingProvider
from ..core.errors import IndexNotReadyError, SemanticGrepError
from ..core.models import ChunkType, SearchResult, SearchSummary
from ..storage.base import VectorStore
from .expansion import QueryExpander
from .ranking import normalize_for_display, rerank

logger = logging.getLogger(__name__)

NOT_READY_MESSAGE = "Index is empty or not built yet. Please run indexing first."


class Searcher:
    """Embeds a query, retrieves candidates and reranks them for display.

    With a query expander, only the embedded text is expanded; the lexical
    leg and the reranker see the query as typed.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        store: VectorStore,
        default_limit: int = 10,
        min_similarity: float = 0.3,
        hybrid: bool = True,
        expander: Optional[QueryExpander] = None,
    ) -> None:
        self.provider = provider
        self.store = store
        self.default_limit = default_limit
        self.min_similarity = min_similarity
        self.hybrid = hybrid
        self.expander = expander

    def search(
        self,
        query: str,
        limit: Optional[int] = None,
        min_similarity: Optional[float] = None,
        chunk_types: Optional[Sequence[ChunkType]] = None,
        hybrid: Optional[bool] = None,
        expand: Optional[bool] = None,
    ) -> SearchSummary:
        started = time.perf_counter()
        query = (query or "").strip()
        limit = limit or self.default_limit
        min_similarity = self.min_similarity if min_similarity is None else min_similarity
        hybrid = self.hybrid if hybrid is None else hybrid
        expanded: Optional[str] = None

        def summary(results: List[SearchResult], error: Optional[str] = None, ready: bool = True) -> SearchSummary:
            elapsed = (time.perf_counter() - started) * 1000.0
            return SearchSummary(query, results, len(results), elapsed, error, index_ready=ready,
                                 expanded_query=expanded)

        if not query:
            return summary([], "Query must not be empty")

        try:
            if not self.store.is_ready():
                logger.info(f"Search for {query!r} skipped: index not ready")
                return summary([], NOT_READY_MESSAGE, ready=False)

            embed_text = query
            if self.expander is not None and expand is not False:
                embed_text = self.expander.expand(query)
                if embed_text != query:
                    expanded = embed_text
            query_vector = self.provider.embed(embed_text, is_query=True)
            # over-fetch when filtering by type so the filter does not starve the result list
            fetch = limit * 3 if chunk_types else limit
            if hybrid:
                results = self.store.hybrid_search(query, query_vector, fetch, min_similarity)
            else:
                results = self.store.vector_search(query_vector, fetch, min_similarity)
        except IndexNotReadyError:
            return summary([], NOT_READY_MESSAGE, ready=False)
        except SemanticGrepError as e:
            logger.error(f"Search for {query!r} failed: {e}")
            return summary([], str(e))
        except Exception as e:
            logger.exception(f"Search for {query!r} failed with an unexpected backend error")
            return summary([], f"Search failed: {e}")

        if chunk_types:
            wanted = {ChunkType(t) for t in chunk_types}
            results = [r for r in results if r.chunk.type in wanted]

        results = normalize_for_display(rerank(results, query)[:limit])
        logger.info(f"Search for {query!r} returned {len(results)} results")
        return summary(results)


def format_hit(result: SearchResult, max_chars: int = 1200) -> str:
    chunk = result.chunk
    snippet = chunk.text
    if len(snippet) > max_chars:
        snippet = snippet[:max_chars] + "\n...(truncated)...\n"
    score = result.normalized_score if result.normalized_score is not None else result.similarity * 100
    header = f"{score:5.1f}  {chunk.file_path}:{chunk.start_line}-{chunk.end_line}  [{chunk.type.value}]"
    return header + "\n" + snippet.rstrip() + "\n"
