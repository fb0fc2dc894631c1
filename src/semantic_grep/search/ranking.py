"""Scoring helpers: distance mapping, rank fusion, lexical scoring, reranking."""

from __future__ import annotations

import math
import re
from collections import Counter
from typing import Dict, Iterable, List, Sequence, Set

import numpy as np

from ..core.models import ChunkType, SearchResult

RRF_K = 60
MIN_SCORE_RANGE = 1e-6

SEMANTIC_WEIGHT = 0.5
TOKEN_OVERLAP_WEIGHT = 0.3
PATH_MATCH_WEIGHT = 0.1
TYPE_PRIORITY_WEIGHT = 0.1

TYPE_PRIORITY: Dict[ChunkType, float] = {
    ChunkType.FUNCTION: 1.0,
    ChunkType.METHOD: 0.95,
    ChunkType.COMPONENT: 0.85,
    ChunkType.CLASS: 0.8,
    ChunkType.LIFECYCLE: 0.8,
    ChunkType.INTERFACE: 0.75,
    ChunkType.JSX: 0.75,
    ChunkType.TYPE: 0.7,
    ChunkType.NAMESPACE: 0.7,
    ChunkType.TEMPLATE: 0.7,
    ChunkType.DATA: 0.7,
    ChunkType.COMPUTED: 0.7,
    ChunkType.WATCH: 0.7,
    ChunkType.VARIABLE: 0.5,
    ChunkType.SCRIPT: 0.6,
    ChunkType.CSS: 0.5,
    ChunkType.UNKNOWN: 0.4,
    ChunkType.BLOCK: 0.3,
    ChunkType.IMPORT: 0.2,
    ChunkType.EXPORT: 0.2,
}
DEFAULT_TYPE_PRIORITY = 0.5

_CAMEL = re.compile(r"([a-z])([A-Z])")
_PASCAL = re.compile(r"([A-Z]+)([A-Z][a-z])")
_SEPARATORS = re.compile(r"[_\-./\\]")
_NON_WORD = re.compile(r"[^a-z0-9]+")


def similarity_from_squared_distance(distance_sq: float) -> float:
    """Map squared L2 distance between unit vectors to a [0, 1] similarity."""
    return min(1.0, max(0.0, 1.0 - distance_sq / 2.0))


def squared_distance(a: Sequence[float], b: Sequence[float]) -> float:
    diff = np.asarray(a, dtype=np.float64) - np.asarray(b, dtype=np.float64)
    return float(diff @ diff)


def tokenize_code(text: str) -> List[str]:
    """Lowercase word tokens with camelCase, snake_case and paths split apart."""
    text = _CAMEL.sub(r"\1 \2", text)
    text = _PASCAL.sub(r"\1 \2", text)
    text = _SEPARATORS.sub(" ", text).lower()
    return [t for t in _NON_WORD.split(text) if len(t) > 1]


def reciprocal_rank_fusion(rankings: Iterable[Sequence[str]], k: int = RRF_K) -> Dict[str, float]:
    """RRF score = sum(1 / (k + rank)) over every ranking an id appears in."""
    scores: Dict[str, float] = {}
    for ranking in rankings:
        for rank, item_id in enumerate(ranking, 1):
            scores[item_id] = scores.get(item_id, 0.0) + 1.0 / (k + rank)
    return scores


def bm25_rank(query: str, documents: Dict[str, str], k1: float = 1.5, b: float = 0.75) -> List[str]:
    """Rank document ids by BM25 against the query; ids with no matching term are dropped."""
    query_terms = set(tokenize_code(query))
    if not query_terms or not documents:
        return []

    tokenized = {doc_id: tokenize_code(text) for doc_id, text in documents.items()}
    n_docs = len(tokenized)
    avg_len = sum(len(t) for t in tokenized.values()) / n_docs or 1.0
    doc_freq: Counter = Counter()
    for tokens in tokenized.values():
        doc_freq.update(query_terms.intersection(tokens))

    scores: Dict[str, float] = {}
    for doc_id, tokens in tokenized.items():
        tf = Counter(tokens)
        score = 0.0
        for term in query_terms:
            if not tf[term]:
                continue
            idf = math.log(1 + (n_docs - doc_freq[term] + 0.5) / (doc_freq[term] + 0.5))
            norm = tf[term] * (k1 + 1) / (tf[term] + k1 * (1 - b + b * len(tokens) / avg_len))
            score += idf * norm
        if score > 0:
            scores[doc_id] = score
    return sorted(scores, key=lambda d: scores[d], reverse=True)


def _token_overlap(query_tokens: Set[str], text_tokens: Set[str]) -> float:
    if not query_tokens:
        return 0.0
    hits = sum(1 for q in query_tokens if any(q in t or t in q for t in text_tokens))
    return hits / len(query_tokens)


def _path_match(query_tokens: Set[str], file_path: str) -> float:
    path_tokens = tokenize_code(file_path)
    return 1.0 if any(q in p for q in query_tokens for p in path_tokens) else 0.0


def rerank(results: List[SearchResult], query: str) -> List[SearchResult]:
    """Blend semantic similarity with lexical signals and sort descending.

    score = 0.5 * similarity + 0.3 * token overlap + 0.1 * path match + 0.1 * type priority
    """
    query_tokens = set(tokenize_code(query))
    for result in results:
        chunk = result.chunk
        overlap = _token_overlap(query_tokens, set(tokenize_code(chunk.text)))
        result.rerank_score = (
            SEMANTIC_WEIGHT * result.similarity
            + TOKEN_OVERLAP_WEIGHT * overlap
            + PATH_MATCH_WEIGHT * _path_match(query_tokens, chunk.file_path)
            + TYPE_PRIORITY_WEIGHT * TYPE_PRIORITY.get(chunk.type, DEFAULT_TYPE_PRIORITY)
        )
    return sorted(results, key=lambda r: r.rerank_score, reverse=True)


def normalize_for_display(results: List[SearchResult]) -> List[SearchResult]:
    """Min-max rescale similarity to 0-100 in place; order is unchanged."""
    if not results:
        return results
    low = min(r.similarity for r in results)
    high = max(r.similarity for r in results)
    span = high - low
    for result in results:
        if span < MIN_SCORE_RANGE:
            result.normalized_score = 50.0
        else:
            result.normalized_score = (result.similarity - low) / span * 100.0
    return results
