"""Search functionality for semantic-grep."""

from .expansion import QueryExpander, make_expansion_provider
from .ranking import normalize_for_display, reciprocal_rank_fusion, rerank
from .searcher import Searcher, format_hit

__all__ = [
    "QueryExpander",
    "make_expansion_provider",
    "normalize_for_display",
    "reciprocal_rank_fusion",
    "rerank",
    "Searcher",
    "format_hit",
]
