"""Indexing functionality for semantic-grep."""

from .indexer import Indexer, iter_files

__all__ = [
    "Indexer",
    "iter_files",
]
