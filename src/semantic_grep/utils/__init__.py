"""Utility functions for semantic-grep."""

from .file_utils import (
    repo_root,
    is_binary_file,
    read_source,
    relative_key,
)

__all__ = [
    "repo_root",
    "is_binary_file",
    "read_source",
    "relative_key",
]
