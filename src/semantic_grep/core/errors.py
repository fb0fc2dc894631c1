"""Exception hierarchy for semantic-grep."""

from __future__ import annotations


class SemanticGrepError(Exception):
    """Base class for all semantic-grep errors."""


class ConfigurationError(SemanticGrepError):
    """Invalid or missing configuration (unknown provider, model, backend)."""


class ParseError(SemanticGrepError):
    """A file could not be parsed with its grammar."""


class ProviderUnavailableError(SemanticGrepError):
    """The embedding provider is unreachable or the model is not available."""


class EmbeddingError(SemanticGrepError):
    """An embedding request failed for a batch or a single item."""


class SchemaMismatchError(SemanticGrepError):
    """Vectors do not match the dimensionality of the existing collection."""

    def __init__(self, expected: int, actual: int, collection_name: str = "") -> None:
        super().__init__(
            f"Collection '{collection_name}' stores {expected}-dimensional vectors, "
            f"got {actual}. Clear the index and re-index with the new model."
        )
        self.expected = expected
        self.actual = actual


class IndexNotReadyError(SemanticGrepError):
    """The index is empty or has not been created yet."""
