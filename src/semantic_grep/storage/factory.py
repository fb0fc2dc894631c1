"""Factory for creating vector store instances (Qdrant only)."""

from __future__ import annotations

import re
from typing import Dict, Optional

from ..core.errors import ConfigurationError
from .base import VectorStore
from .qdrant import QdrantVectorStore


def clean_collection_name(name: str) -> str:
    name = re.sub(r"[^a-zA-Z0-9_-]", "_", name)
    if name and not name[0].isalpha() and name[0] != "_":
        name = "_" + name
    return name or "semantic_grep"


def make_vector_store(cfg: Dict, collection_name: Optional[str] = None) -> VectorStore:
    vector_store_cfg = cfg.get("vector_store", {})
    backend = vector_store_cfg.get("backend", "qdrant")
    if backend != "qdrant":
        raise ConfigurationError(f"Unsupported vector store backend: {backend!r}")
    qdrant_cfg = vector_store_cfg.get("qdrant", {})
    name = clean_collection_name(collection_name or vector_store_cfg.get("collection", "semantic_grep"))

    return QdrantVectorStore(
        collection_name=name,
        host=qdrant_cfg.get("host", "localhost"),
        port=int(qdrant_cfg.get("port", 6333)),
        path=qdrant_cfg.get("path") or None,
        location=qdrant_cfg.get("location") or None,
    )
