"""Wiring of provider, store, indexer and searcher from one config."""

from __future__ import annotations

import dataclasses
import logging
from pathlib import Path
from typing import Dict, Optional

from .config import cfg_fingerprint
from .core.chunking import DEFAULT_TOKEN_BUDGET
from .core.embeddings import EmbeddingProvider, make_provider
from .core.pipeline import EmbeddingPipeline
from .indexing import Indexer
from .search import QueryExpander, Searcher, make_expansion_provider
from .storage import VectorStore, make_vector_store

logger = logging.getLogger(__name__)


@dataclasses.dataclass
class Services:
    config: Dict
    root: Path
    provider: EmbeddingProvider
    store: VectorStore
    indexer: Indexer
    searcher: Searcher


def build_services(cfg: Dict, root: Optional[Path] = None, provider: Optional[EmbeddingProvider] = None,
                   store: Optional[VectorStore] = None) -> Services:
    """Build every component around a single provider and store.

    Raises:
        ConfigurationError: If the embedding or expansion provider is unknown
    """
    root = Path(root or cfg.get("repo") or ".").resolve()
    provider = provider or make_provider(cfg)
    store = store or make_vector_store(cfg)
    emb_cfg = cfg.get("embedding", {})
    search_cfg = cfg.get("search", {})

    pipeline = EmbeddingPipeline(
        provider,
        batch_size=int(emb_cfg.get("batch_size", 10)),
        batch_delay=float(emb_cfg.get("batch_delay_seconds", 0.1)),
        max_retries=int(emb_cfg.get("max_retries", 3)),
    )
    indexer = Indexer(
        pipeline,
        store,
        token_budget=int(cfg.get("chunk_token_budget", DEFAULT_TOKEN_BUDGET)),
        max_workers=int(cfg.get("chunk_workers", 4)),
        root=root,
        fingerprint=cfg_fingerprint(emb_cfg),
    )
    exp_cfg = search_cfg.get("expansion", {})
    expander = None
    expansion_provider = make_expansion_provider(cfg)
    if expansion_provider is not None:
        expander = QueryExpander(
            expansion_provider,
            max_synonyms=int(exp_cfg.get("max_synonyms", 3)),
            max_related=int(exp_cfg.get("max_related_terms", 2)),
        )
        logger.info(f"Query expansion via {expansion_provider.provider_name}/{expansion_provider.model}")
    searcher = Searcher(
        provider,
        store,
        default_limit=int(search_cfg.get("limit", 10)),
        min_similarity=float(search_cfg.get("min_similarity", 0.3)),
        hybrid=bool(search_cfg.get("hybrid", True)),
        expander=expander,
    )
    logger.info(f"Using {provider.provider_name}/{provider.model} with root {root}")
    return Services(cfg, root, provider, store, indexer, searcher)
