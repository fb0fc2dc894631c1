"""Configuration management for semantic-grep."""

from __future__ import annotations

import copy
import hashlib
import json
import os
from pathlib import Path
from typing import Dict, List, Optional


DEFAULT_INCLUDE_PATTERNS: List[str] = [
    "*.ts", "*.tsx", "*.js", "*.jsx", "*.mjs", "*.cjs",
    "*.vue", "*.py", "*.go", "*.rs", "*.java", "*.css",
]

DEFAULT_EXCLUDE_PATTERNS: List[str] = [
    ".git/**",
    "node_modules/**",
    "dist/**",
    "build/**",
    "out/**",
    ".venv/**",
    "venv/**",
    "__pycache__/**",
    ".semantic-grep/**",
    "target/**",
    ".next/**",
    ".idea/**",
    ".vscode/**",
    "*.min.js",
    ".env",
    ".env.*",
]

DEFAULT_CONFIG: Dict = {
    "max_file_size_kb": 512,
    "chunk_token_budget": 1000,
    "chunk_workers": 4,
    "embedding": {
        "provider": "sentence_transformers",
        "model": "sentence-transformers/all-MiniLM-L6-v2",
        "batch_size": 10,
        "batch_delay_seconds": 0.1,
        "max_retries": 3,
        "preprocess_code": True,
        "ollama_url": "http://localhost:11434",
        "openai_base_url": "https://api.openai.com/v1",
        "rate_limit": {
            "requests_per_minute": 500,
            "tokens_per_minute": 1_000_000,
        },
    },
    "search": {
        "limit": 10,
        "min_similarity": 0.3,
        "hybrid": True,
        "expansion": {
            # "none", "ollama" or "openai"
            "provider": "none",
            "model": "",
            "max_synonyms": 3,
            "max_related_terms": 2,
            "temperature": 0.3,
            "timeout_seconds": 5,
        },
    },
    "vector_store": {
        "backend": "qdrant",
        "collection": "semantic_grep",
        "qdrant": {
            "host": "localhost",
            "port": 6333,
            # Local on-disk storage when set, e.g. ".semantic-grep/qdrant"
            "path": "",
            # ":memory:" for an in-process store
            "location": "",
        },
    },
}

# env var -> (config path, cast)
_ENV_OVERRIDES = {
    "QDRANT_HOST": (("vector_store", "qdrant", "host"), str),
    "QDRANT_PORT": (("vector_store", "qdrant", "port"), int),
    "QDRANT_PATH": (("vector_store", "qdrant", "path"), str),
    "QDRANT_LOCATION": (("vector_store", "qdrant", "location"), str),
    "SEMANTIC_GREP_COLLECTION": (("vector_store", "collection"), str),
    "EMBEDDING_PROVIDER": (("embedding", "provider"), str),
    "EMBEDDING_MODEL": (("embedding", "model"), str),
    "OLLAMA_URL": (("embedding", "ollama_url"), str),
    "OPENAI_BASE_URL": (("embedding", "openai_base_url"), str),
    "QUERY_EXPANSION_PROVIDER": (("search", "expansion", "provider"), str),
    "QUERY_EXPANSION_MODEL": (("search", "expansion", "model"), str),
}


def expand_pattern(pattern: str) -> List[str]:
    """Expand pattern to include both root and nested versions.

    Examples:
        '*.py' -> ['*.py', '**/*.py']
        'venv/**' -> ['venv/**', '**/venv/**']
    """
    pattern = pattern.strip()
    if not pattern or pattern.startswith("#"):
        return []

    if pattern.startswith("**/"):
        return [pattern]

    if pattern.startswith("*."):
        return [pattern, "**/" + pattern]

    if "/**" in pattern:
        return [pattern, "**/" + pattern]

    return [pattern]


def expand_patterns(patterns: List[str]) -> List[str]:
    """Expand and deduplicate patterns while preserving order."""
    out: List[str] = []
    seen: set = set()
    for p in patterns:
        for ep in expand_pattern(p):
            if ep not in seen:
                seen.add(ep)
                out.append(ep)
    return out


def _set_path(cfg: Dict, path, value) -> None:
    node = cfg
    for key in path[:-1]:
        node = node.setdefault(key, {})
    node[path[-1]] = value


def load_config(repo: Optional[Path] = None, overrides: Optional[Dict] = None) -> Dict:
    """Load configuration.

    Starts from a deep copy of ``DEFAULT_CONFIG``, applies environment
    overrides, then ``overrides`` (nested dicts are merged), and expands the
    include/exclude patterns.
    """
    config = copy.deepcopy(DEFAULT_CONFIG)

    for env_name, (path, cast) in _ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value:
            _set_path(config, path, cast(value))

    if overrides:
        _merge(config, overrides)

    if repo is not None:
        config["repo"] = str(repo)
    config["include_globs"] = expand_patterns(config.get("include_patterns", DEFAULT_INCLUDE_PATTERNS))
    config["exclude_globs"] = expand_patterns(config.get("exclude_patterns", DEFAULT_EXCLUDE_PATTERNS))

    return config


def _merge(base: Dict, extra: Dict) -> None:
    for key, value in extra.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = value


def cfg_fingerprint(cfg: Dict) -> str:
    """Generate fingerprint hash for config."""
    payload = json.dumps(cfg, sort_keys=True, ensure_ascii=False).encode("utf-8")
    return hashlib.sha256(payload).hexdigest()
