"""Shared application state for the HTTP layer."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from fastapi import HTTPException

from ..config import load_config
from ..core.errors import ConfigurationError
from ..services import Services, build_services
from ..utils import repo_root


@lru_cache(maxsize=1)
def _services() -> Services:
    root = repo_root(Path(os.getenv("SEMANTIC_GREP_ROOT", ".")))
    return build_services(load_config(root), root=root)


def get_services() -> Services:
    try:
        return _services()
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))
