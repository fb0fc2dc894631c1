"""Lazy, cached loading of tree-sitter grammars."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from typing import Any, Callable, Dict, Optional, Set

import tree_sitter_language_pack
from tree_sitter import Parser

from .languages import get_language_spec

logger = logging.getLogger(__name__)


class GrammarRegistry:
    """Loads at most one grammar per language and shares it between callers.

    The first caller for an uncached grammar performs the load; callers that
    arrive while it is in flight wait on the same future instead of loading
    again. A failed load is logged and reported as "not found".
    """

    def __init__(self, loader: Optional[Callable[[str], Any]] = None) -> None:
        self._loader = loader or tree_sitter_language_pack.get_language
        self._lock = threading.Lock()
        self._languages: Dict[str, Any] = {}
        self._pending: Dict[str, Future] = {}
        self._failed: Set[str] = set()

    def supports(self, extension: str) -> bool:
        return get_language_spec(extension) is not None

    def get(self, extension: str) -> Optional[Any]:
        spec = get_language_spec(extension)
        if spec is None:
            return None
        name = spec.grammar

        with self._lock:
            if name in self._languages:
                return self._languages[name]
            if name in self._failed:
                return None
            future = self._pending.get(name)
            owner = future is None
            if owner:
                future = Future()
                self._pending[name] = future

        if not owner:
            return future.result()

        language = None
        try:
            language = self._loader(name)
            logger.debug(f"Loaded grammar '{name}' for .{spec.extension}")
        except Exception as e:
            logger.warning(f"Failed to load grammar '{name}': {e}")

        with self._lock:
            if language is None:
                self._failed.add(name)
            else:
                self._languages[name] = language
            del self._pending[name]
        future.set_result(language)
        return language

    def parser(self, extension: str) -> Optional[Parser]:
        """Return a fresh parser for ``extension``; parsers are not shared."""
        language = self.get(extension)
        if language is None:
            return None
        return Parser(language)

    def reset(self) -> None:
        """Forget failed loads so they are retried on the next request."""
        with self._lock:
            self._failed.clear()

    def clear(self) -> None:
        """Drop every cached grammar."""
        with self._lock:
            self._languages.clear()
            self._failed.clear()


_default_registry: Optional[GrammarRegistry] = None
_default_lock = threading.Lock()


def default_registry() -> GrammarRegistry:
    global _default_registry
    with _default_lock:
        if _default_registry is None:
            _default_registry = GrammarRegistry()
        return _default_registry
