"""Tests for the grammar registry."""

import threading
import time

from tree_sitter import Parser

from semantic_grep.core.grammars import GrammarRegistry


class CountingLoader:
    def __init__(self, fail=False, delay=0.0):
        self.fail = fail
        self.delay = delay
        self.calls = []
        self._lock = threading.Lock()

    def __call__(self, name):
        with self._lock:
            self.calls.append(name)
        time.sleep(self.delay)
        if self.fail:
            raise RuntimeError(f"no grammar {name}")
        return object()


def test_concurrent_requests_load_once():
    loader = CountingLoader(delay=0.05)
    registry = GrammarRegistry(loader=loader)
    results = []

    def worker():
        results.append(registry.get("ts"))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert loader.calls == ["typescript"]
    assert len(results) == 8
    assert all(r is results[0] for r in results)


def test_extensions_sharing_a_grammar_share_the_load():
    loader = CountingLoader()
    registry = GrammarRegistry(loader=loader)
    assert registry.get("js") is registry.get(".jsx")
    assert loader.calls == ["javascript"]


def test_failed_load_returns_none_and_is_cached():
    loader = CountingLoader(fail=True)
    registry = GrammarRegistry(loader=loader)
    assert registry.get("py") is None
    assert registry.get("py") is None
    assert loader.calls == ["python"]

    registry.reset()
    assert registry.get("py") is None
    assert loader.calls == ["python", "python"]


def test_unknown_extension():
    loader = CountingLoader()
    registry = GrammarRegistry(loader=loader)
    assert not registry.supports("txt")
    assert registry.get("txt") is None
    assert registry.parser("txt") is None
    assert loader.calls == []


def test_clear_drops_cached_grammars():
    loader = CountingLoader()
    registry = GrammarRegistry(loader=loader)
    registry.get("go")
    registry.clear()
    registry.get("go")
    assert loader.calls == ["go", "go"]


def test_parser_from_real_grammar():
    registry = GrammarRegistry()
    parser = registry.parser("py")
    assert isinstance(parser, Parser)
    tree = parser.parse(b"def f():\n    return 1\n")
    assert tree.root_node.children[0].type == "function_definition"
    assert registry.parser("py") is not parser
