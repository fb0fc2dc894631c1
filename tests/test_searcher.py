"""Tests for query-time search."""

from unittest.mock import MagicMock

import pytest

from semantic_grep.core.errors import SemanticGrepError
from semantic_grep.core.models import ChunkType
from semantic_grep.core.pipeline import EmbeddingPipeline
from semantic_grep.search import QueryExpander, Searcher, format_hit
from semantic_grep.search.expansion import ExpansionResult
from semantic_grep.search.searcher import NOT_READY_MESSAGE

from conftest import make_chunk


@pytest.fixture
def indexed_store(store, provider):
    chunks = [
        make_chunk("src/config.py", 1, "def load_config(path):\n    return read_json(path)"),
        make_chunk("src/render.py", 1, "def render_page(title):\n    return template(title)"),
        make_chunk("src/render.py", 4, "class PageCache:\n    entries = {}", chunk_type=ChunkType.CLASS),
        make_chunk("src/net.py", 1, "import socket\nimport ssl", chunk_type=ChunkType.IMPORT),
    ]
    outcome = EmbeddingPipeline(provider, batch_delay=0).generate(chunks)
    store.insert(outcome.embedded)
    return store


def test_empty_query(store, provider):
    summary = Searcher(provider, store).search("   ")
    assert summary.error
    assert summary.results == []
    assert provider.batches == []


def test_not_ready(store, provider):
    summary = Searcher(provider, store).search("load config")
    assert not summary.index_ready
    assert summary.error == NOT_READY_MESSAGE
    assert summary.results == []


def test_finds_best_match(indexed_store, provider):
    summary = Searcher(provider, indexed_store, min_similarity=0.0).search("load config", limit=3)
    assert summary.error is None
    assert summary.index_ready
    assert summary.results[0].chunk.file_path == "src/config.py"
    assert summary.total_results == len(summary.results) <= 3
    scores = [r.normalized_score for r in summary.results]
    assert all(0.0 <= s <= 100.0 for s in scores)
    assert max(scores) == pytest.approx(100.0)


def test_vector_only(indexed_store, provider):
    summary = Searcher(provider, indexed_store, min_similarity=0.0).search("render page", hybrid=False)
    assert summary.results[0].chunk.file_path == "src/render.py"
    assert all(r.fusion_score is None for r in summary.results)


def test_chunk_type_filter(indexed_store, provider):
    summary = Searcher(provider, indexed_store, min_similarity=0.0).search(
        "page cache", chunk_types=[ChunkType.CLASS]
    )
    assert [r.chunk.type for r in summary.results] == [ChunkType.CLASS]


def test_store_errors_are_reported(provider):
    store = MagicMock()
    store.is_ready.return_value = True
    store.hybrid_search.side_effect = SemanticGrepError("backend down")
    summary = Searcher(provider, store).search("anything")
    assert summary.error == "backend down"
    assert summary.results == []


def test_format_hit(indexed_store, provider):
    result = Searcher(provider, indexed_store, min_similarity=0.0).search("load config").results[0]
    text = format_hit(result)
    assert "src/config.py:1-2" in text
    assert "[function]" in text


def test_backend_failures_are_reported(provider):
    store = MagicMock()
    store.is_ready.side_effect = ConnectionError("qdrant is down")
    summary = Searcher(provider, store).search("anything")
    assert "qdrant is down" in summary.error
    assert summary.results == []

    store.is_ready.side_effect = None
    store.is_ready.return_value = True
    store.hybrid_search.side_effect = RuntimeError("timeout")
    summary = Searcher(provider, store).search("anything")
    assert "timeout" in summary.error


def test_expansion_only_changes_embedded_text(provider):
    store = MagicMock()
    store.is_ready.return_value = True
    store.hybrid_search.return_value = []
    expander = QueryExpander(MagicMock())
    expander.provider.expand.return_value = ExpansionResult("load config", ["read settings"])
    provider.embed = MagicMock(return_value=[1.0])

    summary = Searcher(provider, store, expander=expander).search("load config")
    provider.embed.assert_called_once_with("load config read settings", is_query=True)
    assert store.hybrid_search.call_args.args[0] == "load config"
    assert summary.query == "load config"
    assert summary.expanded_query == "load config read settings"

    provider.embed.reset_mock()
    summary = Searcher(provider, store, expander=expander).search("load config", expand=False)
    provider.embed.assert_called_once_with("load config", is_query=True)
    assert summary.expanded_query is None
