"""Tests for the indexing flow."""

from unittest.mock import MagicMock, call

import pytest

from semantic_grep.config import load_config
from semantic_grep.core.errors import EmbeddingError, ProviderUnavailableError, SchemaMismatchError
from semantic_grep.core.pipeline import EmbeddingOutcome, EmbeddingPipeline
from semantic_grep.indexing import Indexer, iter_files

from conftest import FakeProvider, make_chunk


def _indexer(provider, store, root):
    pipeline = EmbeddingPipeline(provider, batch_delay=0, sleep=lambda s: None)
    return Indexer(pipeline, store, root=root)


def test_iter_files_applies_patterns(sample_repo):
    files = [p.relative_to(sample_repo).as_posix() for p in iter_files(sample_repo, load_config(sample_repo))]
    assert files == ["src/config.py", "src/render.ts"]


def test_index_files(sample_repo, provider, store):
    progress = []
    indexer = _indexer(provider, store, sample_repo)
    result = indexer.index_files(list(iter_files(sample_repo, load_config(sample_repo))), on_progress=progress.append)

    assert result.success
    assert result.total_files == 2
    assert result.total_chunks > 0
    assert result.successful_chunks == result.total_chunks == store.count()
    assert result.failed_chunks == 0
    assert store.file_paths() == {"src/config.py", "src/render.ts"}

    phases = [p.phase for p in progress]
    assert phases[0] == "scanning"
    assert {"chunking", "embedding", "storing"} <= set(phases)
    assert progress[-1].phase == "complete"
    assert progress[-1].percentage == 100
    percentages = [p.percentage for p in progress]
    assert percentages == sorted(percentages)


def test_reindexing_does_not_duplicate(sample_repo, provider, store):
    indexer = _indexer(provider, store, sample_repo)
    paths = list(iter_files(sample_repo, load_config(sample_repo)))
    indexer.index_files(paths)
    first = store.count()
    indexer.index_files(paths)
    assert store.count() == first


def test_cancelled_before_embedding(sample_repo, provider, store):
    indexer = _indexer(provider, store, sample_repo)
    result = indexer.index_files([sample_repo / "src" / "config.py"], should_stop=lambda: True)
    assert not result.success
    assert "Indexing cancelled" in result.errors
    assert store.count() == 0
    assert provider.batches == []


def test_provider_unavailable(sample_repo, store):
    indexer = _indexer(FakeProvider(available=False), store, sample_repo)
    result = indexer.index_files([sample_repo / "src" / "config.py"])
    assert not result.success
    assert result.successful_chunks == 0
    assert any("not reachable" in e for e in result.errors)


def test_unreadable_file_is_reported(sample_repo, provider, store):
    indexer = _indexer(provider, store, sample_repo)
    result = indexer.index_files([sample_repo / "missing.py", sample_repo / "src" / "config.py"])
    assert result.success
    assert any("missing.py" in e for e in result.errors)


def test_reindex_file_deletes_before_insert(sample_repo):
    store = MagicMock()
    pipeline = MagicMock()
    chunk = make_chunk("src/config.py", 1, "x = 1", vector=[1.0])
    pipeline.generate.return_value = EmbeddingOutcome([chunk], [])
    indexer = Indexer(pipeline, store, root=sample_repo)

    assert indexer.reindex_file(sample_repo / "src" / "config.py")
    assert store.mock_calls == [
        call.check_dimensions([chunk]),
        call.delete_file("src/config.py"),
        call.insert([chunk]),
    ]


def test_reindex_missing_file_removes_rows(sample_repo):
    store = MagicMock()
    indexer = Indexer(MagicMock(), store, root=sample_repo)
    assert indexer.reindex_file(sample_repo / "src" / "gone.py")
    assert store.mock_calls == [call.delete_file("src/gone.py")]


def test_reindex_reports_failed_chunks(sample_repo):
    store = MagicMock()
    pipeline = MagicMock()
    pipeline.generate.return_value = EmbeddingOutcome([], [make_chunk("src/config.py")])
    indexer = Indexer(pipeline, store, root=sample_repo)
    assert not indexer.reindex_file(sample_repo / "src" / "config.py")
    store.delete_file.assert_not_called()
    store.insert.assert_not_called()


class _BrokenProvider(FakeProvider):
    def _embed_texts(self, texts):
        raise EmbeddingError("model crashed")


def test_reindex_keeps_rows_when_every_chunk_fails(sample_repo, provider, store):
    _indexer(provider, store, sample_repo).index_files([sample_repo / "src" / "config.py"])
    before = store.count()

    indexer = _indexer(_BrokenProvider(), store, sample_repo)
    assert not indexer.reindex_file(sample_repo / "src" / "config.py")
    assert store.count() == before > 0


def test_index_keeps_rows_when_every_chunk_fails(sample_repo, provider, store):
    _indexer(provider, store, sample_repo).index_files([sample_repo / "src" / "config.py"])
    before = store.count()

    result = _indexer(_BrokenProvider(), store, sample_repo).index_files([sample_repo / "src" / "config.py"])
    assert not result.success
    assert store.count() == before > 0


def test_reindex_checks_provider_first(sample_repo, provider, store):
    _indexer(provider, store, sample_repo).index_files([sample_repo / "src" / "config.py"])
    before = store.count()

    unavailable = FakeProvider(available=False)
    with pytest.raises(ProviderUnavailableError):
        _indexer(unavailable, store, sample_repo).reindex_file(sample_repo / "src" / "config.py")
    assert unavailable.batches == []
    assert store.count() == before


def test_dimension_mismatch_leaves_index_intact(sample_repo, provider, store):
    _indexer(provider, store, sample_repo).index_files([sample_repo / "src" / "config.py"])
    before = store.count()

    smaller = _indexer(FakeProvider(dims=16), store, sample_repo)
    with pytest.raises(SchemaMismatchError):
        smaller.index_files([sample_repo / "src" / "config.py"])
    with pytest.raises(SchemaMismatchError):
        smaller.reindex_file(sample_repo / "src" / "config.py")
    assert store.count() == before
    assert store.file_paths() == {"src/config.py"}


def test_reindex_after_edit_drops_old_version(sample_repo, provider, store):
    indexer = _indexer(provider, store, sample_repo)
    target = sample_repo / "src" / "config.py"
    indexer.index_files([target])
    old_ids = {r.chunk.id for r in store.vector_search(provider.embed("load config"), limit=50)}

    target.write_text(
        "def parse_settings(raw):\n"
        "    return dict(raw)\n"
    )
    assert indexer.reindex_file(target)

    results = store.vector_search(provider.embed("load config json settings"), limit=50)
    assert [(r.chunk.start_line, r.chunk.end_line) for r in results] == [(1, 2)]
    assert "load_config" not in results[0].chunk.text
    assert old_ids - {results[0].chunk.id}
    assert store.count() == 1


def test_remove_and_clear(sample_repo, provider, store):
    indexer = _indexer(provider, store, sample_repo)
    indexer.index_files([sample_repo / "src" / "config.py", sample_repo / "src" / "render.ts"])
    removed = indexer.remove_file(sample_repo / "src" / "render.ts")
    assert removed > 0
    assert indexer.stats().file_count == 1
    indexer.clear()
    assert indexer.stats().chunk_count == 0


@pytest.mark.parametrize("name", ["src/config.py", "src/render.ts"])
def test_chunk_paths_are_relative_to_root(sample_repo, provider, store, name):
    indexer = _indexer(provider, store, sample_repo)
    indexer.index_files([sample_repo / name])
    assert store.file_paths() == {name}
