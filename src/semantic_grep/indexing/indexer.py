"""Code indexing: read files, chunk, embed and store."""

from __future__ import annotations

import fnmatch
import logging
import threading
import time
from collections import defaultdict
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from ..config import DEFAULT_EXCLUDE_PATTERNS, DEFAULT_INCLUDE_PATTERNS, expand_patterns
from ..core.chunking import DEFAULT_TOKEN_BUDGET, chunk_files, chunk_source
from ..core.errors import ProviderUnavailableError
from ..core.grammars import GrammarRegistry
from ..core.models import IndexingProgress, IndexingResult, IndexStats, SourceChunk
from ..core.pipeline import EmbeddingPipeline
from ..storage.base import VectorStore
from ..utils import is_binary_file, read_source, relative_key

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[IndexingProgress], None]
StopCallback = Callable[[], bool]


def _match_any(path: str, globs: List[str]) -> bool:
    return any(fnmatch.fnmatch(path, g) for g in globs)


def iter_files(repo: Path, cfg: Dict) -> Iterable[Path]:
    include_globs = cfg.get("include_globs", expand_patterns(DEFAULT_INCLUDE_PATTERNS))
    exclude_globs = cfg.get("exclude_globs", expand_patterns(DEFAULT_EXCLUDE_PATTERNS))
    max_kb = int(cfg.get("max_file_size_kb", 512))

    for p in sorted(repo.rglob("*")):
        if not p.is_file():
            continue
        rel = p.relative_to(repo).as_posix()
        if _match_any(rel, exclude_globs):
            continue
        if not _match_any(rel, include_globs):
            continue
        try:
            if (p.stat().st_size / 1024.0) > max_kb:
                continue
        except OSError:
            continue
        if is_binary_file(p):
            continue
        yield p


class Indexer:
    """Runs the chunk -> embed -> store flow and reports progress.

    Writes to the store are serialized; reindexing a file always removes its
    previous chunks before inserting the new ones.
    """

    def __init__(
        self,
        pipeline: EmbeddingPipeline,
        store: VectorStore,
        token_budget: int = DEFAULT_TOKEN_BUDGET,
        max_workers: int = 4,
        registry: Optional[GrammarRegistry] = None,
        root: Optional[Path] = None,
        fingerprint: str = "",
    ) -> None:
        self.pipeline = pipeline
        self.store = store
        self.token_budget = token_budget
        self.max_workers = max_workers
        self.registry = registry
        self.root = root
        self.fingerprint = fingerprint
        self._write_lock = threading.Lock()

    def _file_key(self, path: Path) -> str:
        return relative_key(path, self.root)

    def _read(self, paths: Sequence[Path], errors: List[str]) -> List[Tuple[str, str]]:
        files: List[Tuple[str, str]] = []
        for path in paths:
            try:
                files.append((self._file_key(path), read_source(path)))
            except OSError as e:
                logger.warning(f"Cannot read {path}: {e}")
                errors.append(f"{path}: {e}")
        return files

    def index_files(
        self,
        paths: Sequence[Path],
        on_progress: Optional[ProgressCallback] = None,
        should_stop: Optional[StopCallback] = None,
    ) -> IndexingResult:
        started = time.perf_counter()
        errors: List[str] = []

        def emit(phase: str, current: int, total: int, percentage: int, message: str = "") -> None:
            if on_progress is not None:
                on_progress(IndexingProgress(phase, current, total, percentage, message))

        def finish(success: bool, total_chunks: int, stored: int) -> IndexingResult:
            duration = (time.perf_counter() - started) * 1000.0
            result = IndexingResult(
                success=success,
                total_files=len(paths),
                total_chunks=total_chunks,
                successful_chunks=stored,
                failed_chunks=total_chunks - stored,
                duration_ms=duration,
                errors=errors,
            )
            logger.info(
                f"Indexing finished: {stored}/{total_chunks} chunks from {len(paths)} files "
                f"in {duration:.0f}ms ({len(errors)} errors)"
            )
            return result

        def stopped() -> bool:
            return should_stop is not None and should_stop()

        emit("scanning", 0, len(paths), 0, f"Reading {len(paths)} files")
        files = self._read(paths, errors)

        emit("chunking", 0, len(files), 10, "Chunking files")
        results = chunk_files(files, self.token_budget, self.max_workers, self.registry)
        chunks: List[SourceChunk] = []
        per_file: Dict[str, int] = {}
        for (file_key, _), result in zip(files, results):
            if result.error:
                errors.append(f"{file_key}: parse failed, used {result.parse_method} chunking ({result.error})")
            per_file[file_key] = len(result.chunks)
            chunks.extend(result.chunks)
        emit("chunking", len(files), len(files), 30, f"Created {len(chunks)} chunks")

        if stopped():
            errors.append("Indexing cancelled")
            return finish(False, len(chunks), 0)

        try:
            self.pipeline.ensure_ready()
        except ProviderUnavailableError as e:
            logger.error(f"Embedding provider unavailable: {e}")
            errors.append(str(e))
            return finish(False, len(chunks), 0)

        def embedding_progress(current: int, total: int) -> None:
            emit("embedding", current, total, 30 + int(50 * current / max(total, 1)),
                 f"Embedded {current}/{total} chunks")

        outcome = self.pipeline.generate(chunks, on_progress=embedding_progress, should_stop=should_stop)
        if outcome.failed:
            errors.append(f"{len(outcome.failed)} chunks failed to embed")

        # a cancelled run only stores files whose chunks were all processed;
        # files where every chunk failed keep their previous rows
        processed: Dict[str, int] = defaultdict(int)
        embedded_per_file: Dict[str, int] = defaultdict(int)
        for chunk in outcome.embedded:
            processed[chunk.file_path] += 1
            embedded_per_file[chunk.file_path] += 1
        for chunk in outcome.failed:
            processed[chunk.file_path] += 1
        complete = {
            key for key, count in per_file.items()
            if processed[key] == count and (count == 0 or embedded_per_file[key] > 0)
        }

        emit("storing", 0, len(outcome.embedded), 80, "Writing to index")
        to_store = [c for c in outcome.embedded if c.file_path in complete]
        with self._write_lock:
            self.store.check_dimensions(to_store)
            for file_key in sorted(complete):
                self.store.delete_file(file_key)
            stored = self.store.insert(to_store)

        if outcome.cancelled:
            errors.append("Indexing cancelled")
            emit("cancelled", stored, len(chunks), 80, f"Stopped after storing {stored} chunks")
            return finish(False, len(chunks), stored)

        emit("complete", stored, len(chunks), 100, f"Indexed {stored} chunks")
        success = not (chunks and stored == 0)
        return finish(success, len(chunks), stored)

    def reindex_file(self, path: Path) -> bool:
        """Replace all chunks of one file; returns False when it could not be indexed.

        Raises:
            ProviderUnavailableError: Before anything is embedded or deleted
            SchemaMismatchError: Before the old chunks are deleted
        """
        file_key = self._file_key(path)
        if not path.is_file():
            with self._write_lock:
                self.store.delete_file(file_key)
            logger.info(f"{file_key} no longer exists, removed from index")
            return True

        try:
            text = read_source(path)
        except OSError as e:
            logger.error(f"Cannot read {path}: {e}")
            return False

        result = chunk_source(text, file_key, self.token_budget, registry=self.registry)
        self.pipeline.ensure_ready()
        outcome = self.pipeline.generate(result.chunks)
        if outcome.failed and not outcome.embedded:
            logger.error(f"All {len(outcome.failed)} chunks of {file_key} failed to embed, index left unchanged")
            return False
        with self._write_lock:
            self.store.check_dimensions(outcome.embedded)
            self.store.delete_file(file_key)
            self.store.insert(outcome.embedded)
        if outcome.failed:
            logger.warning(f"Reindexed {file_key} with {len(outcome.failed)} failed chunks")
            return False
        logger.info(f"Reindexed {file_key}: {len(outcome.embedded)} chunks")
        return True

    def remove_file(self, path: Path) -> int:
        with self._write_lock:
            return self.store.delete_file(self._file_key(path))

    def clear(self) -> None:
        with self._write_lock:
            self.store.clear()

    def stats(self) -> IndexStats:
        return self.store.stats()
