"""Batch embedding of chunks with retries, backoff and adaptive batch sizing."""

from __future__ import annotations

import dataclasses
import logging
import os
import re
import time
from typing import Callable, List, Optional

from tenacity import Retrying, stop_after_attempt, wait_exponential

from .embeddings import EmbeddingProvider
from .errors import ConfigurationError, ProviderUnavailableError
from .models import ChunkType, SourceChunk

logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 100
ITEM_DELAY_SECONDS = 0.05

TYPE_LABELS = {
    ChunkType.FUNCTION: "Function",
    ChunkType.METHOD: "Method",
    ChunkType.CLASS: "Class",
    ChunkType.INTERFACE: "Interface",
    ChunkType.COMPONENT: "Component",
    ChunkType.VARIABLE: "Variable",
    ChunkType.IMPORT: "Import",
    ChunkType.EXPORT: "Export",
    ChunkType.TYPE: "Type",
    ChunkType.NAMESPACE: "Namespace",
    ChunkType.JSX: "JSX Element",
    ChunkType.TEMPLATE: "Template",
    ChunkType.SCRIPT: "Script",
    ChunkType.CSS: "CSS",
    ChunkType.DATA: "Data Property",
    ChunkType.COMPUTED: "Computed Property",
    ChunkType.LIFECYCLE: "Lifecycle Method",
    ChunkType.WATCH: "Watcher",
    ChunkType.BLOCK: "Block",
    ChunkType.UNKNOWN: "Code Block",
}

_IDENT = r"([A-Za-z_$][A-Za-z0-9_$]*)"
IDENTIFIER_PATTERNS = {
    ChunkType.FUNCTION: re.compile(r"(?:function|const|let|var|def|fn|func)\s+" + _IDENT),
    ChunkType.CLASS: re.compile(r"(?:class|struct)\s+" + _IDENT),
    ChunkType.METHOD: re.compile(_IDENT + r"\s*\("),
    ChunkType.VARIABLE: re.compile(r"(?:const|let|var)\s+" + _IDENT),
    ChunkType.INTERFACE: re.compile(r"(?:interface|trait)\s+" + _IDENT),
    ChunkType.TYPE: re.compile(r"(?:type|enum)\s+" + _IDENT),
    ChunkType.COMPONENT: re.compile(r"(?:const|function|export\s+(?:default\s+)?(?:function)?)\s+([A-Z][A-Za-z0-9_$]*)"),
}

ProgressCallback = Callable[[int, int], None]
StopCallback = Callable[[], bool]


def extract_identifier_name(code: str, chunk_type: ChunkType) -> Optional[str]:
    pattern = IDENTIFIER_PATTERNS.get(chunk_type)
    if pattern is None:
        return None
    match = pattern.search(code)
    return match.group(1) if match else None


def build_embedding_input(chunk: SourceChunk) -> str:
    """Prefix chunk code with its language, file name, type and identifier."""
    parts = [f"[{chunk.language.upper()}]"]
    file_name = os.path.basename(chunk.file_path.replace("\\", "/"))
    if file_name:
        parts.append(file_name)
    parts.append(TYPE_LABELS.get(chunk.type, chunk.type.value))
    name = extract_identifier_name(chunk.text, chunk.type)
    if name:
        parts.append(f"Name: {name}")
    parts.append("")
    parts.append(chunk.text)
    return "\n".join(parts)


@dataclasses.dataclass
class EmbeddingOutcome:
    embedded: List[SourceChunk]
    failed: List[SourceChunk]
    cancelled: bool = False


class EmbeddingPipeline:
    """Embeds chunks in sequential batches.

    A failing batch is retried with exponential backoff (1s, 2s, ...). When
    all attempts fail the batch size is halved for the following batches and
    the current batch is sent one item at a time. Items that still end up
    with an empty vector are reported as failed rather than raised.
    """

    def __init__(
        self,
        provider: Optional[EmbeddingProvider],
        batch_size: int = 10,
        batch_delay: float = 0.1,
        max_retries: int = 3,
        item_delay: float = ITEM_DELAY_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.provider = provider
        self.batch_size = max(1, min(int(batch_size), MAX_BATCH_SIZE))
        self.batch_delay = batch_delay
        self.max_retries = max(1, max_retries)
        self.item_delay = item_delay
        self._sleep = sleep

    def _require_provider(self) -> EmbeddingProvider:
        if self.provider is None:
            raise ConfigurationError("No embedding provider configured")
        return self.provider

    def ensure_ready(self) -> None:
        provider = self._require_provider()
        if not provider.check_connection():
            raise ProviderUnavailableError(f"Embedding provider '{provider.provider_name}' is not reachable")
        if not provider.is_model_available():
            raise ProviderUnavailableError(
                f"Model '{provider.model}' is not available on provider '{provider.provider_name}'"
            )

    def adjust_batch_size(self, increase: bool) -> int:
        old = self.batch_size
        if increase:
            self.batch_size = min(max(int(old * 1.25), old + 1), MAX_BATCH_SIZE)
        else:
            self.batch_size = max(old // 2, 1)
        if old != self.batch_size:
            logger.info(f"Adjusted batch size from {old} to {self.batch_size}")
        return self.batch_size

    def generate(
        self,
        chunks: List[SourceChunk],
        on_progress: Optional[ProgressCallback] = None,
        should_stop: Optional[StopCallback] = None,
    ) -> EmbeddingOutcome:
        provider = self._require_provider()
        texts = [build_embedding_input(c) for c in chunks]
        total = len(chunks)
        embedded: List[SourceChunk] = []
        failed: List[SourceChunk] = []
        logger.info(f"Embedding {total} chunks with {provider.provider_name}/{provider.model}, batch size {self.batch_size}")

        index = 0
        while index < total:
            if should_stop is not None and should_stop():
                logger.info(f"Embedding stopped after {index}/{total} chunks")
                return EmbeddingOutcome(embedded, failed, cancelled=True)

            batch = texts[index:index + self.batch_size]
            vectors = self._process_batch(batch, index)
            for chunk, vector in zip(chunks[index:index + len(batch)], vectors):
                if vector:
                    embedded.append(dataclasses.replace(chunk, vector=vector))
                else:
                    failed.append(chunk)

            index += len(batch)
            if on_progress is not None:
                on_progress(index, total)
            if index < total and self.batch_delay > 0:
                self._sleep(self.batch_delay)

        if failed:
            logger.warning(f"{len(failed)}/{total} chunks failed to embed")
        return EmbeddingOutcome(embedded, failed)

    def _process_batch(self, batch: List[str], start: int) -> List[List[float]]:
        provider = self._require_provider()
        retrying = Retrying(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=1),
            sleep=self._sleep,
            before_sleep=lambda retry_state: logger.warning(
                f"Batch at {start} ({len(batch)} items) failed, "
                f"attempt {retry_state.attempt_number}/{self.max_retries}: {retry_state.outcome.exception()}"
            ),
            reraise=True,
        )
        try:
            return retrying(provider.embed_batch, batch)
        except Exception as e:
            logger.warning(f"Batch at {start} ({len(batch)} items) failed after {self.max_retries} attempts: {e}")

        if self.batch_size > 1:
            self.adjust_batch_size(increase=False)
        logger.info(f"Falling back to individual requests for batch at {start}")
        return self._process_individually(batch, start)

    def _process_individually(self, batch: List[str], start: int) -> List[List[float]]:
        provider = self._require_provider()
        vectors: List[List[float]] = []
        for i, text in enumerate(batch):
            try:
                vectors.append(provider.embed(text))
            except Exception as e:
                logger.error(f"Failed to embed item {start + i}: {e}")
                vectors.append([])
            if i < len(batch) - 1 and self.item_delay > 0:
                self._sleep(self.item_delay)
        return vectors
