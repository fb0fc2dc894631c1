"""Chunking of source files into semantically bounded spans."""

from __future__ import annotations

import functools
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional, Pattern, Sequence, Tuple

import tiktoken

from .errors import ParseError
from .grammars import GrammarRegistry, default_registry
from .languages import get_language_spec, language_for_path, normalize_extension
from .models import ChunkResult, ChunkType, SourceChunk
from .parser import CodeParser

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_BUDGET = 1000
VARIABLE_MERGE_GAP = 2


@functools.lru_cache(maxsize=1)
def _encoder() -> tiktoken.Encoding:
    # cl100k_base is compatible with most modern models
    return tiktoken.get_encoding("cl100k_base")


def count_tokens(text: str) -> int:
    """Count tokens in text using tiktoken."""
    return len(_encoder().encode(text, disallowed_special=()))


def fits_budget(text: str, token_budget: int) -> bool:
    # a token always spans at least one character
    if len(text) <= token_budget:
        return True
    return count_tokens(text) <= token_budget


# -----------------------------------------------------------------------------
# Content heuristics
# -----------------------------------------------------------------------------

_Heuristic = Tuple[ChunkType, Sequence[Pattern[str]]]

_JS_HEURISTICS: List[_Heuristic] = [
    (ChunkType.FUNCTION, [
        re.compile(r"^\s*(export\s+)?(default\s+)?(async\s+)?function\s*\*?\s*\w+"),
        re.compile(r"^\s*(export\s+)?const\s+\w+\s*=\s*(async\s+)?(\(|function\b)"),
        re.compile(r"^\s*(export\s+)?const\s+\w+\s*:\s*\([^)]*\)\s*=>"),
    ]),
    (ChunkType.CLASS, [re.compile(r"^\s*(export\s+)?(default\s+)?(abstract\s+)?class\s+\w+")]),
    (ChunkType.INTERFACE, [re.compile(r"^\s*(export\s+)?interface\s+\w+")]),
    (ChunkType.TYPE, [
        re.compile(r"^\s*(export\s+)?type\s+\w+"),
        re.compile(r"^\s*(export\s+)?(const\s+)?enum\s+\w+"),
    ]),
    (ChunkType.EXPORT, [re.compile(r"^\s*export\s+default\s+"), re.compile(r"^\s*export\s+(\{|\*)")]),
    (ChunkType.IMPORT, [re.compile(r"^\s*import\s+")]),
    (ChunkType.VARIABLE, [re.compile(r"^\s*(export\s+)?(const|let|var)\s+\w+")]),
]

_JSX_HEURISTICS: List[_Heuristic] = [
    (ChunkType.COMPONENT, [
        re.compile(r"^(?:export\s+(?:default\s+)?)?(?:function\s+|const\s+|let\s+)([A-Z]\w+)"),
    ]),
    (ChunkType.JSX, [re.compile(r"<[a-z]+[\s>]"), re.compile(r"<>"), re.compile(r"return\s*\(?\s*<")]),
]

_PY_HEURISTICS: List[_Heuristic] = [
    (ChunkType.FUNCTION, [re.compile(r"^\s*(async\s+)?def\s+\w+")]),
    (ChunkType.CLASS, [re.compile(r"^\s*class\s+\w+")]),
    (ChunkType.IMPORT, [re.compile(r"^\s*import\s+"), re.compile(r"^\s*from\s+[\w.]+\s+import\b")]),
    (ChunkType.VARIABLE, [re.compile(r"^[A-Za-z_]\w*\s*(:[^=]+)?=[^=]")]),
]

_GENERIC_HEURISTICS: List[_Heuristic] = [
    (ChunkType.FUNCTION, [
        re.compile(r"^\s*(pub(\([^)]*\))?\s+)?(async\s+)?(fn|func)\s+"),
        re.compile(r"^\s*(public|private|protected|static|\s)+[\w<>\[\]]+\s+\w+\s*\([^;]*$"),
    ]),
    (ChunkType.CLASS, [
        re.compile(r"^\s*(pub\s+)?(public\s+|private\s+)?(abstract\s+|final\s+)?(class|struct|impl|record)\b"),
        re.compile(r"^\s*type\s+\w+\s+struct\b"),
    ]),
    (ChunkType.INTERFACE, [re.compile(r"^\s*(pub\s+)?(public\s+)?(interface|trait)\s+\w+")]),
    (ChunkType.TYPE, [re.compile(r"^\s*(pub\s+)?(public\s+)?(type|enum)\s+\w+")]),
    (ChunkType.IMPORT, [re.compile(r"^\s*(import|use)\b")]),
    (ChunkType.VARIABLE, [re.compile(r"^\s*(pub\s+)?(const|static|var|let)\s+\w+")]),
]

_VUE_HEURISTICS: List[_Heuristic] = [
    (ChunkType.SCRIPT, [re.compile(r"<script")]),
    (ChunkType.TEMPLATE, [re.compile(r"<template")]),
    (ChunkType.CSS, [re.compile(r"<style")]),
]


def _heuristics_for(extension: str) -> List[_Heuristic]:
    spec = get_language_spec(extension)
    family = spec.family if spec else ""
    if family == "ts":
        if spec.jsx and spec.extension != "js":
            return _JSX_HEURISTICS + _JS_HEURISTICS
        return _JS_HEURISTICS
    if family == "py":
        return _PY_HEURISTICS
    if family == "vue":
        return _VUE_HEURISTICS
    if family == "css":
        return []
    return _GENERIC_HEURISTICS


def detect_chunk_type(text: str, extension: str) -> ChunkType:
    """Classify a chunk from its content when no syntax node is available.

    Rules are tried in priority order and the first one matching any line wins.
    """
    code_lines = text.split("\n")
    for chunk_type, patterns in _heuristics_for(extension):
        if any(p.search(line) for p in patterns for line in code_lines):
            return chunk_type
    return ChunkType.BLOCK


# -----------------------------------------------------------------------------
# Span helpers
# -----------------------------------------------------------------------------

def _trim_span(lines: List[str], start: int, end: int) -> Optional[Tuple[int, int]]:
    while start <= end and not lines[start].strip():
        start += 1
    while end >= start and not lines[end].strip():
        end -= 1
    if start > end:
        return None
    return start, end


def split_by_tokens(lines: List[str], start: int, end: int, token_budget: int) -> List[Tuple[int, int]]:
    """Split lines[start:end + 1] into windows that fit the token budget.

    Uses binary search to find the largest window, then steps back to a
    blank line or closing brace when one is close to the window end.
    """
    pieces: List[Tuple[int, int]] = []
    cur = start
    while cur <= end:
        lo, hi = 1, end - cur + 1
        best = 1
        while lo <= hi:
            mid = (lo + hi) // 2
            if fits_budget("\n".join(lines[cur:cur + mid]), token_budget):
                best = mid
                lo = mid + 1
            else:
                hi = mid - 1

        stop = cur + best - 1
        if stop < end:
            for candidate in range(stop, cur + best // 2, -1):
                stripped = lines[candidate].strip()
                if not stripped or stripped.startswith("}"):
                    stop = candidate
                    break
        pieces.append((cur, stop))
        cur = stop + 1
    return pieces


def merge_consecutive_variables(chunks: List[SourceChunk], lines: List[str]) -> List[SourceChunk]:
    """Merge runs of variable chunks separated by at most two lines."""
    merged: List[SourceChunk] = []
    for chunk in chunks:
        prev = merged[-1] if merged else None
        if (
            prev is not None
            and prev.type == ChunkType.VARIABLE
            and chunk.type == ChunkType.VARIABLE
            and chunk.start_line - prev.end_line - 1 <= VARIABLE_MERGE_GAP
        ):
            prev.end_line = chunk.end_line
            prev.text = "\n".join(lines[prev.start_line - 1:prev.end_line])
            continue
        merged.append(chunk)
    return merged


def _finalize(
    spans: List[Tuple[int, int, Optional[ChunkType]]],
    lines: List[str],
    file_path: str,
    extension: str,
) -> List[SourceChunk]:
    chunks: List[SourceChunk] = []
    for start, end, anchor_type in spans:
        text = "\n".join(lines[start:end + 1])
        chunk_type = anchor_type or detect_chunk_type(text, extension)
        chunks.append(SourceChunk(
            file_path=file_path,
            start_line=start + 1,
            end_line=end + 1,
            text=text,
            type=chunk_type,
            language=extension,
        ))
    chunks = merge_consecutive_variables(chunks, lines)
    for i, chunk in enumerate(chunks):
        chunk.sequence_index = i
    return chunks


# -----------------------------------------------------------------------------
# Chunkers
# -----------------------------------------------------------------------------

class Chunker:
    """Abstract base class for text chunking."""

    parse_method = "none"

    def chunk(self, text: str, language: str, token_budget: int, file_path: str = "") -> ChunkResult:
        """Split ``text`` into chunks of at most ``token_budget`` tokens where possible.

        Args:
            text: Full file content
            language: File extension, with or without the leading dot
            token_budget: Maximum tokens per chunk
            file_path: Path used to build chunk ids

        Returns:
            ChunkResult with chunks ordered by start line
        """
        raise NotImplementedError


class LineChunker(Chunker):
    """Token-window chunker for files without a usable grammar."""

    parse_method = "fallback"

    def chunk(self, text: str, language: str, token_budget: int, file_path: str = "") -> ChunkResult:
        extension = normalize_extension(language)
        if not text.strip():
            return ChunkResult([], True, self.parse_method)

        lines = text.split("\n")
        spans: List[Tuple[int, int, Optional[ChunkType]]] = []
        for start, end in split_by_tokens(lines, 0, len(lines) - 1, token_budget):
            trimmed = _trim_span(lines, start, end)
            if trimmed:
                spans.append((trimmed[0], trimmed[1], None))
        chunks = _finalize(spans, lines, file_path, extension)
        logger.debug(f"Line-based chunking produced {len(chunks)} chunks for {file_path or 'unknown'}")
        return ChunkResult(chunks, True, self.parse_method)


class AstChunker(Chunker):
    """Chunker that cuts files at syntax-tree breakpoints.

    Top-level breakpoints always start a new chunk. Nested breakpoints
    (functions, methods, JSX blocks) only split a chunk that exceeds the
    token budget. Content before the first breakpoint belongs to the first
    chunk.
    """

    parse_method = "tree-sitter"

    def __init__(self, registry: Optional[GrammarRegistry] = None) -> None:
        self.registry = registry or default_registry()
        self.parser = CodeParser(self.registry)

    def chunk(self, text: str, language: str, token_budget: int, file_path: str = "") -> ChunkResult:
        extension = normalize_extension(language)
        if not text.strip():
            return ChunkResult([], True, self.parse_method)

        try:
            parsed = self.parser.parse(text, extension)
        except ParseError as e:
            logger.warning(f"AST parsing failed for {file_path or 'unknown'}: {e}")
            return ChunkResult([], False, self.parse_method, str(e))

        lines = text.split("\n")
        anchors: Dict[int, ChunkType] = {}
        top_lines: List[int] = []
        nested_lines: List[int] = []
        for point in parsed.points:
            if point.line in anchors:
                continue
            anchors[point.line] = point.type
            (top_lines if point.depth == 0 else nested_lines).append(point.line)

        top_lines = self._attach_comments(sorted(top_lines), parsed.comment_rows, anchors)
        nested = sorted(set(nested_lines) - set(top_lines))

        bounds = top_lines or [0]
        spans: List[Tuple[int, int, Optional[ChunkType]]] = []
        for i, line in enumerate(bounds):
            start = 0 if i == 0 else line
            end = bounds[i + 1] - 1 if i + 1 < len(bounds) else len(lines) - 1
            anchor_type = anchors.get(line) if top_lines else None
            spans.extend(self._fit_span(lines, start, end, anchor_type, nested, anchors, token_budget))

        chunks = _finalize(spans, lines, file_path, extension)
        logger.debug(
            f"Extracted {len(chunks)} chunks from {file_path or 'unknown'} "
            f"({len(top_lines)} top-level, {len(nested)} nested breakpoints)"
        )
        return ChunkResult(chunks, True, self.parse_method)

    @staticmethod
    def _attach_comments(top_lines: List[int], comment_rows, anchors: Dict[int, ChunkType]) -> List[int]:
        """Move each breakpoint up over the comment lines directly above it."""
        attached: List[int] = []
        prev = -1
        for line in top_lines:
            start = line
            while start - 1 > prev and (start - 1) in comment_rows:
                start -= 1
            if start != line:
                anchors[start] = anchors[line]
            attached.append(start)
            prev = start
        return attached

    @staticmethod
    def _fit_span(
        lines: List[str],
        start: int,
        end: int,
        anchor_type: Optional[ChunkType],
        nested: List[int],
        anchors: Dict[int, ChunkType],
        token_budget: int,
    ) -> List[Tuple[int, int, Optional[ChunkType]]]:
        trimmed = _trim_span(lines, start, end)
        if trimmed is None:
            return []
        start, end = trimmed
        if fits_budget("\n".join(lines[start:end + 1]), token_budget):
            return [(start, end, anchor_type)]

        cuts = [line for line in nested if start < line <= end]
        pieces: List[Tuple[int, int, Optional[ChunkType]]] = []
        bounds = [start] + cuts
        for i, piece_start in enumerate(bounds):
            piece_end = bounds[i + 1] - 1 if i + 1 < len(bounds) else end
            piece = _trim_span(lines, piece_start, piece_end)
            if piece is None:
                continue
            piece_type = anchor_type if i == 0 else anchors.get(piece_start)
            if fits_budget("\n".join(lines[piece[0]:piece[1] + 1]), token_budget):
                pieces.append((piece[0], piece[1], piece_type))
                continue
            for j, (s, e) in enumerate(split_by_tokens(lines, piece[0], piece[1], token_budget)):
                window = _trim_span(lines, s, e)
                if window:
                    pieces.append((window[0], window[1], piece_type if j == 0 else None))
        return pieces


def get_chunker(language: str, registry: Optional[GrammarRegistry] = None) -> Chunker:
    registry = registry or default_registry()
    if registry.supports(language):
        return AstChunker(registry)
    return LineChunker()


def chunk_source(
    text: str,
    file_path: str,
    token_budget: int = DEFAULT_TOKEN_BUDGET,
    language: Optional[str] = None,
    registry: Optional[GrammarRegistry] = None,
) -> ChunkResult:
    """Chunk one file, degrading to line-based chunking when parsing fails."""
    language = language or language_for_path(file_path)
    chunker = get_chunker(language, registry)
    result = chunker.chunk(text, language, token_budget, file_path=file_path)
    if result.parse_success:
        return result

    logger.warning(f"AST chunking failed for {file_path}, falling back to line-based: {result.error}")
    fallback = LineChunker().chunk(text, language, token_budget, file_path=file_path)
    fallback.error = result.error
    return fallback


def chunk_files(
    files: Sequence[Tuple[str, str]],
    token_budget: int = DEFAULT_TOKEN_BUDGET,
    max_workers: int = 4,
    registry: Optional[GrammarRegistry] = None,
) -> List[ChunkResult]:
    """Chunk ``(file_path, text)`` pairs concurrently; results keep input order."""
    registry = registry or default_registry()
    if not files:
        return []
    with ThreadPoolExecutor(max_workers=max(1, max_workers)) as pool:
        results = list(pool.map(
            lambda item: chunk_source(item[1], item[0], token_budget, registry=registry),
            files,
        ))
    logger.info(f"Chunked {len(files)} files into {sum(len(r.chunks) for r in results)} chunks")
    return results
