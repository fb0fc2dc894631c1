"""Data models for semantic-grep."""

from __future__ import annotations

import dataclasses
import enum
import time
from typing import Any, Dict, List, Optional


class ChunkType(str, enum.Enum):
    FUNCTION = "function"
    METHOD = "method"
    CLASS = "class"
    INTERFACE = "interface"
    TYPE = "type"
    NAMESPACE = "namespace"
    VARIABLE = "variable"
    IMPORT = "import"
    EXPORT = "export"
    JSX = "jsx"
    COMPONENT = "component"
    BLOCK = "block"
    TEMPLATE = "template"
    SCRIPT = "script"
    CSS = "css"
    DATA = "data"
    COMPUTED = "computed"
    LIFECYCLE = "lifecycle"
    WATCH = "watch"
    UNKNOWN = "unknown"


def chunk_id(file_path: str, start_line: int, end_line: int) -> str:
    return f"{file_path}:{start_line}-{end_line}"


@dataclasses.dataclass
class SourceChunk:
    """A contiguous, semantically bounded span of one source file.

    Lines are 1-indexed and inclusive.
    """

    file_path: str
    start_line: int
    end_line: int
    text: str
    type: ChunkType
    language: str
    sequence_index: int = 0
    created_at: float = dataclasses.field(default_factory=time.time)
    vector: Optional[List[float]] = None

    @property
    def id(self) -> str:
        return chunk_id(self.file_path, self.start_line, self.end_line)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "file_path": self.file_path,
            "start_line": self.start_line,
            "end_line": self.end_line,
            "text": self.text,
            "type": self.type.value,
            "language": self.language,
            "timestamp": self.created_at,
            "sequence_index": self.sequence_index,
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], vector: Optional[List[float]] = None) -> "SourceChunk":
        try:
            chunk_type = ChunkType(payload.get("type", "unknown"))
        except ValueError:
            chunk_type = ChunkType.UNKNOWN
        return cls(
            file_path=payload["file_path"],
            start_line=payload["start_line"],
            end_line=payload["end_line"],
            text=payload["text"],
            type=chunk_type,
            language=payload.get("language", ""),
            sequence_index=payload.get("sequence_index", 0),
            created_at=payload.get("timestamp", 0.0),
            vector=vector,
        )


@dataclasses.dataclass
class PointOfInterest:
    """A breakpoint found while walking the syntax tree (0-indexed line)."""

    node: Any
    type: ChunkType
    line: int
    depth: int = 0


@dataclasses.dataclass
class ChunkResult:
    chunks: List[SourceChunk]
    parse_success: bool
    parse_method: str
    error: Optional[str] = None


@dataclasses.dataclass
class SearchResult:
    chunk: SourceChunk
    similarity: float
    normalized_score: Optional[float] = None
    rerank_score: Optional[float] = None
    fusion_score: Optional[float] = None


@dataclasses.dataclass
class SearchSummary:
    query: str
    results: List[SearchResult]
    total_results: int
    search_time_ms: float
    error: Optional[str] = None
    index_ready: bool = True
    expanded_query: Optional[str] = None


@dataclasses.dataclass
class IndexingProgress:
    phase: str
    current: int
    total: int
    percentage: int
    message: str = ""


@dataclasses.dataclass
class IndexingResult:
    success: bool
    total_files: int
    total_chunks: int
    successful_chunks: int
    failed_chunks: int
    duration_ms: float
    errors: List[str] = dataclasses.field(default_factory=list)


@dataclasses.dataclass
class IndexStats:
    chunk_count: int
    file_count: int
    storage_bytes: int
