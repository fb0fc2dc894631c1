from pydantic import BaseModel
from typing import Optional, List


class IndexRequest(BaseModel):
    # files to index, relative to the root; empty means walk the whole root
    paths: List[str] = []


class IndexStartResponse(BaseModel):
    message: str
    total_files: int


class IndexingSummary(BaseModel):
    success: bool
    total_files: int
    total_chunks: int
    successful_chunks: int
    failed_chunks: int
    duration_ms: float
    errors: List[str]


class ProgressState(BaseModel):
    status: str = "idle"
    phase: Optional[str] = None
    current: int = 0
    total: int = 0
    percentage: int = 0
    message: str = ""
    result: Optional[IndexingSummary] = None
    error: Optional[str] = None


class FileRequest(BaseModel):
    path: str


class FileResponse(BaseModel):
    path: str
    success: bool
    removed_chunks: Optional[int] = None


class StatsResponse(BaseModel):
    chunk_count: int
    file_count: int
    storage_bytes: int
    provider: str
    model: str
    config_fingerprint: str


class SearchRequest(BaseModel):
    query: str
    limit: Optional[int] = None
    min_similarity: Optional[float] = None
    chunk_types: Optional[List[str]] = None
    hybrid: Optional[bool] = None
    expand: Optional[bool] = None


class SearchHit(BaseModel):
    id: str
    file_path: str
    start_line: int
    end_line: int
    type: str
    language: str
    text: str
    similarity: float
    score: Optional[float] = None
    rerank_score: Optional[float] = None
    fusion_score: Optional[float] = None


class SearchResponse(BaseModel):
    query: str
    results: List[SearchHit]
    total_results: int
    search_time_ms: float
    error: Optional[str] = None
    expanded_query: Optional[str] = None

