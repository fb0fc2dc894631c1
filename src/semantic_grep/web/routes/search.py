"""Search routes."""

import logging

from fastapi import APIRouter, Depends, HTTPException

from ...core.models import ChunkType, SearchResult
from ...services import Services
from ..dependencies import get_services
from ..schemas import SearchHit, SearchRequest, SearchResponse

logger = logging.getLogger(__name__)

router = APIRouter()


def _to_hit(result: SearchResult) -> SearchHit:
    chunk = result.chunk
    return SearchHit(
        id=chunk.id,
        file_path=chunk.file_path,
        start_line=chunk.start_line,
        end_line=chunk.end_line,
        type=chunk.type.value,
        language=chunk.language,
        text=chunk.text,
        similarity=result.similarity,
        score=result.normalized_score,
        rerank_score=result.rerank_score,
        fusion_score=result.fusion_score,
    )


@router.post("/search", response_model=SearchResponse)
def search(request: SearchRequest, services: Services = Depends(get_services)):
    chunk_types = None
    if request.chunk_types:
        try:
            chunk_types = [ChunkType(t) for t in request.chunk_types]
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

    summary = services.searcher.search(
        request.query,
        limit=request.limit,
        min_similarity=request.min_similarity,
        chunk_types=chunk_types,
        hybrid=request.hybrid,
        expand=request.expand,
    )
    if not summary.index_ready:
        raise HTTPException(status_code=409, detail=summary.error)

    return SearchResponse(
        query=summary.query,
        results=[_to_hit(r) for r in summary.results],
        total_results=summary.total_results,
        search_time_ms=summary.search_time_ms,
        error=summary.error,
        expanded_query=summary.expanded_query,
    )
