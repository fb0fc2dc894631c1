"""Indexing routes with SSE support."""

import asyncio
import dataclasses
import json
import logging
import threading
from pathlib import Path
from typing import Dict, List

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from sse_starlette.sse import EventSourceResponse

from ...core.errors import ProviderUnavailableError, SchemaMismatchError
from ...core.models import IndexingProgress
from ...indexing import iter_files
from ...services import Services
from ..dependencies import get_services
from ..schemas import FileRequest, FileResponse, IndexRequest, IndexStartResponse, ProgressState, StatsResponse

logger = logging.getLogger(__name__)

router = APIRouter()

PROGRESS_INTERVAL_SECONDS = 1.0

# Progress of the current (or last) indexing run
indexing_progress: Dict = {"status": "idle"}
_cancel_event = threading.Event()


def index_task(services: Services, paths: List[Path]) -> None:
    """Background task running one indexing pass."""

    def on_progress(progress: IndexingProgress) -> None:
        indexing_progress.update(dataclasses.asdict(progress))

    try:
        result = services.indexer.index_files(paths, on_progress=on_progress, should_stop=_cancel_event.is_set)
        indexing_progress["result"] = dataclasses.asdict(result)
        if _cancel_event.is_set():
            indexing_progress["status"] = "cancelled"
        else:
            indexing_progress["status"] = "indexed" if result.success else "error"
    except Exception as e:
        logger.exception(f"Indexing failed: {e}")
        indexing_progress["status"] = "error"
        indexing_progress["error"] = str(e)


@router.post("/index", response_model=IndexStartResponse)
async def start_indexing(
    request: IndexRequest,
    background_tasks: BackgroundTasks,
    services: Services = Depends(get_services),
):
    """Index the given files, or every matching file under the root."""
    if indexing_progress.get("status") == "indexing":
        raise HTTPException(status_code=400, detail="Indexing is already running")

    if request.paths:
        paths = [services.root / p for p in request.paths]
    else:
        paths = list(iter_files(services.root, services.config))

    indexing_progress.clear()
    indexing_progress.update({"status": "indexing", "phase": "scanning", "total": len(paths)})
    _cancel_event.clear()

    logger.info(f"Starting background indexing of {len(paths)} files under {services.root}")
    background_tasks.add_task(index_task, services, paths)
    return IndexStartResponse(message=f"Indexing started for {len(paths)} files", total_files=len(paths))


@router.get("/index/progress")
async def index_progress():
    """SSE endpoint for real-time indexing progress."""

    async def event_generator():
        while True:
            state = ProgressState(**indexing_progress)
            yield {"event": "progress", "data": json.dumps(state.model_dump())}
            if state.status != "indexing":
                break
            await asyncio.sleep(PROGRESS_INTERVAL_SECONDS)

    return EventSourceResponse(event_generator())


@router.post("/index/cancel")
async def cancel_indexing():
    """Ask the running pass to stop before its next embedding batch."""
    if indexing_progress.get("status") != "indexing":
        raise HTTPException(status_code=400, detail="Indexing is not running")
    _cancel_event.set()
    return {"success": True, "message": "Cancellation requested"}


@router.post("/reindex", response_model=FileResponse)
def reindex_file(request: FileRequest, services: Services = Depends(get_services)):
    try:
        success = services.indexer.reindex_file(services.root / request.path)
    except SchemaMismatchError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ProviderUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return FileResponse(path=request.path, success=success)


@router.delete("/files", response_model=FileResponse)
def delete_file(path: str, services: Services = Depends(get_services)):
    removed = services.indexer.remove_file(services.root / path)
    return FileResponse(path=path, success=True, removed_chunks=removed)


@router.post("/clear")
def clear_index(services: Services = Depends(get_services)):
    services.indexer.clear()
    return {"success": True, "message": "Index cleared"}


@router.get("/stats", response_model=StatsResponse)
def index_stats(services: Services = Depends(get_services)):
    stats = services.indexer.stats()
    return StatsResponse(
        chunk_count=stats.chunk_count,
        file_count=stats.file_count,
        storage_bytes=stats.storage_bytes,
        provider=services.provider.provider_name,
        model=services.provider.model,
        config_fingerprint=services.indexer.fingerprint,
    )
