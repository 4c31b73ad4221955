"""Sync and embedding job routes."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from chat_archive.api.dependencies import (
    get_app_settings,
    get_embed_processor,
    get_fetch_engine,
    get_store,
)
from chat_archive.core.config import Settings
from chat_archive.core.metrics import REQUEST_COUNT
from chat_archive.core.progress import ProgressEvent
from chat_archive.fetch.engine import MessageFetchEngine
from chat_archive.ingest.embed_processor import EmbeddingBatchProcessor
from chat_archive.ingest.export import ExportJob
from chat_archive.models.dto import EmbedRequest, JobResponse, SyncRequest
from chat_archive.storage.store import ArchiveStore

router = APIRouter()


@router.post("/sync", response_model=JobResponse, summary="Export a chat's history into the archive")
def run_sync(
    request: SyncRequest,
    settings: Settings = Depends(get_app_settings),
    engine: MessageFetchEngine = Depends(get_fetch_engine),
    store: ArchiveStore = Depends(get_store),
) -> JobResponse:
    events: list[ProgressEvent] = []
    job = ExportJob(
        engine,
        store,
        batch_size=request.batch_size or settings.export_batch_size,
        callback=events.append,
        export_format=request.format,
        export_path=Path(request.export_path) if request.export_path else settings.export_dir,
    )
    options = request.to_options(settings.fetch_method, settings.fetch_page_size)
    job.run(request.chat_id, options)
    REQUEST_COUNT.labels(endpoint="sync", method="POST", status="200").inc()
    return JobResponse.from_events(events)


@router.post("/embed", response_model=JobResponse, summary="Embed archived messages lacking vectors")
def run_embed(
    request: EmbedRequest,
    processor: EmbeddingBatchProcessor = Depends(get_embed_processor),
) -> JobResponse:
    events = list(
        processor.embed_pending(
            request.chat_id,
            batch_size=request.batch_size,
            concurrency=request.concurrency,
        )
    )
    REQUEST_COUNT.labels(endpoint="embed", method="POST", status="200").inc()
    return JobResponse.from_events(events)


@router.get("/jobs/{job_id}", summary="Recorded outcome of a job")
def get_job(job_id: str, store: ArchiveStore = Depends(get_store)) -> dict[str, Any]:
    job = store.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


__all__ = ["router"]
