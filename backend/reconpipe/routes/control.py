"""
Control endpoints for explicit operator actions.

Thin HTTP adapter over PipelineOrchestrator. Starting a run returns
immediately; progress arrives over the /ws/events stream.
"""

import logging
from typing import List

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, ConfigDict

from reconpipe.persistence.errors import PersistenceError
from reconpipe.watchfolders.models import InboundFile, OutboundFolder

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["pipeline"])


class OperationResponse(BaseModel):
    """Generic response for control operations."""

    model_config = ConfigDict(extra="forbid")

    success: bool
    message: str


class ExtractedFoldersResponse(BaseModel):
    """Result folders, newest first."""

    model_config = ConfigDict(extra="forbid")

    folders: List[OutboundFolder]
    count: int


class InboundFilesResponse(BaseModel):
    """Files waiting in the inbound folder, newest first."""

    model_config = ConfigDict(extra="forbid")

    files: List[InboundFile]
    count: int


@router.post("/pipeline/start", response_model=OperationResponse)
async def start_pipeline(request: Request):
    """
    Start a pipeline run in the background.

    Returns 409 if a run is already in progress.
    """
    orchestrator = request.app.state.orchestrator
    if not orchestrator.start_in_background():
        raise HTTPException(status_code=409, detail="A pipeline run is already in progress")
    logger.info("Pipeline start requested over HTTP")
    return OperationResponse(success=True, message="Pipeline started")


@router.post("/pipeline/trigger-download", response_model=OperationResponse)
async def trigger_download(request: Request):
    """
    Export the result of a job that already finished on the service.

    Returns 409 if this run's download was already started.
    """
    if not request.app.state.orchestrator.trigger_download():
        raise HTTPException(status_code=409, detail="Download already triggered for this run")
    return OperationResponse(success=True, message="Download started")


@router.post("/pipeline/stop-monitoring", response_model=OperationResponse)
async def stop_monitoring(request: Request):
    """Stop polling the job list. The run keeps its stage until reset."""
    request.app.state.orchestrator.stop_monitoring()
    return OperationResponse(success=True, message="Monitoring stopped")


@router.post("/pipeline/reset", response_model=OperationResponse)
async def reset_pipeline(request: Request):
    """Tear down background work and start a fresh run."""
    run = request.app.state.orchestrator.reset()
    return OperationResponse(success=True, message=f"Pipeline reset (run {run.run_id})")


@router.get("/pipeline/status")
async def pipeline_status(request: Request):
    return request.app.state.orchestrator.status()


@router.get("/extracted", response_model=ExtractedFoldersResponse)
async def list_extracted(request: Request):
    """List republished result folders with their files."""
    try:
        folders = request.app.state.orchestrator.watcher.list_outbound_folders()
    except OSError as e:
        logger.error(f"Failed to list result folders: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to list result folders: {e}")
    return ExtractedFoldersResponse(folders=folders, count=len(folders))


@router.get("/downloads", response_model=InboundFilesResponse)
async def list_downloads(request: Request):
    files = request.app.state.orchestrator.watcher.list_inbound_files()
    return InboundFilesResponse(files=files, count=len(files))


@router.get("/recovery")
async def recovery_state(request: Request):
    """Current durable recovery flags."""
    try:
        record = request.app.state.orchestrator.store.load()
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=f"Failed to read recovery state: {e}")
    return record.model_dump(mode="json")
