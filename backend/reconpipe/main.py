"""
reconpipe backend service: operator control + live progress.
"""

import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from reconpipe.collaborators import load_driver
from reconpipe.orchestrator import PipelineOrchestrator
from reconpipe.routes import control, events
from reconpipe.settings import PipelineSettings

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[PipelineSettings] = None,
    orchestrator: Optional[PipelineOrchestrator] = None,
    resume: bool = True,
) -> FastAPI:
    """
    Create the backend application.

    Args:
        settings: Pipeline settings (RECONPIPE_* environment when omitted)
        orchestrator: Pre-built orchestrator (tests inject one with fakes)
        resume: Apply the startup recovery policy and start the watcher

    Returns:
        FastAPI application with the orchestrator on ``app.state``
    """
    if orchestrator is None:
        settings = settings or PipelineSettings.from_env()
        orchestrator = PipelineOrchestrator(load_driver(settings.driver), settings=settings)

    app = FastAPI(title="reconpipe", version="0.1.0")

    # CORS middleware for the operator UI dev server
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.orchestrator = orchestrator

    if resume:
        decision = orchestrator.resume_on_startup()
        logger.info(f"Startup recovery: {decision.action.value}")

    app.include_router(control.router)
    app.include_router(events.router)

    @app.get("/")
    async def root():
        return {"service": "reconpipe", "status": "running"}

    return app


def run_server(settings: PipelineSettings) -> None:
    """Serve the backend with uvicorn until interrupted."""
    import uvicorn

    app = create_app(settings=settings)
    logger.info(f"Starting reconpipe on {settings.host}:{settings.port}")
    try:
        uvicorn.run(app, host=settings.host, port=settings.port)
    finally:
        app.state.orchestrator.shutdown()
