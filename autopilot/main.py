"""FastAPI application for the autopilot pipeline.

Exposes the HTTP trigger for one pipeline invocation plus the operator
routes (project listing, approval, token refresh). The pipeline itself keeps
no in-process state; the app only wires requests to the same services the
CLI worker uses.

Run:
    uvicorn autopilot.main:app --host 0.0.0.0 --port 8000
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, status
from fastapi.responses import JSONResponse

from autopilot import __version__
from autopilot.database import dispose_engine
from autopilot.routes import pipeline, projects
from autopilot.utils.logging import configure_logging, get_logger

log = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Configure logging on startup; close pooled DB connections on shutdown."""
    configure_logging()
    log.info("api_started", version=__version__)

    yield

    await dispose_engine()
    log.info("api_stopped")


app = FastAPI(
    title="Autopilot Video Pipeline",
    description="Resumable, stage-by-stage video production pipeline",
    version=__version__,
    lifespan=lifespan,
)

app.include_router(pipeline.router)
app.include_router(projects.router)


@app.get("/health", status_code=status.HTTP_200_OK)
async def health_check() -> JSONResponse:
    """Liveness probe; does not touch the database."""
    return JSONResponse(
        content={
            "status": "healthy",
            "service": "autopilot-pipeline",
            "version": __version__,
        }
    )
