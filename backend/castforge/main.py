"""
FastAPI application for the podcast pipeline.

Provides HTTP API for task submission, highlights and avatar videos,
with WebSocket progress updates.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from castforge.api import highlight_routes, routes, voice_routes, websocket
from castforge.api.dependencies import get_container
from castforge.config import get_settings
from castforge.logging_config import setup_logging
from castforge.services.ai_clients import AIClientError
from castforge.services.errors import (
    CandidatesExhausted,
    InvalidInput,
    InvalidTransition,
    NotFound,
    user_safe_message,
)

# Configure logging before anything else
settings = get_settings()
setup_logging(settings)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Creates data directories, wires services and runs the worker pool.
    """
    logger.info("Starting CastForge API")
    logger.info(f"Log level: {settings.log_level}")
    logger.info(f"Store directory: {settings.store_root}")
    logger.info(f"Storage directory: {settings.storage_root}")

    for directory in (settings.temp_dir, settings.storage_root, settings.store_root):
        directory.mkdir(parents=True, exist_ok=True)

    container = app.dependency_overrides.get(get_container, get_container)()
    await container.worker.start()

    yield

    logger.info("Shutting down CastForge API")
    await container.worker.stop()
    await container.close()


app = FastAPI(
    title="CastForge API",
    description="API turning videos, articles and text into narrated podcast episodes",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(routes.router)
app.include_router(highlight_routes.router)
app.include_router(voice_routes.router)
app.include_router(websocket.router)

# Stored audio (public_base_url points here)
app.mount("/files", StaticFiles(directory=settings.storage_root, check_dir=False), name="files")


# ═══════════════════════════════════════════════════════════════════════════════
# Error mapping
# ═══════════════════════════════════════════════════════════════════════════════


@app.exception_handler(InvalidInput)
async def invalid_input_handler(request: Request, exc: InvalidInput) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(InvalidTransition)
async def invalid_transition_handler(request: Request, exc: InvalidTransition) -> JSONResponse:
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(AIClientError)
@app.exception_handler(CandidatesExhausted)
async def provider_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"{request.method} {request.url.path} failed: {type(exc).__name__}: {exc}")
    return JSONResponse(status_code=502, content={"detail": user_safe_message(exc)})


@app.get("/health")
async def health_check() -> dict:
    """
    Health check endpoint.

    Returns:
        Basic health status
    """
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "castforge.main:app",
        host="0.0.0.0",
        port=8801,
        reload=True,
    )
