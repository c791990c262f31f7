"""FastAPI application for the metadata proxy service.

Serves the latest stream metadata and a server-sent event feed of
updates while a background task follows the upstream stream.
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Depends, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse
from pydantic import BaseModel

from . import __version__
from .config import Config
from .context import AppContext
from .distributor import Distributor, FeedItem
from .models import MetadataRecord
from .stream_fetcher import SupervisorState

logger = logging.getLogger(__name__)

SERVICE_NAME = "metadata-proxy"
NOT_AVAILABLE_TEXT = "No metadata available"
KEEPALIVE_COMMENT = ": keep-alive-text\n\n"


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    service: str
    timestamp: str
    stream_state: str
    metadata_available: bool
    subscribers: int


class StatusResponse(BaseModel):
    """Status endpoint response."""

    service: str
    timestamp: str
    supervisor: dict
    distributor: dict
    limiter: dict


def get_context(request: Request) -> AppContext:
    """Return the context attached to the running application."""
    return request.app.state.context


def format_event(item: FeedItem) -> str:
    """Format one feed item as a server-sent event."""
    if isinstance(item, MetadataRecord):
        return f"data: {json.dumps(item.to_dict())}\n\n"
    return f"data: {NOT_AVAILABLE_TEXT}\n\n"


async def live_events(distributor: Distributor, keepalive: float) -> AsyncIterator[str]:
    """Yield the current snapshot, then every publication, as SSE text.

    A comment line is sent whenever nothing was published for
    ``keepalive`` seconds. The subscription is released when the
    consumer stops iterating.
    """
    async with distributor.subscribe() as subscription:
        while True:
            try:
                item = await subscription.get(timeout=keepalive)
            except asyncio.TimeoutError:
                yield KEEPALIVE_COMMENT
                continue
            yield format_event(item)


router = APIRouter()


@router.get("/metadata")
async def get_metadata(ctx: AppContext = Depends(get_context)):
    """Get the latest published metadata.

    Returns:
        JSONResponse: Record with extension keys at the top level, or a
        404 plain text response when nothing was published yet.
    """
    record = ctx.distributor.read_current()
    if record is None:
        return PlainTextResponse(NOT_AVAILABLE_TEXT, status_code=status.HTTP_404_NOT_FOUND)
    return JSONResponse(record.to_dict())


@router.get("/live")
async def get_live_metadata(ctx: AppContext = Depends(get_context)):
    """Stream metadata updates as server-sent events."""
    return StreamingResponse(
        live_events(ctx.distributor, ctx.config.keepalive_seconds),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get("/health", response_model=HealthResponse)
async def health_check(ctx: AppContext = Depends(get_context)):
    """Health check endpoint.

    Returns:
        HealthResponse: "healthy" while the upstream stream is being read.
    """
    state = ctx.supervisor.state
    return HealthResponse(
        status="healthy" if state is SupervisorState.STREAMING else "degraded",
        service=SERVICE_NAME,
        timestamp=datetime.now().isoformat(),
        stream_state=state.value,
        metadata_available=ctx.distributor.read_current() is not None,
        subscribers=ctx.distributor.subscriber_count,
    )


@router.get("/status", response_model=StatusResponse)
async def get_status(ctx: AppContext = Depends(get_context)):
    """Get detailed pipeline status."""
    return StatusResponse(
        service=SERVICE_NAME,
        timestamp=datetime.now().isoformat(),
        supervisor=ctx.supervisor.get_status(),
        distributor=ctx.distributor.get_stats(),
        limiter=ctx.fetcher.limiter.get_stats(),
    )


@router.get("/")
async def root():
    """Root endpoint.

    Returns:
        dict: Service information.
    """
    return {
        "service": SERVICE_NAME,
        "version": __version__,
        "status": "running",
        "endpoints": {
            "metadata": "/metadata",
            "live": "/live",
            "health": "/health",
            "status": "/status",
        },
    }


def create_app(
    config: Optional[Config] = None,
    context: Optional[AppContext] = None,
    start_pipeline: bool = True,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        config: Service configuration, loaded from the environment if omitted
        context: Prebuilt context, built from ``config`` if omitted
        start_pipeline: Run the stream supervisor during the app lifespan

    Returns:
        FastAPI: Configured application.
    """
    if context is None:
        if config is None:
            config = Config.from_env()
            config.validate()
        context = AppContext.from_config(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager for startup/shutdown."""
        logger.info("Starting metadata proxy service...")
        logger.info(f"Streaming from: {context.config.stream_url}")

        pipeline_task = None
        if start_pipeline:
            pipeline_task = asyncio.create_task(context.supervisor.run())

        try:
            yield
        finally:
            logger.info("Shutting down metadata proxy service...")
            if pipeline_task:
                context.supervisor.stop()
                pipeline_task.cancel()
                try:
                    await pipeline_task
                except asyncio.CancelledError:
                    pass
            logger.info("Service shut down complete")

    app = FastAPI(
        title="Metadata Proxy Service",
        description="Now-playing metadata extracted from an Ogg/Vorbis stream",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.context = context

    app.add_middleware(
        CORSMiddleware,
        allow_origins=context.config.cors_origins,
        allow_methods=["GET"],
        allow_headers=["*"],
    )
    app.include_router(router)

    return app
