"""
Operator API - Health, readiness, status and event stream endpoints.

Serves:
- ``GET /healthz``: liveness
- ``GET /readyz``: 200 once every cache has synced, 503 before
- ``GET /status``: work queue and cache state
- ``GET /events``: SSE stream of cluster events, optionally per namespace
"""

import asyncio
import logging
from typing import List, Optional

import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from config import APIConfig
from controller import ElasticsearchController
from events import ClusterEvent, EventBus

logger = logging.getLogger(__name__)


class CacheStatus(BaseModel):
    """Sync state of one informer cache."""

    kind: str
    synced: bool
    objects: int = Field(..., description="Number of cached objects")


class QueueStatus(BaseModel):
    """Work queue sizes."""

    name: str
    queued: int
    processing: int
    waiting: int = Field(..., description="Keys waiting out a retry backoff")
    shutting_down: bool


class StatusResponse(BaseModel):
    """Response model for the controller status."""

    running: bool
    workers: int
    queue: QueueStatus
    caches: List[CacheStatus]


def create_app(
    controller: ElasticsearchController, event_bus: Optional[EventBus] = None
) -> FastAPI:
    """Build the FastAPI application for a controller."""
    app = FastAPI(
        title="Elasticsearch Operator API",
        description="Health and status of the ElasticsearchCluster controller",
        version="1.0.0",
    )

    @app.get("/healthz")
    async def healthz():
        """Liveness check."""
        return {"status": "ok"}

    @app.get("/readyz")
    async def readyz():
        """Readiness check: every watched cache has completed its initial list."""
        caches = {
            informer.kind: informer.has_synced() for informer in controller.informers
        }
        ready = all(caches.values())
        return JSONResponse(
            status_code=200 if ready else 503,
            content={"ready": ready, "caches": caches},
        )

    @app.get("/status", response_model=StatusResponse)
    async def status():
        """Controller, queue and cache status."""
        return StatusResponse(**controller.status())

    @app.get("/events")
    async def stream_events(namespace: Optional[str] = None):
        """SSE stream of cluster events.

        Optionally filter by namespace.
        """
        if event_bus is None:
            raise HTTPException(status_code=503, detail="Event streaming not available")

        if namespace:

            def filter_fn(event: ClusterEvent) -> bool:
                return event.namespace == namespace

        else:
            filter_fn = None

        subscriber_id, subscription = event_bus.subscribe(filter_fn)

        async def event_generator():
            try:
                async for event in subscription:
                    yield event.to_sse()
            except asyncio.CancelledError:
                pass
            finally:
                event_bus.unsubscribe(subscriber_id)

        return StreamingResponse(
            event_generator(),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "X-Accel-Buffering": "no",
            },
        )

    return app


class APIServer:
    """Runs the operator API with uvicorn inside the operator's event loop."""

    def __init__(self, app: FastAPI, config: APIConfig):
        self.app = app
        self.config = config
        self.server: Optional[uvicorn.Server] = None

    async def start(self) -> None:
        """Serve until :meth:`stop` is called."""
        server_config = uvicorn.Config(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level.lower(),
        )
        self.server = uvicorn.Server(server_config)
        logger.info(f"Starting operator API on {self.config.host}:{self.config.port}")
        await self.server.serve()

    async def stop(self) -> None:
        """Ask the server to exit gracefully."""
        logger.info("Stopping operator API")
        if self.server:
            self.server.should_exit = True

    def is_running(self) -> bool:
        return bool(self.server and self.server.started)
