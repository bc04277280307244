"""
FastAPI Application — producer and admin surface for the dispatch queue.

Provides:
- Admission endpoints (single and bulk) for notification producers
- Queue stats and snapshot endpoints for the admin dashboard
- Pause / resume / clear controls
- Transport health

Queue failures never surface as HTTP errors; callers poll the stats and
job endpoints to see what happened to a message.
"""
from __future__ import annotations

import structlog
from datetime import datetime
from typing import Any, Optional
from contextlib import asynccontextmanager

# Load .env before any config is read
from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from channels.factory import create_transport
from config.settings import get_settings
from dispatch_queue.service import DispatchQueue, InvalidJobError
from models.schemas import JobView, MessageRequest, QueueStats, QueueStatus

logger = structlog.get_logger()

SHUTDOWN_TIMEOUT_SECONDS = 30.0


# ──────────────────────────────────────────────────────────────
#  Request/Response Models
# ──────────────────────────────────────────────────────────────

class BulkMessageRequest(BaseModel):
    messages: list[MessageRequest] = Field(min_length=1)


class EnqueueResponse(BaseModel):
    job_id: str
    status: str = "queued"


class BulkEnqueueResponse(BaseModel):
    job_ids: list[str]
    count: int


# ──────────────────────────────────────────────────────────────
#  App factory
# ──────────────────────────────────────────────────────────────

def _queue(request: Request) -> DispatchQueue:
    return request.app.state.dispatch_queue


def create_app(queue: Optional[DispatchQueue] = None) -> FastAPI:
    """
    Build the API. When no queue is injected, the lifespan builds one from
    settings and owns its transport.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = queue is None
        if owned:
            settings = get_settings()
            transport = create_transport(
                settings.transport, settings.dispatch.permanent_signatures
            )
            app.state.dispatch_queue = DispatchQueue(transport, settings.dispatch)
        else:
            app.state.dispatch_queue = queue

        dq: DispatchQueue = app.state.dispatch_queue
        logger.info("dispatch_api_started",
                    transport=getattr(dq.transport, "name", "custom"),
                    messages_per_minute=dq.messages_per_minute)
        yield

        if owned:
            await dq.shutdown(timeout=SHUTDOWN_TIMEOUT_SECONDS)
            await dq.transport.close()
        logger.info("dispatch_api_stopped")

    app = FastAPI(
        title="Notification Dispatch API",
        description="Rate-limited outbound notification queue",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(InvalidJobError)
    async def invalid_job_handler(request: Request, exc: InvalidJobError):
        return JSONResponse(status_code=422, content={"detail": str(exc)})

    # ══════════════════════════════════════════════════════════
    #  HEALTH
    # ══════════════════════════════════════════════════════════

    @app.get("/health")
    async def health(request: Request):
        dq = _queue(request)
        return {
            "status": "healthy",
            "timestamp": datetime.utcnow().isoformat(),
            "transport": await dq.transport.health_check(),
            "queue_length": len(dq),
            "processing": dq.processing,
        }

    # ══════════════════════════════════════════════════════════
    #  ADMISSION
    # ══════════════════════════════════════════════════════════

    @app.post("/api/v1/dispatch/messages", response_model=EnqueueResponse)
    async def enqueue_message(body: MessageRequest, request: Request):
        job_id = await _queue(request).enqueue(
            body.destination, body.payload, body.metadata,
            priority=body.priority, max_attempts=body.max_attempts,
        )
        return EnqueueResponse(job_id=job_id)

    @app.post("/api/v1/dispatch/messages/bulk", response_model=BulkEnqueueResponse)
    async def enqueue_bulk(body: BulkMessageRequest, request: Request):
        job_ids = await _queue(request).enqueue_bulk(body.messages)
        return BulkEnqueueResponse(job_ids=job_ids, count=len(job_ids))

    # ══════════════════════════════════════════════════════════
    #  OBSERVATION
    # ══════════════════════════════════════════════════════════

    @app.get("/api/v1/dispatch/stats", response_model=QueueStats)
    async def queue_stats(request: Request):
        return _queue(request).get_stats()

    @app.get("/api/v1/dispatch/queue", response_model=QueueStatus)
    async def queue_status(request: Request):
        return _queue(request).get_queue_status()

    @app.get("/api/v1/dispatch/jobs/{job_id}", response_model=JobView)
    async def get_job(job_id: str, request: Request):
        job = _queue(request).get_job(job_id)
        if job is None:
            raise HTTPException(404, f"Job {job_id} not found")
        return job

    # ══════════════════════════════════════════════════════════
    #  CONTROL
    # ══════════════════════════════════════════════════════════

    @app.post("/api/v1/dispatch/pause")
    async def pause_queue(request: Request) -> dict[str, Any]:
        dq = _queue(request)
        await dq.pause()
        return {"status": "paused", "queue_length": len(dq)}

    @app.post("/api/v1/dispatch/resume")
    async def resume_queue(request: Request) -> dict[str, Any]:
        dq = _queue(request)
        await dq.resume()
        return {"status": "resumed", "processing": dq.processing, "queue_length": len(dq)}

    @app.post("/api/v1/dispatch/clear")
    async def clear_queue(request: Request) -> dict[str, Any]:
        removed = await _queue(request).clear()
        return {"status": "cleared", "removed": removed}

    return app


app = create_app()


# ══════════════════════════════════════════════════════════════
#  Entry Point
# ══════════════════════════════════════════════════════════════

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
