"""
app.py — FastAPI application for the Insight Copilot.

Endpoints:
    POST   /chat/message     — Run the agent graph for a chat message
    GET    /insights         — List stored insights (newest first)
    GET    /insights/{id}    — Fetch one insight
    PATCH  /insights/{id}    — Pin / unpin an insight
    DELETE /insights/{id}    — Delete an insight
    GET    /health           — Health check

Run with:
    uvicorn insight_copilot.app:app --reload --port 8000
"""

import asyncio
import contextlib
import logging
import time
from datetime import datetime

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

# Bootstrap logging before service imports
from insight_copilot.logging_config import setup_logging
setup_logging("INFO")

from insight_copilot.agent.errors import CopilotError, InsightNotFoundError
from insight_copilot.agent.state import DatasetRef, Message, SessionContext
from insight_copilot.services.agent_service import CopilotService

logger = logging.getLogger(__name__)

# How often a running chat request checks whether its client went away
DISCONNECT_POLL_S = 0.5

# ─── FastAPI app ───────────────────────────────────────────────────────────────
app = FastAPI(
    title="Insight Copilot",
    description="Multi-agent analytics copilot: routing, dataset retrieval and insight synthesis",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

# Lazy service singleton
_service: CopilotService | None = None


def get_service() -> CopilotService:
    global _service
    if _service is None:
        _service = CopilotService()
    return _service


# ─── Request / Response Models ─────────────────────────────────────────────────

class ChatRequest(BaseModel):
    message: str
    session_id: str | None = None
    datasets: list[DatasetRef] = Field(default_factory=list)
    history: list[Message] = Field(default_factory=list)


class ChatResponse(BaseModel):
    message: str
    status: str
    abort_reason: str | None = None
    intent: str | None = None
    datasets: list[dict] = []
    insights: list[dict] = []
    visualization: dict | None = None
    saved_insight_ids: list[str] = []
    session_id: str
    path: list[str] = []
    metrics: dict = {}
    error: str | None = None


class InsightOut(BaseModel):
    id: str
    type: str
    title: str
    content: str
    confidence: float
    pinned: bool
    created_at: datetime
    session_id: str | None = None
    query: str | None = None


class InsightList(BaseModel):
    insights: list[InsightOut]
    count: int


class PinRequest(BaseModel):
    pinned: bool


# ─── Timing Middleware ─────────────────────────────────────────────────────────

@app.middleware("http")
async def log_request_timing(request: Request, call_next):
    t0 = time.perf_counter()
    logger.info("Request: %s %s", request.method, request.url.path)
    response = await call_next(request)
    elapsed = time.perf_counter() - t0
    logger.info(
        "Response: %s %s → %d in %.3fs",
        request.method, request.url.path, response.status_code, elapsed,
    )
    response.headers["X-Process-Time"] = f"{elapsed:.3f}"
    return response


async def _watch_disconnect(request: Request, cancel_event: asyncio.Event) -> None:
    """Set `cancel_event` once the client has gone away."""
    while not cancel_event.is_set():
        if await request.is_disconnected():
            logger.warning("Client disconnected — cancelling run")
            cancel_event.set()
            return
        await asyncio.sleep(DISCONNECT_POLL_S)


# ─── Endpoints ─────────────────────────────────────────────────────────────────

@app.get("/health")
async def health_check():
    """Simple health check endpoint."""
    return {"status": "ok", "service": "Insight Copilot"}


@app.post("/chat/message", response_model=ChatResponse)
async def chat_message(body: ChatRequest, request: Request,
                       service: CopilotService = Depends(get_service)):
    """
    Run the agent graph for one chat message.

    Request body:
        {"message": "Show me sales trends", "session_id": "s-1",
         "datasets": [{"id": "ds-1", "name": "Sales 2024", "source_type": "csv"}]}
    """
    if not body.message.strip():
        raise HTTPException(status_code=400, detail="Message must not be empty.")

    logger.info("POST /chat/message — message=%r", body.message[:100])

    context = SessionContext(session_id=body.session_id, datasets=body.datasets, history=body.history)
    cancel_event = asyncio.Event()
    watcher = asyncio.create_task(_watch_disconnect(request, cancel_event))
    try:
        response = await service.run(body.message, context, cancel_event=cancel_event)
    finally:
        watcher.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await watcher

    return ChatResponse(**response)


@app.get("/insights", response_model=InsightList)
def list_insights(pinned: bool | None = None, session_id: str | None = None,
                  service: CopilotService = Depends(get_service)):
    filter = {}
    if pinned is not None:
        filter["pinned"] = pinned
    if session_id is not None:
        filter["session_id"] = session_id
    try:
        records = service.store.list(filter)
    except CopilotError as exc:
        logger.error("Error fetching insights: %s", exc)
        raise HTTPException(status_code=503, detail="Failed to fetch insights") from exc
    insights = [InsightOut(**r.model_dump(mode="json")) for r in records]
    return InsightList(insights=insights, count=len(insights))


@app.get("/insights/{insight_id}", response_model=InsightOut)
def get_insight(insight_id: str, service: CopilotService = Depends(get_service)):
    try:
        return InsightOut(**service.store.get(insight_id).model_dump(mode="json"))
    except InsightNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Insight not found") from exc
    except CopilotError as exc:
        logger.error("Insight store error: %s", exc)
        raise HTTPException(status_code=503, detail="Insight store unavailable") from exc


@app.patch("/insights/{insight_id}", response_model=InsightOut)
def pin_insight(insight_id: str, body: PinRequest,
                service: CopilotService = Depends(get_service)):
    try:
        return InsightOut(**service.store.set_pinned(insight_id, body.pinned).model_dump(mode="json"))
    except InsightNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Insight not found") from exc
    except CopilotError as exc:
        logger.error("Insight store error: %s", exc)
        raise HTTPException(status_code=503, detail="Insight store unavailable") from exc


@app.delete("/insights/{insight_id}")
def delete_insight(insight_id: str, service: CopilotService = Depends(get_service)):
    try:
        service.store.delete(insight_id)
    except InsightNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Insight not found") from exc
    except CopilotError as exc:
        logger.error("Insight store error: %s", exc)
        raise HTTPException(status_code=503, detail="Insight store unavailable") from exc
    return {"deleted": insight_id, "message": "Insight deleted successfully"}


# ─── Startup / Shutdown Events ────────────────────────────────────────────────

@app.on_event("startup")
async def on_startup():
    logger.info("FastAPI startup — Insight Copilot ready.")


@app.on_event("shutdown")
async def on_shutdown():
    logger.info("FastAPI shutdown.")
