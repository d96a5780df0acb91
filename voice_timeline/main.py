"""
FastAPI app: thin HTTP/WebSocket surface over the timeline engine.

POST /events/{event_name} feeds one transport event (state, speaking, listeners,
anonymous-slot). GET /api/timeline/* returns projections computed at request
time. WebSocket /ws/views receives every view the scheduler publishes:

    { "type": "view", "view": { "now", "daily", "leaderboard", "listeners", ... } }
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect

from voice_timeline.aggregation.hourly import build_daily_activity
from voice_timeline.aggregation.leaderboard import MINUTE_MS, build_talk_leaderboard, normalize_window_minutes
from voice_timeline.aggregation.listeners import build_listener_chart
from voice_timeline.backfill import BackfillService
from voice_timeline.config import get_settings
from voice_timeline.logging_setup import setup_logging
from voice_timeline.scheduler import ViewScheduler
from voice_timeline.timeline.applier import EventApplier
from voice_timeline.timeline.segments import unix_ms
from voice_timeline.websocket_manager import WebSocketManager

logger = logging.getLogger(__name__)

EVENT_NAMES = ("state", "speaking", "listeners", "anonymous-slot")

# Set in lifespan so the WebSocket route can reach the engine without a Request
_current_app: FastAPI | None = None


def _engine(app: FastAPI | None = None) -> Any:
    a = app or _current_app
    if a is None:
        raise RuntimeError("App not initialized (lifespan not run?)")
    return a.state


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _current_app
    _current_app = app
    setup_logging()
    settings = get_settings()

    applier = EventApplier()
    scheduler = ViewScheduler(applier)
    sockets = WebSocketManager()
    scheduler.subscribe(sockets.publish)
    backfill = BackfillService(applier)

    app.state.applier = applier
    app.state.scheduler = scheduler
    app.state.sockets = sockets
    app.state.backfill = backfill

    scheduler.start()
    backfill_task = asyncio.create_task(backfill.run())
    logger.info(
        "Timeline engine started (tick=%sms, history=%s)",
        settings.VIEW_TICK_INTERVAL_MS,
        settings.HISTORY_BASE_URL or "disabled",
    )
    yield
    # Shutdown: an unfinished backfill applies nothing
    backfill_task.cancel()
    try:
        await backfill_task
    except asyncio.CancelledError:
        pass
    except Exception:
        logger.exception("History backfill task failed")
    await scheduler.stop()
    _current_app = None


app = FastAPI(
    title="Voice Activity Timeline",
    description="Live speaking intervals, hourly talk time, rolling leaderboard and listener trend",
    lifespan=lifespan,
)


def _parse_window(window: str | None) -> int:
    """Query value -> one of the window options. 400 when not an integer."""
    if window is None or window == "":
        return normalize_window_minutes(None)
    try:
        minutes = int(window)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"window must be an integer number of minutes, got {window!r}")
    return normalize_window_minutes(minutes)


@app.post("/events/{event_name}")
async def post_event(event_name: str, request: Request) -> dict:
    """Feed one transport event. Malformed bodies are dropped, not rejected."""
    if event_name not in EVENT_NAMES:
        raise HTTPException(status_code=404, detail=f"Unknown event: {event_name}")
    body = await request.body()
    applied = _engine(request.app).applier.dispatch_json(event_name, body)
    return {"event": event_name, "applied": applied}


@app.get("/api/timeline/daily")
async def daily(request: Request) -> dict:
    applier = _engine(request.app).applier
    return build_daily_activity(applier.segments, unix_ms()).to_dict()


@app.get("/api/timeline/leaderboard")
async def leaderboard(request: Request, window: str | None = None) -> dict:
    minutes = _parse_window(window)
    applier = _engine(request.app).applier
    board = build_talk_leaderboard(applier.segments, minutes * MINUTE_MS, unix_ms(), roster=applier.roster)
    return board.to_dict()


@app.get("/api/timeline/listeners")
async def listeners(request: Request) -> dict:
    history = _engine(request.app).applier.listener_history
    chart = build_listener_chart(history.history, unix_ms(), current_count=history.count)
    return {**chart.to_dict(), "count": history.count}


@app.get("/api/timeline/view")
async def view(request: Request, window: str | None = None) -> dict:
    minutes = _parse_window(window)
    scheduler: ViewScheduler = _engine(request.app).scheduler
    return scheduler.current_view(window_minutes=minutes).to_dict()


@app.get("/health")
async def health(request: Request) -> dict:
    state = _engine(request.app)
    return {
        "status": "ok",
        "history_loading": state.applier.is_history_loading,
        "backfill_available": bool(state.backfill.available),
        "segments": len(state.applier.store),
        "view_clients": state.sockets.connection_count,
    }


@app.websocket("/ws/views")
async def websocket_views(websocket: WebSocket) -> None:
    """Push-only: every scheduler tick is sent as JSON. The current view is sent on connect."""
    await websocket.accept()
    state = _engine()
    try:
        await state.sockets.serve(websocket, initial=state.scheduler.current_view())
    except WebSocketDisconnect:
        pass
