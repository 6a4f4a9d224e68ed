"""
FastAPI application for the automation engine.

Exposes the command envelope over HTTP and the progress feed over a
WebSocket. The engine is built once in the lifespan handler.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

import structlog
from fastapi import FastAPI, HTTPException, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from tabflow import __version__
from tabflow.api.commands import CommandRequest
from tabflow.api.websocket_handler import WebSocketHandler
from tabflow.config import load_engine_config
from tabflow.engine import Engine

logger = structlog.get_logger(__name__)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: datetime
    version: str
    browser_connected: bool
    attached_tabs: int
    shadow_tabs: int


class StepSummary(BaseModel):
    id: str
    action: str


class StrategySummary(BaseModel):
    """Catalog entry as listed by the API."""

    id: str
    name: str
    description: str
    steps: list[StepSummary]


class AppState:
    """Application state container."""

    engine: Engine | None = None
    websockets: WebSocketHandler | None = None


state = AppState()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan management."""
    log = logger.bind(component="api")
    log.info("Starting tabflow API server")

    state.engine = await Engine.create(load_engine_config())
    state.websockets = WebSocketHandler(state.engine.events)

    log.info("tabflow API server started")

    yield

    log.info("Shutting down tabflow API server")
    if state.websockets:
        await state.websockets.close_all()
    if state.engine:
        await state.engine.close()
    state.engine = None
    state.websockets = None


def _require_engine() -> Engine:
    if state.engine is None:
        raise HTTPException(status_code=503, detail="Engine not available")
    return state.engine


def create_app() -> FastAPI:
    """Create FastAPI application."""
    app = FastAPI(
        title="tabflow",
        description="Browser automation strategies with vision-healed click targets",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=os.environ.get("CORS_ORIGINS", "*").split(","),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health", response_model=HealthResponse)
    async def health_check() -> HealthResponse:
        """Health check endpoint."""
        engine = state.engine
        return HealthResponse(
            status="healthy" if engine and engine.connection.is_connected else "degraded",
            timestamp=datetime.now(UTC),
            version=__version__,
            browser_connected=bool(engine and engine.connection.is_connected),
            attached_tabs=len(engine.sessions.attached_tabs()) if engine else 0,
            shadow_tabs=len(engine.tabs.shadow_tabs()) if engine else 0,
        )

    @app.get("/api/v1/strategies", response_model=list[StrategySummary])
    async def list_strategies() -> list[StrategySummary]:
        """List the strategy catalog."""
        engine = _require_engine()
        return [
            StrategySummary(
                id=s.id,
                name=s.name,
                description=s.description,
                steps=[StepSummary(id=step.id, action=str(step.action)) for step in s.steps],
            )
            for s in engine.catalog.strategies()
        ]

    @app.get("/api/v1/stats")
    async def get_stats() -> dict[str, Any]:
        """Healing statistics of the running engine."""
        engine = _require_engine()
        return {"healing": engine.interpreter.healing_stats}

    @app.post("/api/v1/commands")
    async def dispatch_command(request: CommandRequest) -> dict[str, Any]:
        """Execute a command envelope."""
        engine = _require_engine()
        response = await engine.dispatcher.dispatch(request)
        return response.to_envelope()

    @app.websocket("/ws/events")
    async def event_feed(websocket: WebSocket) -> None:
        """Progress feed of strategy events."""
        if state.websockets is None:
            await websocket.close(code=1013)
            return
        await state.websockets.serve(uuid.uuid4().hex[:12], websocket)

    return app


def run_server(host: str = "127.0.0.1", port: int = 8080) -> None:
    """Run the API server."""
    import uvicorn

    uvicorn.run(
        "tabflow.api.main:create_app",
        host=host,
        port=port,
        factory=True,
        reload=os.environ.get("DEBUG", "false").lower() == "true",
    )


if __name__ == "__main__":
    run_server()
