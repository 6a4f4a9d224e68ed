"""
WebSocket handler for the progress feed.

Streams StrategyEvent records to connected clients as they are published.
"""

from __future__ import annotations

import asyncio
import contextlib

import structlog
from fastapi import WebSocket, WebSocketDisconnect

from tabflow.runner.events import EventBus, EventSubscription

logger = structlog.get_logger(__name__)

STRATEGY_UPDATE = "STRATEGY_UPDATE"


class WebSocketHandler:
    """
    Manages WebSocket connections for real-time strategy updates.

    Each client gets its own bounded subscription; a slow client loses
    events instead of holding back the runs that publish them.
    """

    def __init__(self, events: EventBus) -> None:
        self._events = events
        self._active_connections: dict[str, WebSocket] = {}
        self._log = logger.bind(component="websocket_handler")

    @property
    def connection_count(self) -> int:
        return len(self._active_connections)

    def is_connected(self, client_id: str) -> bool:
        return client_id in self._active_connections

    async def connect(self, client_id: str, websocket: WebSocket) -> None:
        """Accept and register a WebSocket connection."""
        await websocket.accept()
        self._active_connections[client_id] = websocket
        self._log.info("WebSocket connected", client_id=client_id)

    async def disconnect(self, client_id: str) -> None:
        if self._active_connections.pop(client_id, None) is not None:
            self._log.info("WebSocket disconnected", client_id=client_id)

    async def serve(self, client_id: str, websocket: WebSocket) -> None:
        """
        Stream events to a client until it disconnects.

        Incoming frames are ignored apart from keeping the connection alive.
        """
        await self.connect(client_id, websocket)
        subscription = self._events.subscribe()
        sender = asyncio.create_task(self._forward(client_id, websocket, subscription))

        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            self._log.debug("Client closed feed", client_id=client_id)
        finally:
            sender.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sender
            subscription.close()
            await self.disconnect(client_id)

    async def _forward(
        self,
        client_id: str,
        websocket: WebSocket,
        subscription: EventSubscription,
    ) -> None:
        async for event in subscription:
            try:
                await websocket.send_json({"type": STRATEGY_UPDATE, "payload": event.to_dict()})
            except (WebSocketDisconnect, RuntimeError) as e:
                self._log.warning("Failed to send event", client_id=client_id, error=str(e))
                return

    async def close_all(self) -> None:
        """Close all active WebSocket connections."""
        self._log.info("Closing all WebSocket connections")

        for client_id, websocket in list(self._active_connections.items()):
            try:
                await websocket.close()
            except RuntimeError as e:
                self._log.error("Failed to close WebSocket", client_id=client_id, error=str(e))

        self._active_connections.clear()
