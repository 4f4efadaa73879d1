"""WebSocket connection manager for real-time event broadcasting."""

from __future__ import annotations

import asyncio
import json
import logging

from fastapi import WebSocket

from netwatch.core.events import EventBus
from netwatch.core.models import DeviceEvent

logger = logging.getLogger(__name__)


class WebSocketManager:
    """Manages WebSocket connections and broadcasts events from the event bus.

    Every client gets its own bus subscription, seeded with the initial
    snapshot, so a viewer that connects mid-cycle starts from current state.
    """

    def __init__(self, event_bus: EventBus) -> None:
        self._event_bus = event_bus
        self._connections: dict[WebSocket, asyncio.Task[None]] = {}

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    async def connect(self, websocket: WebSocket) -> None:
        """Accept a new WebSocket connection and start its sender."""
        await websocket.accept()
        queue = await self._event_bus.subscribe_with_snapshot()
        self._connections[websocket] = asyncio.create_task(self._sender(websocket, queue))
        logger.info("WebSocket client connected (total: %d)", self.connection_count)

    def disconnect(self, websocket: WebSocket) -> None:
        """Remove a disconnected WebSocket client."""
        task = self._connections.pop(websocket, None)
        if task is None:
            return
        task.cancel()
        logger.info("WebSocket client disconnected (total: %d)", self.connection_count)

    async def stop(self) -> None:
        """Cancel every sender task."""
        for websocket in list(self._connections):
            self.disconnect(websocket)

    async def _sender(self, websocket: WebSocket, queue: asyncio.Queue[DeviceEvent]) -> None:
        try:
            while True:
                event = await queue.get()
                await websocket.send_text(json.dumps(event.to_message()))
        except asyncio.CancelledError:
            pass
        except Exception as exc:
            logger.debug("WebSocket send failed: %s", exc)
        finally:
            self._event_bus.unsubscribe(queue)
