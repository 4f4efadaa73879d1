"""FastAPI application factory for the NetWatch API."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import FastAPI, Response, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from netwatch.api.metrics import CONTENT_TYPE_LATEST, render_metrics
from netwatch.api.routes import create_routes
from netwatch.api.websocket import WebSocketManager
from netwatch.core.events import EventBus
from netwatch.core.store import DeviceStore

if TYPE_CHECKING:
    from netwatch.main import Engine

logger = logging.getLogger(__name__)



def _add_metrics_route(app: FastAPI, store: DeviceStore) -> None:
    @app.get("/metrics", include_in_schema=False)
    async def metrics() -> Response:
        try:
            body = render_metrics(await store.get_monitored_devices())
        except Exception as exc:
            logger.error("Error generating metrics: %s", exc)
            return Response("Error generating metrics", status_code=500, media_type="text/plain")
        return Response(body, media_type=CONTENT_TYPE_LATEST)


def create_app(
    store: DeviceStore,
    engine: Engine,
    event_bus: EventBus,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="NetWatch API",
        description="Device health monitoring and subnet discovery API",
        version="0.1.0",
    )

    # CORS: allow all origins for local use
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    ws_manager = WebSocketManager(event_bus)
    app.state.ws_manager = ws_manager

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        await ws_manager.stop()

    app.include_router(create_routes(store, engine, event_bus))
    _add_metrics_route(app, store)

    @app.websocket("/ws/events")
    async def websocket_endpoint(websocket: WebSocket) -> None:
        await ws_manager.connect(websocket)
        try:
            while True:
                # Keep connection alive; handle pings from client
                data = await websocket.receive_text()
                if data == "ping":
                    await websocket.send_text("pong")
        except WebSocketDisconnect:
            ws_manager.disconnect(websocket)
        except Exception:
            ws_manager.disconnect(websocket)

    return app


def create_metrics_app(store: DeviceStore) -> FastAPI:
    """Standalone app exposing only /metrics, for a separate metrics port."""
    app = FastAPI(title="NetWatch metrics", docs_url=None, redoc_url=None, openapi_url=None)
    _add_metrics_route(app, store)
    return app
