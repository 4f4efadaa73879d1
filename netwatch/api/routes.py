"""REST API route definitions."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, HTTPException, Query

from netwatch.api.schemas import (
    DiscoveredDeviceResponse,
    EventResponse,
    MonitoredDeviceResponse,
    NetworkResponse,
    ScanTriggerResponse,
    StatsResponse,
)
from netwatch.core.events import EventBus
from netwatch.core.models import DiscoveredDevice, MonitoredDevice
from netwatch.core.store import DeviceStore

if TYPE_CHECKING:
    from netwatch.main import Engine


def monitored_to_response(device: MonitoredDevice) -> MonitoredDeviceResponse:
    return MonitoredDeviceResponse(
        address=device.address,
        name=device.display_name,
        section=device.section,
        type=device.protocol,
        port=device.port,
        endpoint=device.endpoint,
        is_alive=device.last_alive,
        latency_ms=device.last_latency_ms,
        status_code=device.last_status_code,
        error=device.last_error,
        last_checked_at=device.last_checked_at,
        uptime_ticks=device.uptime_ticks,
    )


def discovered_to_response(device: DiscoveredDevice) -> DiscoveredDeviceResponse:
    return DiscoveredDeviceResponse(**device.model_dump())


def create_routes(
    store: DeviceStore,
    engine: Engine,
    event_bus: EventBus,
) -> APIRouter:
    """Create the API router with injected dependencies."""
    router = APIRouter(prefix="/api")

    @router.get("/devices", response_model=list[MonitoredDeviceResponse])
    async def list_devices(
        section: str | None = Query(None, description="Filter by section"),
    ) -> list[MonitoredDeviceResponse]:
        devices = await store.get_monitored_devices()
        if section is not None:
            devices = [d for d in devices if d.section == section]
        return [monitored_to_response(d) for d in devices]

    @router.get("/discovered", response_model=list[DiscoveredDeviceResponse])
    async def list_discovered() -> list[DiscoveredDeviceResponse]:
        devices = await store.get_discovered_devices()
        return [discovered_to_response(d) for d in devices]

    @router.get("/networks", response_model=list[NetworkResponse])
    async def list_networks() -> list[NetworkResponse]:
        networks: list[NetworkResponse] = []
        for index, (scanner, cfg) in enumerate(zip(engine.scanners, engine.settings.networks)):
            summary = scanner.last_summary
            networks.append(
                NetworkResponse(
                    index=index,
                    subnet=scanner.subnet,
                    scan_interval=cfg.scan_interval,
                    state=scanner.state,
                    last_probed=summary.probed if summary else None,
                    last_alive=summary.alive if summary else None,
                    last_duration_seconds=summary.duration_seconds if summary else None,
                    last_error=summary.error if summary else None,
                )
            )
        return networks

    @router.post("/networks/{index}/scan", response_model=ScanTriggerResponse)
    async def trigger_scan(index: int) -> ScanTriggerResponse:
        if not 0 <= index < len(engine.scanners):
            raise HTTPException(status_code=404, detail="Network not found")
        if engine.trigger_scan(index):
            return ScanTriggerResponse(status="ok", message="Scan triggered")
        return ScanTriggerResponse(
            status="busy",
            message=f"Scanner is {engine.scanners[index].state.value}",
        )

    @router.get("/stats", response_model=StatsResponse)
    async def get_stats() -> StatsResponse:
        monitored = await store.get_monitored_devices()
        discovered = await store.get_discovered_devices()
        return StatsResponse(
            monitored=len(monitored),
            online=sum(1 for d in monitored if d.last_alive),
            discovered=len(discovered),
        )

    @router.get("/events", response_model=list[EventResponse])
    async def get_recent_events(
        limit: int = Query(100, ge=1, le=500),
    ) -> list[EventResponse]:
        events = event_bus.recent_events[:limit]
        return [
            EventResponse(
                event_type=e.event_type.value,
                address=e.address,
                timestamp=e.timestamp.isoformat(),
                payload=e.to_message(),
            )
            for e in events
        ]

    return router
