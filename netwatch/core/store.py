"""Store and event-sink contracts consumed by the monitoring engine.

The scheduler and the discovery scanner only talk to persistence and to
real-time subscribers through these two protocols.  ``DeviceDatabase`` and
``EventBus`` are the production implementations; ``MemoryDeviceStore`` keeps
everything in process and honours the same merge rules.
"""

from __future__ import annotations

import asyncio
from typing import Protocol as TypingProtocol

from netwatch.core.models import (
    CheckResult,
    DeviceEvent,
    DeviceUpdate,
    DiscoveredDevice,
    MonitoredDevice,
    _now,
)


class DeviceStore(TypingProtocol):
    async def upsert_monitored_device(self, device: MonitoredDevice) -> None: ...

    async def get_monitored_devices(self) -> list[MonitoredDevice]: ...

    async def update_monitored_status(self, result: CheckResult) -> MonitoredDevice | None: ...

    async def get_discovered_devices(self) -> list[DiscoveredDevice]: ...

    async def upsert_discovered_device(
        self,
        address: str,
        hostname: str | None = None,
        hardware_address: str | None = None,
    ) -> DiscoveredDevice: ...

    async def get_monitored_addresses(self) -> frozenset[str]: ...


class EventSink(TypingProtocol):
    async def emit_device_update(self, update: DeviceUpdate) -> None: ...

    async def emit_discovery(self, device: DiscoveredDevice) -> None: ...

    async def emit_initial_snapshot(
        self,
        queue: asyncio.Queue[DeviceEvent],
        monitored: list[MonitoredDevice],
        discovered: list[DiscoveredDevice],
    ) -> None: ...


def merge_status(device: MonitoredDevice, result: CheckResult) -> MonitoredDevice:
    """Fold a check result into a monitored device.

    Uptime ticks are a lifetime counter: they grow by one on every alive
    check and are never reset.
    """
    return device.model_copy(
        update={
            "last_checked_at": result.observed_at,
            "last_alive": result.is_alive,
            "last_latency_ms": result.latency_ms,
            "last_status_code": result.status_code,
            "last_error": result.error,
            "uptime_ticks": device.uptime_ticks + (1 if result.is_alive else 0),
        }
    )


def merge_sighting(
    existing: DiscoveredDevice | None,
    address: str,
    hostname: str | None,
    hardware_address: str | None,
) -> DiscoveredDevice:
    """Apply one sweep sighting to a discovery record."""
    now = _now()
    if existing is None:
        return DiscoveredDevice(
            address=address,
            hostname=hostname,
            hardware_address=hardware_address,
            first_seen_at=now,
            last_seen_at=now,
            total_seen_ticks=1,
        )
    return existing.model_copy(
        update={
            "hostname": hostname or existing.hostname,
            "hardware_address": hardware_address or existing.hardware_address,
            "last_seen_at": now,
            "total_seen_ticks": existing.total_seen_ticks + 1,
        }
    )


def _section_order(device: MonitoredDevice) -> tuple[str, str]:
    return (device.section, device.display_name)


class MemoryDeviceStore:
    """In-process DeviceStore, used by tests and ``--dry-run`` commands."""

    def __init__(self) -> None:
        self._monitored: dict[str, MonitoredDevice] = {}
        self._discovered: dict[str, DiscoveredDevice] = {}
        self._lock = asyncio.Lock()

    async def upsert_monitored_device(self, device: MonitoredDevice) -> None:
        async with self._lock:
            existing = self._monitored.get(device.address)
            if existing is None:
                self._monitored[device.address] = device
                return
            self._monitored[device.address] = existing.model_copy(
                update={
                    "display_name": device.display_name,
                    "protocol": device.protocol,
                    "section": device.section,
                    "port": device.port,
                    "http_path": device.http_path,
                }
            )

    async def get_monitored_devices(self) -> list[MonitoredDevice]:
        return sorted(self._monitored.values(), key=_section_order)

    async def update_monitored_status(self, result: CheckResult) -> MonitoredDevice | None:
        async with self._lock:
            device = self._monitored.get(result.address)
            if device is None:
                return None
            merged = merge_status(device, result)
            self._monitored[result.address] = merged
            return merged

    async def get_discovered_devices(self) -> list[DiscoveredDevice]:
        devices = [
            d for addr, d in self._discovered.items() if addr not in self._monitored
        ]
        return sorted(devices, key=lambda d: d.last_seen_at, reverse=True)

    async def upsert_discovered_device(
        self,
        address: str,
        hostname: str | None = None,
        hardware_address: str | None = None,
    ) -> DiscoveredDevice:
        async with self._lock:
            merged = merge_sighting(
                self._discovered.get(address), address, hostname, hardware_address
            )
            self._discovered[address] = merged
            return merged

    async def get_monitored_addresses(self) -> frozenset[str]:
        return frozenset(self._monitored)

    async def close(self) -> None:
        pass
