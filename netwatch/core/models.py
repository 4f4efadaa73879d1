"""Device models and enums for NetWatch."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class Protocol(str, Enum):
    ICMP = "icmp"
    HTTP = "http"


class EventType(str, Enum):
    DEVICE_UPDATE = "device_update"
    DISCOVERED_DEVICE = "discovered_device"
    INITIAL_DATA = "initial_data"


class ScannerState(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    STOPPING = "stopping"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class MonitoredDevice(BaseModel):
    """An explicitly configured address under periodic health check."""

    address: str  # Primary key
    display_name: str
    protocol: Protocol = Protocol.ICMP
    section: str = "default"
    port: int | None = None
    http_path: str = "/"

    last_checked_at: datetime | None = None
    last_alive: bool = False
    last_latency_ms: float | None = None
    last_status_code: int | None = None
    last_error: str | None = None
    uptime_ticks: int = 0

    @property
    def endpoint(self) -> str | None:
        """URL checked for HTTP devices, None for ICMP."""
        if self.protocol is not Protocol.HTTP:
            return None
        return f"http://{self.address}:{self.port or 80}{self.http_path}"


class DiscoveredDevice(BaseModel):
    """An address seen alive during a subnet sweep."""

    address: str  # Primary key
    hostname: str | None = None
    hardware_address: str | None = None
    first_seen_at: datetime = Field(default_factory=_now)
    last_seen_at: datetime = Field(default_factory=_now)
    total_seen_ticks: int = 1

    @property
    def display_name(self) -> str:
        return self.hostname or self.address


class CheckResult(BaseModel):
    """Outcome of a single probe; never persisted as-is."""

    address: str
    is_alive: bool
    latency_ms: float | None = None
    status_code: int | None = None
    error: str | None = None
    observed_at: datetime = Field(default_factory=_now)


class DeviceUpdate(BaseModel):
    """A check result merged with the device's static metadata."""

    result: CheckResult
    name: str
    section: str
    protocol: Protocol
    port: int | None = None
    endpoint: str | None = None
    uptime_ticks: int | None = None

    @classmethod
    def from_check(
        cls,
        device: MonitoredDevice,
        result: CheckResult,
        uptime_ticks: int | None = None,
    ) -> DeviceUpdate:
        return cls(
            result=result,
            name=device.display_name,
            section=device.section,
            protocol=device.protocol,
            port=device.port,
            endpoint=device.http_path if device.protocol is Protocol.HTTP else None,
            uptime_ticks=uptime_ticks,
        )


class DeviceEvent(BaseModel):
    """An event pushed to real-time subscribers."""

    event_type: EventType
    update: DeviceUpdate | None = None
    discovered: DiscoveredDevice | None = None
    monitored: list[MonitoredDevice] = Field(default_factory=list)
    discovered_devices: list[DiscoveredDevice] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=_now)

    @property
    def address(self) -> str | None:
        if self.update is not None:
            return self.update.result.address
        if self.discovered is not None:
            return self.discovered.address
        return None

    def to_message(self) -> dict[str, Any]:
        """JSON-ready payload for push transports."""
        data: dict[str, Any] = {
            "event": self.event_type.value,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.update is not None:
            data["device"] = {
                **self.update.result.model_dump(mode="json"),
                **self.update.model_dump(mode="json", exclude={"result"}),
            }
        if self.discovered is not None:
            data["device"] = self.discovered.model_dump(mode="json")
        if self.event_type is EventType.INITIAL_DATA:
            data["monitored"] = [d.model_dump(mode="json") for d in self.monitored]
            data["discovered"] = [
                d.model_dump(mode="json") for d in self.discovered_devices
            ]
        return data


class SweepSummary(BaseModel):
    """Result of a single subnet sweep."""

    subnet: str
    probed: int = 0
    skipped: int = 0
    alive: int = 0
    cancelled: bool = False
    error: str | None = None
    duration_seconds: float = 0.0
    devices: list[DiscoveredDevice] = Field(default_factory=list)
