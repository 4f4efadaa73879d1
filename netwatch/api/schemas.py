"""Pydantic schemas for API request/response models."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from netwatch.core.models import Protocol, ScannerState


class MonitoredDeviceResponse(BaseModel):
    address: str
    name: str
    section: str
    type: Protocol
    port: int | None = None
    endpoint: str | None = None
    is_alive: bool = False
    latency_ms: float | None = None
    status_code: int | None = None
    error: str | None = None
    last_checked_at: datetime | None = None
    uptime_ticks: int = 0


class DiscoveredDeviceResponse(BaseModel):
    address: str
    hostname: str | None = None
    hardware_address: str | None = None
    first_seen_at: datetime
    last_seen_at: datetime
    total_seen_ticks: int
    is_alive: bool = True


class NetworkResponse(BaseModel):
    index: int
    subnet: str
    scan_interval: int
    state: ScannerState
    last_probed: int | None = None
    last_alive: int | None = None
    last_duration_seconds: float | None = None
    last_error: str | None = None


class ScanTriggerResponse(BaseModel):
    status: str
    message: str


class StatsResponse(BaseModel):
    monitored: int
    online: int
    discovered: int


class EventResponse(BaseModel):
    event_type: str
    address: str | None = None
    timestamp: str
    payload: dict[str, Any] = Field(default_factory=dict)
