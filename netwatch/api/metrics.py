"""Prometheus exposition of the monitored devices' last known status."""

from __future__ import annotations

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Gauge, generate_latest

from netwatch.core.models import MonitoredDevice, Protocol

__all__ = ["CONTENT_TYPE_LATEST", "render_metrics"]


def render_metrics(devices: list[MonitoredDevice]) -> bytes:
    """Render ``devices`` in Prometheus text format using a per-call registry."""
    registry = CollectorRegistry()
    online = Gauge(
        "device_online",
        "Device online status (1 = online, 0 = offline)",
        ["name", "ip", "section", "type"],
        registry=registry,
    )
    latency = Gauge(
        "device_latency_ms",
        "Device ping latency in milliseconds",
        ["name", "ip", "section"],
        registry=registry,
    )
    status_code = Gauge(
        "device_http_status_code",
        "HTTP status code from last check",
        ["name", "ip", "section"],
        registry=registry,
    )
    uptime = Gauge(
        "device_uptime_ticks",
        "Number of checks in which the device was online",
        ["name", "ip", "section"],
        registry=registry,
    )

    for device in devices:
        labels = {"name": device.display_name, "ip": device.address, "section": device.section}
        online.labels(type=device.protocol.value, **labels).set(1 if device.last_alive else 0)
        uptime.labels(**labels).set(device.uptime_ticks)
        if device.protocol is Protocol.ICMP and device.last_latency_ms is not None:
            latency.labels(**labels).set(device.last_latency_ms)
        if device.protocol is Protocol.HTTP and device.last_status_code is not None:
            status_code.labels(**labels).set(device.last_status_code)

    return generate_latest(registry)
