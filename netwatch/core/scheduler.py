"""Health-check scheduler: one sequential pass over the monitored devices."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Iterable

from netwatch.core.models import CheckResult, DeviceUpdate, MonitoredDevice
from netwatch.core.prober import Prober
from netwatch.core.store import DeviceStore, EventSink

logger = logging.getLogger(__name__)

DEFAULT_CHECK_DELAY = 1.0


def group_by_section(devices: Iterable[MonitoredDevice]) -> dict[str, list[MonitoredDevice]]:
    """Group devices by section, preserving section and in-section order."""
    sections: dict[str, list[MonitoredDevice]] = {}
    for device in devices:
        sections.setdefault(device.section, []).append(device)
    return sections


class HealthCheckScheduler:
    """Checks every configured device once per cycle, strictly in order.

    Devices are probed one at a time with ``check_delay`` seconds between
    them, which bounds the outbound probe rate.  Failures are isolated per
    device: a store or event-sink error is logged and the cycle moves on to
    the next device.

    Cycles are not mutually excluded; the caller's period must exceed the
    worst-case cycle duration.
    """

    def __init__(
        self,
        devices: Iterable[MonitoredDevice],
        prober: Prober,
        store: DeviceStore,
        sink: EventSink,
        check_delay: float = DEFAULT_CHECK_DELAY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.devices = [d for section in group_by_section(devices).values() for d in section]
        self.prober = prober
        self.store = store
        self.sink = sink
        self.check_delay = check_delay
        self._sleep = sleep
        self.cycles_completed = 0

    async def seed(self) -> None:
        """Upsert the configured devices so the store knows every address."""
        for device in self.devices:
            await self.store.upsert_monitored_device(device)
        logger.info("Seeded %d monitored devices", len(self.devices))

    async def run_cycle(self) -> list[CheckResult]:
        """Run one full pass; never raises."""
        logger.info("Starting monitoring cycle (%d devices)", len(self.devices))
        start = time.monotonic()
        results: list[CheckResult] = []
        try:
            for index, device in enumerate(self.devices):
                if index:
                    await self._sleep(self.check_delay)
                results.append(await self.check_device(device))
        except Exception as exc:
            logger.error("Monitoring cycle aborted: %s", exc)
            return results

        self.cycles_completed += 1
        alive = sum(1 for r in results if r.is_alive)
        logger.info(
            "Monitoring cycle complete: %d/%d alive in %.1fs",
            alive,
            len(results),
            time.monotonic() - start,
        )
        return results

    async def check_device(self, device: MonitoredDevice) -> CheckResult:
        """Probe, persist, then emit, in that order."""
        result = await self.prober.probe(
            device.address, device.protocol, device.port, device.http_path
        )
        logger.info(
            "Device %s (%s) status: alive=%s type=%s time=%s code=%s error=%s",
            device.display_name,
            device.address,
            result.is_alive,
            device.protocol.value,
            result.latency_ms,
            result.status_code,
            result.error,
        )

        try:
            stored = await self.store.update_monitored_status(result)
        except Exception as exc:
            logger.error("Error updating device status for %s: %s", device.address, exc)
            return result

        update = DeviceUpdate.from_check(
            device, result, stored.uptime_ticks if stored is not None else None
        )
        try:
            await self.sink.emit_device_update(update)
        except Exception as exc:
            logger.warning("Device update for %s not delivered: %s", device.address, exc)
        return result
