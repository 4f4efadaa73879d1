"""Main entry point: bootstraps store, event bus, health checks, discovery, and API server."""

from __future__ import annotations

import asyncio
import logging
import math
import time
from functools import partial
from typing import Any, Awaitable, Callable

from netwatch.config import Settings, get_settings
from netwatch.core.db import DeviceDatabase
from netwatch.core.discovery import SubnetScanner
from netwatch.core.events import EventBus
from netwatch.core.models import DiscoveredDevice, MonitoredDevice, ScannerState
from netwatch.core.prober import Prober
from netwatch.core.scheduler import HealthCheckScheduler
from netwatch.core.store import DeviceStore

logger = logging.getLogger(__name__)

STOP_GRACE_SECONDS = 5.0


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


async def run_every(
    interval: float,
    job: Callable[[], Awaitable[Any]],
    *,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> None:
    """Run ``job`` now and then on a fixed ``interval`` grid, forever.

    A run never overlaps the next one: ticks that fall inside an overrunning
    run are skipped and the loop resumes on the next tick of the grid.
    """
    next_run = clock()
    while True:
        await job()
        next_run += interval
        now = clock()
        if now > next_run:
            missed = math.ceil((now - next_run) / interval)
            logger.warning("Run took longer than %ss; skipping %d tick(s)", interval, missed)
            next_run += missed * interval
        await sleep(next_run - now)


class Engine:
    """Owns the health-check scheduler and one discovery scanner per network.

    The first health-check cycle and the first sweep of every network run
    as soon as ``start()`` is called, then on a fixed period.  ``stop()``
    lets a sweep that is mid-address finish that address before the loops
    are cancelled.
    """

    def __init__(
        self,
        settings: Settings,
        store: DeviceStore,
        event_bus: EventBus,
        prober: Prober | None = None,
    ) -> None:
        self.settings = settings
        self.store = store
        self.event_bus = event_bus
        self.prober = prober or Prober(
            icmp_timeout=settings.icmp_timeout,
            http_timeout=settings.http_timeout,
        )
        self.scheduler = HealthCheckScheduler(
            settings.monitored_devices(),
            self.prober,
            store,
            event_bus,
            check_delay=settings.check_delay,
        )
        self.scanners: list[SubnetScanner] = [
            SubnetScanner(
                network.subnet,
                store,
                event_bus,
                timeout=settings.discovery_timeout,
            )
            for network in settings.networks
        ]
        self._loops: list[asyncio.Task[Any]] = []
        self._sweeps: set[asyncio.Task[Any]] = set()
        event_bus.set_snapshot_provider(self.snapshot)

    async def snapshot(self) -> tuple[list[MonitoredDevice], list[DiscoveredDevice]]:
        monitored, discovered = await asyncio.gather(
            self.store.get_monitored_devices(),
            self.store.get_discovered_devices(),
        )
        return monitored, discovered

    async def start(self) -> None:
        """Seed monitored devices and launch the background loops."""
        await self.scheduler.seed()
        self._loops.append(
            asyncio.create_task(run_every(self.settings.check_interval, self._run_cycle))
        )
        logger.info(
            "Setting up monitoring interval (%d seconds)", self.settings.check_interval
        )
        for scanner, network in zip(self.scanners, self.settings.networks):
            self._loops.append(
                asyncio.create_task(
                    run_every(network.scan_interval, partial(self._run_sweep, scanner))
                )
            )
            logger.info("Set up network discovery for %s", network.subnet)

    async def stop(self, grace: float = STOP_GRACE_SECONDS) -> None:
        """Stop scanners between addresses, wait for running sweeps, then cancel all loops."""
        for scanner in self.scanners:
            scanner.stop()
        if self._sweeps:
            _, pending = await asyncio.wait(set(self._sweeps), timeout=grace)
            for task in pending:
                logger.warning("Sweep still running after %.1fs; cancelling", grace)
                task.cancel()
        tasks = [*self._loops, *self._sweeps]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._loops.clear()
        logger.info("Engine stopped")

    def trigger_scan(self, index: int) -> bool:
        """Start an out-of-schedule sweep; False if that scanner is busy or stopping."""
        scanner = self.scanners[index]
        if scanner.state is not ScannerState.IDLE:
            return False
        self._start_sweep(scanner)
        return True

    def _start_sweep(self, scanner: SubnetScanner) -> asyncio.Task[Any]:
        task = asyncio.create_task(scanner.scan_network())
        self._sweeps.add(task)
        task.add_done_callback(self._sweeps.discard)
        return task

    async def _run_cycle(self) -> None:
        try:
            await self.scheduler.run_cycle()
        except Exception as exc:
            logger.error("Background monitoring error: %s", exc)

    async def _run_sweep(self, scanner: SubnetScanner) -> None:
        try:
            await self._start_sweep(scanner)
        except Exception as exc:
            logger.error("Background discovery error for %s: %s", scanner.subnet, exc)


async def run_server(
    host: str | None = None,
    port: int | None = None,
) -> None:
    """Start the engine and serve the API (plus an optional metrics listener)."""
    import uvicorn

    from netwatch.api.server import create_app, create_metrics_app

    settings = get_settings(web_host=host, web_port=port)
    setup_logging(settings.log_level)

    db = DeviceDatabase(settings.resolved_db_path)
    await db.initialize()

    event_bus = EventBus()
    engine = Engine(settings, db, event_bus)

    app = create_app(db, engine, event_bus)
    servers = [
        uvicorn.Server(
            uvicorn.Config(
                app,
                host=settings.web_host,
                port=settings.web_port,
                log_level=settings.log_level.lower(),
            )
        )
    ]
    if settings.metrics_port:
        servers.append(
            uvicorn.Server(
                uvicorn.Config(
                    create_metrics_app(db),
                    host=settings.web_host,
                    port=settings.metrics_port,
                    log_level=settings.log_level.lower(),
                )
            )
        )
        logger.info(
            "Metrics server on http://%s:%d/metrics", settings.web_host, settings.metrics_port
        )

    await engine.start()
    try:
        await asyncio.gather(*(server.serve() for server in servers))
    finally:
        await engine.stop()
        await db.close()
