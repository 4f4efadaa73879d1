"""CLI command implementations for NetWatch."""

from __future__ import annotations

import asyncio
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from netwatch.config import Settings, get_settings
from netwatch.core.db import DeviceDatabase
from netwatch.core.discovery import SubnetScanner
from netwatch.core.errors import ConfigurationError, StoreError
from netwatch.core.events import EventBus
from netwatch.core.models import DiscoveredDevice, MonitoredDevice, Protocol
from netwatch.core.prober import Prober
from netwatch.core.scheduler import HealthCheckScheduler
from netwatch.core.store import MemoryDeviceStore
from netwatch.main import setup_logging

console = Console()


def _load_settings() -> Settings:
    try:
        return get_settings()
    except ConfigurationError as exc:
        console.print(f"[red]Invalid configuration:[/]\n{exc}")
        raise typer.Exit(2)


async def _open_db(settings: Settings) -> DeviceDatabase:
    db = DeviceDatabase(settings.resolved_db_path)
    try:
        await db.initialize()
    except StoreError as exc:
        console.print(f"[red]{exc}[/]")
        raise typer.Exit(1)
    return db


def _status_text(device: MonitoredDevice) -> str:
    return "[bold green]UP[/]" if device.last_alive else "[red]DOWN[/]"


def _detail_text(device: MonitoredDevice) -> str:
    if device.protocol is Protocol.HTTP:
        code = str(device.last_status_code) if device.last_status_code is not None else "-"
        return f"HTTP {code}"
    if device.last_latency_ms is not None:
        return f"{device.last_latency_ms:.0f}ms"
    return "-"


def build_monitored_table(devices: list[MonitoredDevice], title: str = "Monitored Devices") -> Table:
    table = Table(
        title=title,
        expand=True,
        padding=(0, 1),
        title_style="bold cyan",
        border_style="bright_black",
    )
    table.add_column("S", width=4, justify="center", no_wrap=True)
    table.add_column("Section", no_wrap=True)
    table.add_column("Name", no_wrap=True, ratio=2)
    table.add_column("Address", min_width=11, no_wrap=True)
    table.add_column("Type", width=4, no_wrap=True)
    table.add_column("Result", width=9, justify="right", no_wrap=True)
    table.add_column("Uptime", width=7, justify="right", no_wrap=True)
    table.add_column("Error", style="dim", ratio=1)

    for device in devices:
        table.add_row(
            _status_text(device),
            device.section,
            device.display_name,
            device.address,
            device.protocol.value,
            _detail_text(device),
            str(device.uptime_ticks),
            device.last_error or "",
            style="" if device.last_alive else "dim",
        )
    return table


def build_discovered_table(devices: list[DiscoveredDevice], title: str = "Discovered Devices") -> Table:
    table = Table(
        title=title,
        expand=True,
        padding=(0, 1),
        title_style="bold cyan",
        border_style="bright_black",
    )
    table.add_column("Address", min_width=11, no_wrap=True)
    table.add_column("Hostname", no_wrap=True, ratio=2)
    table.add_column("MAC", width=17, no_wrap=True, style="dim")
    table.add_column("Seen", width=6, justify="right", no_wrap=True)
    table.add_column("Last Seen", width=19, no_wrap=True)

    for device in devices:
        table.add_row(
            device.address,
            device.hostname or "-",
            device.hardware_address or "-",
            str(device.total_seen_ticks),
            device.last_seen_at.astimezone().strftime("%Y-%m-%d %H:%M:%S"),
        )
    return table


def cmd_check(
    dry_run: bool = typer.Option(False, "--dry-run", help="Keep results in memory, do not write the database."),
    log_level: str = typer.Option("WARNING", "--log-level", "-l", help="Logging level."),
) -> None:
    """Run one health-check cycle over the configured devices."""
    setup_logging(log_level)
    settings = _load_settings()
    devices = settings.monitored_devices()
    if not devices:
        console.print("[yellow]No monitors configured.[/]")
        raise typer.Exit(0)

    async def _check() -> list[MonitoredDevice]:
        store = MemoryDeviceStore() if dry_run else await _open_db(settings)
        try:
            scheduler = HealthCheckScheduler(
                devices,
                Prober(icmp_timeout=settings.icmp_timeout, http_timeout=settings.http_timeout),
                store,
                EventBus(),
                check_delay=settings.check_delay,
            )
            await scheduler.seed()
            await scheduler.run_cycle()
            return await store.get_monitored_devices()
        finally:
            await store.close()

    console.print(f"[bold]Checking[/] {len(devices)} devices...")
    results = asyncio.run(_check())
    console.print()
    console.print(build_monitored_table(results))
    up = sum(1 for d in results if d.last_alive)
    console.print(f"\n  [bold]{up}[/]/{len(results)} devices up.\n")


def cmd_scan(
    subnet: str = typer.Argument(help="Subnet to sweep, e.g. 192.168.1.0/24."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Keep results in memory, do not write the database."),
    log_level: str = typer.Option("WARNING", "--log-level", "-l", help="Logging level."),
) -> None:
    """Sweep a subnet once for live hosts that are not monitored."""
    setup_logging(log_level)
    settings = _load_settings()

    async def _scan() -> list[DiscoveredDevice]:
        store = MemoryDeviceStore() if dry_run else await _open_db(settings)
        try:
            for device in settings.monitored_devices():
                await store.upsert_monitored_device(device)
            try:
                scanner = SubnetScanner(
                    subnet, store, EventBus(), timeout=settings.discovery_timeout
                )
            except ValueError as exc:
                console.print(f"[red]Invalid subnet {subnet}: {exc}[/]")
                raise typer.Exit(2)
            summary = await scanner.scan_network()
            return summary.devices if summary else []
        finally:
            await store.close()

    console.print(f"[bold]Scanning[/] {subnet}...", highlight=False)
    devices = asyncio.run(_scan())
    if not devices:
        console.print("[yellow]No new devices found.[/]")
        raise typer.Exit(0)
    console.print()
    console.print(build_discovered_table(devices, title=f"Live hosts in {subnet}"))
    console.print(f"\n  [bold]{len(devices)}[/] devices found.\n")


def cmd_devices(
    section: Optional[str] = typer.Option(None, "--section", "-s", help="Only show one section."),
    log_level: str = typer.Option("WARNING", "--log-level", "-l"),
) -> None:
    """List monitored devices with their last known status."""
    setup_logging(log_level)
    settings = _load_settings()

    async def _list() -> list[MonitoredDevice]:
        db = await _open_db(settings)
        try:
            return await db.get_monitored_devices()
        finally:
            await db.close()

    devices = asyncio.run(_list())
    if section is not None:
        devices = [d for d in devices if d.section == section]
    if not devices:
        console.print("[yellow]No monitored devices in database. Run 'netwatch check' first.[/]")
        raise typer.Exit(0)

    console.print()
    console.print(build_monitored_table(devices))
    console.print(f"\n  [bold]{len(devices)}[/] devices total.\n")


def cmd_discovered(
    log_level: str = typer.Option("WARNING", "--log-level", "-l"),
) -> None:
    """List discovered devices that are not monitored."""
    setup_logging(log_level)
    settings = _load_settings()

    async def _list() -> list[DiscoveredDevice]:
        db = await _open_db(settings)
        try:
            return await db.get_discovered_devices()
        finally:
            await db.close()

    devices = asyncio.run(_list())
    if not devices:
        console.print("[yellow]No discovered devices in database. Run 'netwatch scan' first.[/]")
        raise typer.Exit(0)

    console.print()
    console.print(build_discovered_table(devices))
    console.print(f"\n  [bold]{len(devices)}[/] devices total.\n")


def cmd_serve(
    host: Optional[str] = typer.Option(None, "--host", "-h", help="API server bind host."),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="API server bind port."),
    log_level: str = typer.Option("INFO", "--log-level", "-l"),
) -> None:
    """Start monitoring, discovery and the API server."""
    setup_logging(log_level)
    _load_settings()

    from netwatch.main import run_server

    try:
        asyncio.run(run_server(host=host, port=port))
    except KeyboardInterrupt:
        console.print("\n[bold]Stopped.[/]")
