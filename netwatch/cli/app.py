"""Typer CLI application for NetWatch."""

from __future__ import annotations

import typer

from netwatch.cli.commands import (
    cmd_check,
    cmd_devices,
    cmd_discovered,
    cmd_scan,
    cmd_serve,
)

app = typer.Typer(
    name="netwatch",
    help="NetWatch: device health monitoring and subnet discovery.",
    no_args_is_help=True,
    add_completion=False,
)

app.command("check", help="Run one health-check cycle and print results.")(cmd_check)
app.command("scan", help="Sweep a subnet once for unmonitored devices.")(cmd_scan)
app.command("devices", help="List monitored devices from the database.")(cmd_devices)
app.command("discovered", help="List discovered devices from the database.")(cmd_discovered)
app.command("serve", help="Start monitoring, discovery and the API server.")(cmd_serve)


if __name__ == "__main__":
    app()
