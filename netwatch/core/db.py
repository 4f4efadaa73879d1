"""Async SQLite persistence layer for monitored and discovered devices."""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import aiosqlite

from netwatch.core.errors import StoreError
from netwatch.core.models import (
    CheckResult,
    DiscoveredDevice,
    MonitoredDevice,
    Protocol,
    _now,
)

logger = logging.getLogger(__name__)

_SCHEMA_VERSION = 1

_CREATE_TABLES = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS monitored_devices (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    address TEXT NOT NULL UNIQUE,
    name TEXT NOT NULL,
    protocol TEXT NOT NULL DEFAULT 'icmp',
    section TEXT NOT NULL,
    port INTEGER,
    http_path TEXT NOT NULL DEFAULT '/',
    last_checked_at TEXT,
    last_alive INTEGER NOT NULL DEFAULT 0,
    last_latency_ms REAL,
    last_status_code INTEGER,
    last_error TEXT,
    uptime_ticks INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS discovered_devices (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    address TEXT NOT NULL UNIQUE,
    hostname TEXT,
    hardware_address TEXT,
    first_seen_at TEXT NOT NULL,
    last_seen_at TEXT NOT NULL,
    total_seen_ticks INTEGER NOT NULL DEFAULT 1
);

CREATE INDEX IF NOT EXISTS idx_monitored_section ON monitored_devices(section, name);
CREATE INDEX IF NOT EXISTS idx_discovered_last_seen ON discovered_devices(last_seen_at);
"""


def _dt_to_str(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def _str_to_dt(s: str | None) -> datetime | None:
    if s is None:
        return None
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _row_to_monitored(row: aiosqlite.Row) -> MonitoredDevice:
    return MonitoredDevice(
        address=row["address"],
        display_name=row["name"],
        protocol=Protocol(row["protocol"]),
        section=row["section"],
        port=row["port"],
        http_path=row["http_path"],
        last_checked_at=_str_to_dt(row["last_checked_at"]),
        last_alive=bool(row["last_alive"]),
        last_latency_ms=row["last_latency_ms"],
        last_status_code=row["last_status_code"],
        last_error=row["last_error"],
        uptime_ticks=row["uptime_ticks"],
    )


def _row_to_discovered(row: aiosqlite.Row) -> DiscoveredDevice:
    return DiscoveredDevice(
        address=row["address"],
        hostname=row["hostname"],
        hardware_address=row["hardware_address"],
        first_seen_at=_str_to_dt(row["first_seen_at"]),
        last_seen_at=_str_to_dt(row["last_seen_at"]),
        total_seen_ticks=row["total_seen_ticks"],
    )


class DeviceDatabase:
    """Async SQLite database implementing the device store contract."""

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._db: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Open the database and create tables if needed."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._db = await aiosqlite.connect(str(self._db_path))
            self._db.row_factory = aiosqlite.Row
            await self._db.executescript(_CREATE_TABLES)

            async with self._db.execute("SELECT COUNT(*) FROM schema_version") as cursor:
                count = (await cursor.fetchone())[0]
            if count == 0:
                await self._db.execute(
                    "INSERT INTO schema_version (version) VALUES (?)", (_SCHEMA_VERSION,)
                )
            await self._db.commit()
        except sqlite3.Error as exc:
            raise StoreError(f"Cannot open database {self._db_path}: {exc}") from exc
        logger.info("Database initialized at %s", self._db_path)

    async def close(self) -> None:
        """Close the database connection."""
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise StoreError("Database is not initialized")
        return self._db

    async def _write(self, query: str, params: tuple[Any, ...]) -> int:
        try:
            cursor = await self._conn.execute(query, params)
            await self._conn.commit()
            return cursor.rowcount
        except sqlite3.Error as exc:
            raise StoreError(str(exc)) from exc

    async def _fetch(self, query: str, params: tuple[Any, ...] = ()) -> list[aiosqlite.Row]:
        try:
            async with self._conn.execute(query, params) as cursor:
                return list(await cursor.fetchall())
        except sqlite3.Error as exc:
            raise StoreError(str(exc)) from exc

    # ------------------------------------------------------------------
    # Monitored devices
    # ------------------------------------------------------------------

    async def upsert_monitored_device(self, device: MonitoredDevice) -> None:
        """Insert a configured device or refresh its static metadata.

        Status columns and the uptime counter survive re-seeding.
        """
        await self._write(
            """
            INSERT INTO monitored_devices (address, name, protocol, section, port, http_path)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(address) DO UPDATE SET
                name = excluded.name,
                protocol = excluded.protocol,
                section = excluded.section,
                port = excluded.port,
                http_path = excluded.http_path
            """,
            (
                device.address,
                device.display_name,
                device.protocol.value,
                device.section,
                device.port,
                device.http_path,
            ),
        )

    async def get_monitored_device(self, address: str) -> MonitoredDevice | None:
        rows = await self._fetch(
            "SELECT * FROM monitored_devices WHERE address = ?", (address,)
        )
        return _row_to_monitored(rows[0]) if rows else None

    async def get_monitored_devices(self) -> list[MonitoredDevice]:
        rows = await self._fetch("SELECT * FROM monitored_devices ORDER BY section, name")
        return [_row_to_monitored(row) for row in rows]

    async def update_monitored_status(self, result: CheckResult) -> MonitoredDevice | None:
        """Record a check result; uptime grows only on alive checks."""
        changed = await self._write(
            """
            UPDATE monitored_devices
            SET last_checked_at = ?,
                last_alive = ?,
                last_latency_ms = ?,
                last_status_code = ?,
                last_error = ?,
                uptime_ticks = uptime_ticks + ?
            WHERE address = ?
            """,
            (
                _dt_to_str(result.observed_at),
                int(result.is_alive),
                result.latency_ms,
                result.status_code,
                result.error,
                1 if result.is_alive else 0,
                result.address,
            ),
        )
        if changed == 0:
            logger.warning("Status for unknown monitored device %s ignored", result.address)
            return None
        return await self.get_monitored_device(result.address)

    async def get_monitored_addresses(self) -> frozenset[str]:
        rows = await self._fetch("SELECT address FROM monitored_devices")
        return frozenset(row["address"] for row in rows)

    # ------------------------------------------------------------------
    # Discovered devices
    # ------------------------------------------------------------------

    async def get_discovered_devices(self) -> list[DiscoveredDevice]:
        """Discovered devices that are not (or no longer) monitored."""
        rows = await self._fetch(
            """
            SELECT * FROM discovered_devices
            WHERE address NOT IN (SELECT address FROM monitored_devices)
            ORDER BY last_seen_at DESC
            """
        )
        return [_row_to_discovered(row) for row in rows]

    async def upsert_discovered_device(
        self,
        address: str,
        hostname: str | None = None,
        hardware_address: str | None = None,
    ) -> DiscoveredDevice:
        now = _dt_to_str(_now())
        await self._write(
            """
            INSERT INTO discovered_devices (
                address, hostname, hardware_address, first_seen_at, last_seen_at, total_seen_ticks
            ) VALUES (?, ?, ?, ?, ?, 1)
            ON CONFLICT(address) DO UPDATE SET
                hostname = COALESCE(excluded.hostname, hostname),
                hardware_address = COALESCE(excluded.hardware_address, hardware_address),
                last_seen_at = excluded.last_seen_at,
                total_seen_ticks = total_seen_ticks + 1
            """,
            (address, hostname, hardware_address, now, now),
        )
        rows = await self._fetch(
            "SELECT * FROM discovered_devices WHERE address = ?", (address,)
        )
        return _row_to_discovered(rows[0])

