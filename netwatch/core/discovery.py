"""Subnet discovery: sweep a /24 for live hosts that are not yet monitored.

Each ``SubnetScanner`` is bound to one subnet and runs at most one sweep at a
time.  Liveness uses a single ICMP echo; hostname (reverse DNS) and hardware
address (ARP) are resolved best-effort for every host that answers.
"""

from __future__ import annotations

import asyncio
import ipaddress
import logging
import re
import socket
import subprocess
import sys
import time
from typing import Awaitable, Callable

from netwatch.core.models import DiscoveredDevice, ScannerState, SweepSummary
from netwatch.core.prober import PingReply, ping
from netwatch.core.store import DeviceStore, EventSink

logger = logging.getLogger(__name__)

DEFAULT_DISCOVERY_TIMEOUT = 1.0

_MAC_RE = re.compile(r"([0-9a-fA-F]{1,2}(?:[:-][0-9a-fA-F]{1,2}){5})")

Pinger = Callable[[str, float], Awaitable[PingReply]]
Resolver = Callable[[str], Awaitable[str | None]]


def normalize_mac(mac: str) -> str:
    """Normalize a MAC address to uppercase colon-separated format."""
    mac = mac.replace("-", ":").upper()
    parts = mac.split(":")
    return ":".join(p.zfill(2) for p in parts)


def subnet_hosts(subnet: str) -> list[str]:
    """Host addresses .1 through .254 of the /24 containing the subnet's network address."""
    network = ipaddress.IPv4Network(subnet, strict=False)
    base = ".".join(str(network.network_address).split(".")[:3])
    return [f"{base}.{i}" for i in range(1, 255)]


# ---------------------------------------------------------------------------
# Hostname resolution
# ---------------------------------------------------------------------------

def _resolve_hostname_dns(ip: str) -> str | None:
    """Reverse DNS lookup; a missing PTR record is not an error."""
    try:
        hostname, _, _ = socket.gethostbyaddr(ip)
        return hostname or None
    except (socket.herror, socket.gaierror, OSError):
        return None


async def resolve_hostname(ip: str) -> str | None:
    return await asyncio.to_thread(_resolve_hostname_dns, ip)


# ---------------------------------------------------------------------------
# Hardware address resolution
# ---------------------------------------------------------------------------

def _has_l2_support() -> bool:
    """Check if scapy Layer 2 sockets are available."""
    try:
        from scapy.all import conf as scapy_conf

        sock_class = scapy_conf.L2socket
        if "NotAvailable" in getattr(sock_class, "__name__", str(sock_class)):
            return False
        return True
    except Exception:
        return False


def _arp_lookup_scapy(ip: str, timeout: float) -> str | None:
    """Ask the host directly with a Layer 2 ARP who-has (needs root)."""
    from scapy.all import ARP, Ether, srp

    answered, _ = srp(
        Ether(dst="ff:ff:ff:ff:ff:ff") / ARP(pdst=ip), timeout=timeout, verbose=False
    )
    for _, received in answered:
        if received.psrc == ip:
            return normalize_mac(received.hwsrc)
    return None


def _arp_lookup_arp_scan(ip: str) -> str | None:
    """Sweep the local segment with arp-scan and pick the line for ``ip``.

    arp-scan prints ``<ip>\\t<mac>\\t<vendor>`` per responding host.
    """
    result = subprocess.run(
        ["arp-scan", "--localnet", "--numeric", "--quiet"],
        capture_output=True, text=True, timeout=30,
    )
    for line in result.stdout.splitlines():
        parts = line.split("\t")
        if len(parts) >= 2 and parts[0].strip() == ip:
            return normalize_mac(parts[1].strip())
    return None


def _arp_lookup_table(ip: str) -> str | None:
    """Read the OS ARP table entry for ``ip`` (populated by the ping)."""
    cmd = ["arp", "-a", ip] if sys.platform == "win32" else ["arp", "-n", ip]
    result = subprocess.run(cmd, capture_output=True, text=True, timeout=5)
    for line in result.stdout.splitlines():
        lower = line.lower()
        if ip not in line or "incomplete" in lower:
            continue
        match = _MAC_RE.search(line)
        if match:
            mac = normalize_mac(match.group(1))
            if mac not in ("00:00:00:00:00:00", "FF:FF:FF:FF:FF:FF"):
                return mac
    return None


def _resolve_hardware_address_sync(ip: str, timeout: float) -> str | None:
    lookups: list[Callable[[], str | None]] = []
    if _has_l2_support():
        lookups.append(lambda: _arp_lookup_scapy(ip, timeout))
    lookups.append(lambda: _arp_lookup_arp_scan(ip))
    lookups.append(lambda: _arp_lookup_table(ip))

    for lookup in lookups:
        try:
            mac = lookup()
        except Exception as exc:
            logger.debug("Hardware address lookup for %s failed: %s", ip, exc)
            continue
        if mac:
            return mac
    return None


async def resolve_hardware_address(ip: str, timeout: float = DEFAULT_DISCOVERY_TIMEOUT) -> str | None:
    """Best-effort MAC lookup; failure yields None rather than an error."""
    return await asyncio.to_thread(_resolve_hardware_address_sync, ip, timeout)


# ---------------------------------------------------------------------------
# SubnetScanner
# ---------------------------------------------------------------------------

class SubnetScanner:
    """Sweeps one subnet for unmonitored live hosts.

    State is IDLE -> SCANNING -> IDLE.  ``stop()`` moves the scanner to
    STOPPING from either state; STOPPING is sticky: no new sweep starts and a
    running sweep exits before probing its next address.
    """

    def __init__(
        self,
        subnet: str,
        store: DeviceStore,
        sink: EventSink,
        timeout: float = DEFAULT_DISCOVERY_TIMEOUT,
        pinger: Pinger = ping,
        hostname_resolver: Resolver = resolve_hostname,
        mac_resolver: Resolver | None = None,
    ) -> None:
        self.hosts = subnet_hosts(subnet)
        self.subnet = subnet
        self.store = store
        self.sink = sink
        self.timeout = timeout
        self._ping = pinger
        self._resolve_hostname = hostname_resolver
        self._resolve_mac = mac_resolver or (
            lambda ip: resolve_hardware_address(ip, self.timeout)
        )
        self._state = ScannerState.IDLE
        self._lock = asyncio.Lock()
        self.last_summary: SweepSummary | None = None

    @property
    def state(self) -> ScannerState:
        return self._state

    @property
    def is_scanning(self) -> bool:
        return self._state is ScannerState.SCANNING

    def stop(self) -> None:
        """Request a stop; takes effect between addresses."""
        if self._state is not ScannerState.STOPPING:
            logger.info("Stop requested for %s scanner", self.subnet)
        self._state = ScannerState.STOPPING

    async def _begin(self) -> bool:
        async with self._lock:
            if self._state is not ScannerState.IDLE:
                return False
            self._state = ScannerState.SCANNING
            return True

    async def _finish(self) -> None:
        async with self._lock:
            if self._state is ScannerState.SCANNING:
                self._state = ScannerState.IDLE

    async def scan_network(self) -> SweepSummary | None:
        """Run one sweep; returns None when a sweep is running or a stop was requested."""
        if not await self._begin():
            logger.debug(
                "Scan of %s skipped: %s", self.subnet, self._state.value
            )
            return None

        summary = SweepSummary(subnet=self.subnet)
        start = time.monotonic()
        try:
            monitored = await self.store.get_monitored_addresses()
            logger.info(
                "Starting network scan for %s (%d monitored addresses skipped)",
                self.subnet,
                len(monitored),
            )
            await self._sweep(monitored, summary)
        except Exception as exc:
            logger.error("Error during network scan of %s: %s", self.subnet, exc)
            summary.error = str(exc)
        finally:
            summary.duration_seconds = time.monotonic() - start
            self.last_summary = summary
            await self._finish()

        logger.info(
            "Network scan %s for %s: %d probed, %d alive in %.1fs",
            _outcome(summary),
            self.subnet,
            summary.probed,
            summary.alive,
            summary.duration_seconds,
        )
        return summary

    async def _sweep(self, monitored: frozenset[str], summary: SweepSummary) -> None:
        for ip in self.hosts:
            if self._state is ScannerState.STOPPING:
                logger.info("Stopping network scan of %s at %s", self.subnet, ip)
                summary.cancelled = True
                return

            if ip in monitored:
                logger.debug("Skipping monitored IP: %s", ip)
                summary.skipped += 1
                continue

            summary.probed += 1
            reply = await self._ping(ip, self.timeout)
            if not reply.alive:
                logger.debug("No response from %s", ip)
                continue

            summary.alive += 1
            device = await self._record(ip)
            if device is not None:
                summary.devices.append(device)

    async def _record(self, ip: str) -> DiscoveredDevice | None:
        hostname = await _best_effort(self._resolve_hostname, ip)
        mac = await _best_effort(self._resolve_mac, ip)
        logger.debug("Device found: %s hostname=%s mac=%s", ip, hostname, mac)

        try:
            device = await self.store.upsert_discovered_device(ip, hostname, mac)
        except Exception as exc:
            logger.error("Error updating discovered device %s: %s", ip, exc)
            return None

        try:
            await self.sink.emit_discovery(device)
        except Exception as exc:
            logger.warning("Discovery event for %s not delivered: %s", ip, exc)
        return device


async def _best_effort(resolver: Resolver, ip: str) -> str | None:
    try:
        return await resolver(ip)
    except Exception as exc:
        logger.debug("Metadata lookup for %s failed: %s", ip, exc)
        return None


def _outcome(summary: SweepSummary) -> str:
    if summary.error is not None:
        return "failed"
    return "stopped" if summary.cancelled else "completed"
