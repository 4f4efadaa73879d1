"""Single-shot health checks: ICMP echo via the system ping, HTTP via httpx.

Every failure mode is folded into a CheckResult; ``Prober.probe`` never raises.
"""

from __future__ import annotations

import asyncio
import logging
import math
import re
import subprocess
import sys
from dataclasses import dataclass

import httpx

from netwatch.core.models import CheckResult, Protocol

logger = logging.getLogger(__name__)

DEFAULT_ICMP_TIMEOUT = 1.0
DEFAULT_HTTP_TIMEOUT = 5.0

_TIME_RE = re.compile(r"time[=<](\d+\.?\d*)", re.IGNORECASE)


@dataclass(frozen=True)
class PingReply:
    alive: bool
    latency_ms: float | None = None
    error: str | None = None


def _ping_command(address: str, timeout: float) -> list[str]:
    if sys.platform == "win32":
        return ["ping", "-n", "1", "-w", str(int(timeout * 1000)), address]
    secs = str(max(1, math.ceil(timeout)))
    if sys.platform == "darwin":
        return ["ping", "-c", "1", "-t", secs, address]
    return ["ping", "-c", "1", "-W", secs, address]


def _ping_once(address: str, timeout: float) -> PingReply:
    """Send one echo request; a single reply is enough to count as alive."""
    try:
        result = subprocess.run(
            _ping_command(address, timeout),
            capture_output=True,
            text=True,
            timeout=timeout + 2,
        )
    except subprocess.TimeoutExpired:
        return PingReply(alive=False, error="timeout")
    except OSError as exc:
        return PingReply(alive=False, error=str(exc))

    if result.returncode != 0:
        # Exit code 1 is "no reply"; anything higher is an OS-level failure
        error = result.stderr.strip() if result.returncode > 1 else ""
        return PingReply(alive=False, error=error or "timeout")

    for line in result.stdout.splitlines():
        match = _TIME_RE.search(line)
        if match:
            return PingReply(alive=True, latency_ms=float(match.group(1)))
    return PingReply(alive=True)


async def ping(address: str, timeout: float = DEFAULT_ICMP_TIMEOUT) -> PingReply:
    """Async wrapper running the blocking ping in a worker thread."""
    return await asyncio.to_thread(_ping_once, address, timeout)


def _transport_error_text(exc: httpx.TransportError) -> str:
    return str(exc) or exc.__class__.__name__


class Prober:
    """Executes one ICMP or HTTP health check against one address.

    ``client`` may be supplied to share an httpx.AsyncClient (or to inject a
    mock transport); otherwise a short-lived client is opened per HTTP check.
    """

    def __init__(
        self,
        icmp_timeout: float = DEFAULT_ICMP_TIMEOUT,
        http_timeout: float = DEFAULT_HTTP_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.icmp_timeout = icmp_timeout
        self.http_timeout = http_timeout
        self._client = client

    async def probe(
        self,
        address: str,
        protocol: Protocol | str = Protocol.ICMP,
        port: int | None = None,
        path: str | None = None,
    ) -> CheckResult:
        try:
            protocol = Protocol(protocol)
            logger.debug("Checking %s using %s", address, protocol.value.upper())
            if protocol is Protocol.HTTP:
                return await self.check_http(address, port, path or "/")
            return await self.check_icmp(address)
        except Exception as exc:
            logger.error("Error checking %s: %s", address, exc)
            return CheckResult(address=address, is_alive=False, error=str(exc) or repr(exc))

    async def check_icmp(self, address: str) -> CheckResult:
        reply = await ping(address, self.icmp_timeout)
        logger.debug("ICMP result for %s: %s", address, reply.alive)
        return CheckResult(
            address=address,
            is_alive=reply.alive,
            latency_ms=reply.latency_ms if reply.alive else None,
            error=None if reply.alive else (reply.error or "timeout"),
        )

    async def check_http(self, address: str, port: int | None, path: str) -> CheckResult:
        url = f"http://{address}:{port or 80}{path}"
        logger.debug("HTTP check for %s", url)
        try:
            if self._client is not None:
                response = await self._client.get(url, timeout=self.http_timeout)
            else:
                async with httpx.AsyncClient(timeout=self.http_timeout) as client:
                    response = await client.get(url)
        except httpx.TimeoutException:
            logger.warning("HTTP Timeout for %s", url)
            return CheckResult(address=address, is_alive=False, error="Timeout")
        except httpx.TransportError as exc:
            logger.warning("HTTP Error for %s: %s", url, _transport_error_text(exc))
            return CheckResult(
                address=address, is_alive=False, error=_transport_error_text(exc)
            )

        # Response time is not measured for HTTP checks.
        logger.debug("HTTP Response from %s: Status %d", url, response.status_code)
        return CheckResult(
            address=address,
            is_alive=200 <= response.status_code < 300,
            status_code=response.status_code,
        )
