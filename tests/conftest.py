"""Shared fixtures for NetWatch tests."""

import asyncio

import pytest

from netwatch.core.db import DeviceDatabase
from netwatch.core.events import EventBus
from netwatch.core.models import MonitoredDevice, Protocol
from netwatch.core.prober import PingReply
from netwatch.core.store import MemoryDeviceStore


def make_device(address, name=None, section="core", protocol=Protocol.ICMP, port=None, path="/"):
    return MonitoredDevice(
        address=address,
        display_name=name or f"host-{address}",
        section=section,
        protocol=protocol,
        port=port,
        http_path=path,
    )


class FakePinger:
    """Records probed addresses; answers for addresses in ``alive``."""

    def __init__(self, alive=(), on_probe=None):
        self.alive = set(alive)
        self.probed = []
        self.on_probe = on_probe

    async def __call__(self, address, timeout):
        self.probed.append(address)
        await asyncio.sleep(0)
        if self.on_probe is not None:
            await self.on_probe(address)
        if address in self.alive:
            return PingReply(alive=True, latency_ms=1.0)
        return PingReply(alive=False, error="timeout")


async def no_metadata(ip):
    return None


@pytest.fixture(autouse=True)
def no_yaml_config(monkeypatch):
    """Keep a developer's ~/.netwatch/config.yaml out of the tests."""
    monkeypatch.setattr("netwatch.config._load_yaml_config", lambda: {})


@pytest.fixture
def memory_store():
    return MemoryDeviceStore()


@pytest.fixture
async def sqlite_store(tmp_path):
    db = DeviceDatabase(tmp_path / "netwatch.db")
    await db.initialize()
    yield db
    await db.close()


@pytest.fixture(params=["memory", "sqlite"])
async def store(request, tmp_path):
    """Every DeviceStore implementation, for contract tests."""
    if request.param == "memory":
        yield MemoryDeviceStore()
        return
    db = DeviceDatabase(tmp_path / "contract.db")
    await db.initialize()
    yield db
    await db.close()


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def fake_sleep():
    calls = []

    async def _sleep(seconds):
        calls.append(seconds)
        await asyncio.sleep(0)

    _sleep.calls = calls
    return _sleep
