"""Tests for subnet discovery."""

import asyncio
import subprocess
from unittest.mock import patch

import pytest

from conftest import FakePinger, make_device, no_metadata
from netwatch.core.discovery import (
    SubnetScanner,
    _arp_lookup_arp_scan,
    _arp_lookup_table,
    normalize_mac,
    subnet_hosts,
)
from netwatch.core.errors import StoreError
from netwatch.core.models import EventType, ScannerState


def _scanner(store, sink, pinger, subnet="10.0.0.0/24", **kwargs):
    kwargs.setdefault("hostname_resolver", no_metadata)
    kwargs.setdefault("mac_resolver", no_metadata)
    return SubnetScanner(subnet, store, sink, pinger=pinger, **kwargs)


class TestSubnetHosts:

    def test_hosts_1_to_254(self):
        hosts = subnet_hosts("10.0.0.0/24")

        assert len(hosts) == 254
        assert hosts[0] == "10.0.0.1"
        assert hosts[-1] == "10.0.0.254"

    def test_base_from_network_address(self):
        assert subnet_hosts("192.168.7.77/24")[0] == "192.168.7.1"

    def test_invalid_subnet(self):
        with pytest.raises(ValueError):
            subnet_hosts("not-a-subnet")


class TestSweep:

    async def test_monitored_address_never_probed(self, memory_store, event_bus):
        await memory_store.upsert_monitored_device(make_device("10.0.0.5"))
        pinger = FakePinger(alive={"10.0.0.5", "10.0.0.7"})
        scanner = _scanner(memory_store, event_bus, pinger)

        summary = await scanner.scan_network()

        assert "10.0.0.5" not in pinger.probed
        assert len(pinger.probed) == 253
        assert summary.skipped == 1
        discovered = [d.address for d in await memory_store.get_discovered_devices()]
        assert discovered == ["10.0.0.7"]

    async def test_live_hosts_recorded_with_metadata_and_emitted(self, memory_store, event_bus):
        async def hostname(ip):
            return "printer.lan"

        async def mac(ip):
            return "AA:BB:CC:DD:EE:FF"

        pinger = FakePinger(alive={"10.0.0.7"})
        scanner = _scanner(memory_store, event_bus, pinger, hostname_resolver=hostname, mac_resolver=mac)
        queue = event_bus.subscribe()

        summary = await scanner.scan_network()

        assert summary.alive == 1
        device = summary.devices[0]
        assert device.hostname == "printer.lan"
        assert device.hardware_address == "AA:BB:CC:DD:EE:FF"
        event = queue.get_nowait()
        assert event.event_type is EventType.DISCOVERED_DEVICE
        assert event.discovered.address == "10.0.0.7"

    async def test_dead_hosts_leave_no_record(self, memory_store, event_bus):
        scanner = _scanner(memory_store, event_bus, FakePinger())

        await scanner.scan_network()

        assert await memory_store.get_discovered_devices() == []

    async def test_repeat_sweeps_increment_seen_ticks(self, memory_store, event_bus):
        scanner = _scanner(memory_store, event_bus, FakePinger(alive={"10.0.0.7"}))

        await scanner.scan_network()
        await scanner.scan_network()

        [device] = await memory_store.get_discovered_devices()
        assert device.total_seen_ticks == 2

    async def test_skip_set_refreshed_each_sweep(self, memory_store, event_bus):
        pinger = FakePinger(alive={"10.0.0.7"})
        scanner = _scanner(memory_store, event_bus, pinger)
        await scanner.scan_network()
        assert "10.0.0.7" in pinger.probed

        await memory_store.upsert_monitored_device(make_device("10.0.0.7"))
        pinger.probed.clear()
        await scanner.scan_network()

        assert "10.0.0.7" not in pinger.probed
        assert await memory_store.get_discovered_devices() == []

    async def test_store_failure_on_one_address_continues(self, memory_store, event_bus):
        real_upsert = memory_store.upsert_discovered_device

        async def flaky_upsert(address, hostname=None, hardware_address=None):
            if address == "10.0.0.7":
                raise StoreError("disk full")
            return await real_upsert(address, hostname, hardware_address)

        memory_store.upsert_discovered_device = flaky_upsert
        scanner = _scanner(memory_store, event_bus, FakePinger(alive={"10.0.0.7", "10.0.0.8"}))

        summary = await scanner.scan_network()

        assert [d.address for d in summary.devices] == ["10.0.0.8"]
        assert scanner.state is ScannerState.IDLE

    async def test_resolver_failure_yields_none(self, memory_store, event_bus):
        async def broken(ip):
            raise OSError("permission denied")

        scanner = _scanner(
            memory_store, event_bus, FakePinger(alive={"10.0.0.7"}),
            hostname_resolver=broken, mac_resolver=broken,
        )

        summary = await scanner.scan_network()

        assert summary.devices[0].hostname is None
        assert summary.devices[0].hardware_address is None

    async def test_skip_set_read_failure_returns_to_idle(self, memory_store, event_bus):
        async def broken():
            raise StoreError("no such table")

        memory_store.get_monitored_addresses = broken
        pinger = FakePinger()
        scanner = _scanner(memory_store, event_bus, pinger)

        summary = await scanner.scan_network()

        assert pinger.probed == []
        assert scanner.state is ScannerState.IDLE
        assert summary.error == "no such table"
        assert scanner.last_summary is summary


class TestStateMachine:

    async def test_concurrent_calls_run_one_sweep(self, memory_store, event_bus):
        release = asyncio.Event()

        async def hold_first(address):
            if address == "10.0.0.1":
                await release.wait()

        pinger = FakePinger(on_probe=hold_first)
        scanner = _scanner(memory_store, event_bus, pinger)

        first = asyncio.create_task(scanner.scan_network())
        await asyncio.sleep(0)
        while not pinger.probed:
            await asyncio.sleep(0)
        assert scanner.state is ScannerState.SCANNING

        second = await scanner.scan_network()
        release.set()
        summary = await first

        assert second is None
        assert summary is not None
        assert pinger.probed.count("10.0.0.1") == 1
        assert scanner.state is ScannerState.IDLE

    async def test_gathered_calls_run_one_sweep(self, memory_store, event_bus):
        pinger = FakePinger()
        scanner = _scanner(memory_store, event_bus, pinger)

        results = await asyncio.gather(scanner.scan_network(), scanner.scan_network())

        assert sum(r is not None for r in results) == 1
        assert len(pinger.probed) == 254

    async def test_stop_mid_sweep(self, memory_store, event_bus):
        scanner = None

        async def stop_at_120(address):
            if address == "10.0.0.119":
                scanner.stop()

        pinger = FakePinger(alive={"10.0.0.50", "10.0.0.119", "10.0.0.200"}, on_probe=stop_at_120)
        scanner = _scanner(memory_store, event_bus, pinger)

        summary = await scanner.scan_network()

        assert summary.cancelled is True
        assert pinger.probed[-1] == "10.0.0.119"
        assert all(int(ip.rsplit(".", 1)[1]) < 120 for ip in pinger.probed)
        discovered = {d.address for d in await memory_store.get_discovered_devices()}
        assert discovered == {"10.0.0.50", "10.0.0.119"}

    async def test_stop_is_sticky(self, memory_store, event_bus):
        pinger = FakePinger()
        scanner = _scanner(memory_store, event_bus, pinger)
        scanner.stop()

        assert await scanner.scan_network() is None
        assert await scanner.scan_network() is None
        assert pinger.probed == []
        assert scanner.state is ScannerState.STOPPING

    async def test_stop_during_sweep_stays_stopping(self, memory_store, event_bus):
        scanner = None

        async def stop_early(address):
            scanner.stop()

        scanner = _scanner(memory_store, event_bus, FakePinger(on_probe=stop_early))

        await scanner.scan_network()

        assert scanner.state is ScannerState.STOPPING


class TestHardwareAddress:

    def test_normalize_mac(self):
        assert normalize_mac("a-b-c-d-e-f") == "0A:0B:0C:0D:0E:0F"
        assert normalize_mac("aa:bb:cc:dd:ee:ff") == "AA:BB:CC:DD:EE:FF"

    def test_arp_scan_line_for_address(self):
        stdout = (
            "10.0.0.1\t00:11:22:33:44:55\tVendor A\n"
            "10.0.0.17\taa:bb:cc:dd:ee:ff\tVendor B\n"
        )
        completed = subprocess.CompletedProcess(args=[], returncode=0, stdout=stdout, stderr="")
        with patch("netwatch.core.discovery.subprocess.run", return_value=completed):
            assert _arp_lookup_arp_scan("10.0.0.1") == "00:11:22:33:44:55"
            assert _arp_lookup_arp_scan("10.0.0.17") == "AA:BB:CC:DD:EE:FF"
            assert _arp_lookup_arp_scan("10.0.0.2") is None

    def test_arp_table_entry(self):
        stdout = (
            "Address                  HWtype  HWaddress           Flags Mask            Iface\n"
            "10.0.0.17                ether   aa:bb:cc:dd:ee:ff   C                     eth0\n"
        )
        completed = subprocess.CompletedProcess(args=[], returncode=0, stdout=stdout, stderr="")
        with patch("netwatch.core.discovery.subprocess.run", return_value=completed):
            assert _arp_lookup_table("10.0.0.17") == "AA:BB:CC:DD:EE:FF"

    def test_arp_table_incomplete_entry(self):
        stdout = "10.0.0.17                         (incomplete)                              eth0\n"
        completed = subprocess.CompletedProcess(args=[], returncode=0, stdout=stdout, stderr="")
        with patch("netwatch.core.discovery.subprocess.run", return_value=completed):
            assert _arp_lookup_table("10.0.0.17") is None
