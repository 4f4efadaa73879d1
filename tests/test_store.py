"""Contract tests run against every DeviceStore implementation."""

from datetime import timedelta

from conftest import make_device
from netwatch.core.models import CheckResult, Protocol


def _result(address, alive, **kwargs):
    return CheckResult(address=address, is_alive=alive, **kwargs)


class TestMonitored:

    async def test_upsert_is_idempotent_and_keeps_status(self, store):
        device = make_device("10.0.0.1", "router")
        await store.upsert_monitored_device(device)
        await store.update_monitored_status(_result("10.0.0.1", True, latency_ms=3.0))

        await store.upsert_monitored_device(device.model_copy(update={"display_name": "gateway"}))

        [stored] = await store.get_monitored_devices()
        assert stored.display_name == "gateway"
        assert stored.uptime_ticks == 1
        assert stored.last_alive is True

    async def test_ordered_by_section_then_name(self, store):
        for device in [
            make_device("10.0.0.3", "zeta", section="b"),
            make_device("10.0.0.1", "beta", section="a"),
            make_device("10.0.0.2", "alpha", section="b"),
            make_device("10.0.0.4", "alpha", section="a"),
        ]:
            await store.upsert_monitored_device(device)

        names = [(d.section, d.display_name) for d in await store.get_monitored_devices()]

        assert names == [("a", "alpha"), ("a", "beta"), ("b", "alpha"), ("b", "zeta")]

    async def test_uptime_never_reset(self, store):
        await store.upsert_monitored_device(make_device("10.0.0.1"))

        ticks = []
        for alive in [True, False, False, True, True, False]:
            stored = await store.update_monitored_status(_result("10.0.0.1", alive))
            ticks.append(stored.uptime_ticks)

        assert ticks == [1, 1, 1, 2, 3, 3]

    async def test_status_fields_overwritten(self, store):
        await store.upsert_monitored_device(
            make_device("10.0.0.3", protocol=Protocol.HTTP, port=8080)
        )
        await store.update_monitored_status(_result("10.0.0.3", True, status_code=200))

        stored = await store.update_monitored_status(_result("10.0.0.3", False, error="Timeout"))

        assert stored.last_alive is False
        assert stored.last_status_code is None
        assert stored.last_error == "Timeout"
        assert stored.last_checked_at is not None

    async def test_status_for_unknown_address_ignored(self, store):
        assert await store.update_monitored_status(_result("10.9.9.9", True)) is None
        assert await store.get_monitored_devices() == []

    async def test_monitored_addresses(self, store):
        await store.upsert_monitored_device(make_device("10.0.0.1"))
        await store.upsert_monitored_device(make_device("10.0.0.2"))

        addresses = await store.get_monitored_addresses()

        assert addresses == frozenset({"10.0.0.1", "10.0.0.2"})


class TestDiscovered:

    async def test_double_upsert_yields_one_record_with_two_ticks(self, store):
        await store.upsert_discovered_device("10.0.0.50")
        await store.upsert_discovered_device("10.0.0.50")

        devices = await store.get_discovered_devices()

        assert len(devices) == 1
        assert devices[0].total_seen_ticks == 2

    async def test_latest_non_null_metadata_wins(self, store):
        await store.upsert_discovered_device("10.0.0.50", "old.lan", "AA:AA:AA:AA:AA:AA")
        await store.upsert_discovered_device("10.0.0.50", None, None)
        device = await store.upsert_discovered_device("10.0.0.50", "new.lan", None)

        assert device.hostname == "new.lan"
        assert device.hardware_address == "AA:AA:AA:AA:AA:AA"
        assert device.total_seen_ticks == 3

    async def test_sightings_refresh_last_seen_only(self, store):
        first = await store.upsert_discovered_device("10.0.0.50")
        second = await store.upsert_discovered_device("10.0.0.50")

        assert second.first_seen_at == first.first_seen_at
        assert second.last_seen_at >= first.last_seen_at

    async def test_promoted_address_excluded(self, store):
        await store.upsert_discovered_device("10.0.0.50", "nas.lan")
        await store.upsert_discovered_device("10.0.0.51")

        await store.upsert_monitored_device(make_device("10.0.0.50", "nas"))
        await store.upsert_discovered_device("10.0.0.50")

        addresses = [d.address for d in await store.get_discovered_devices()]
        assert addresses == ["10.0.0.51"]

    async def test_newest_sighting_first(self, store):
        await store.upsert_discovered_device("10.0.0.50")
        await store.upsert_discovered_device("10.0.0.51")
        await store.upsert_discovered_device("10.0.0.50")

        addresses = [d.address for d in await store.get_discovered_devices()]

        assert addresses[0] == "10.0.0.50"


async def test_timestamps_stored_in_utc(store):
    await store.upsert_monitored_device(make_device("10.0.0.1"))
    monitored = await store.update_monitored_status(_result("10.0.0.1", True))
    discovered = await store.upsert_discovered_device("10.0.0.50")

    assert monitored.last_checked_at.utcoffset() == timedelta(0)
    assert discovered.first_seen_at.utcoffset() == timedelta(0)
    assert discovered.last_seen_at.utcoffset() == timedelta(0)
