"""Tests for the scan fusion engine."""

import threading

from flockwatch.fusion.engine import ScanFusionEngine
from flockwatch.fusion.models import UNKNOWN_LOCATION
from flockwatch.radio.base import RadioKind

from conftest import make_observation

FLOCK_A = "58:8E:81:AA:BB:01"
FLOCK_B = "58:8E:81:AA:BB:02"
FLOCK_C = "58:8E:81:AA:BB:03"


def _addresses(engine: ScanFusionEngine) -> list[str]:
    return [d.hardware_address for d in engine.snapshot()]


class TestIngest:
    def test_match_enters_live_set(self, clock):
        engine = ScanFusionEngine(clock=clock)
        result = engine.ingest(make_observation(address=FLOCK_A))
        assert result.threat_level == 3
        (detection,) = engine.snapshot()
        assert detection.hardware_address == FLOCK_A
        assert detection.threat_level == 3
        assert detection.reason == "SSID + MAC prefix"
        assert detection.id is None

    def test_non_match_is_discarded(self, clock):
        engine = ScanFusionEngine(clock=clock)
        result = engine.ingest(make_observation(address="AA:BB:CC:DD:EE:FF", name="HomeWifi"))
        assert result.threat_level == 0
        assert engine.snapshot() == ()

    def test_unknown_location_sentinel(self, clock):
        engine = ScanFusionEngine(clock=clock)
        engine.ingest(make_observation(address=FLOCK_A))
        d = engine.snapshot()[0]
        assert (d.latitude, d.longitude) == UNKNOWN_LOCATION

    def test_tagged_with_current_location(self, clock):
        engine = ScanFusionEngine(clock=clock)
        engine.set_location(40.7128, -74.006)
        engine.ingest(make_observation(address=FLOCK_A))
        d = engine.snapshot()[0]
        assert (d.latitude, d.longitude) == (40.7128, -74.006)

    def test_location_change_is_not_retroactive(self, clock):
        engine = ScanFusionEngine(clock=clock)
        engine.set_location(1.0, 2.0)
        engine.ingest(make_observation(address=FLOCK_A))
        engine.set_location(3.0, 4.0)
        engine.ingest(make_observation(address=FLOCK_B))
        by_addr = {d.hardware_address: d for d in engine.snapshot()}
        assert (by_addr[FLOCK_A].latitude, by_addr[FLOCK_A].longitude) == (1.0, 2.0)
        assert (by_addr[FLOCK_B].latitude, by_addr[FLOCK_B].longitude) == (3.0, 4.0)

    def test_timestamp_from_injected_clock(self, clock):
        start = clock.now
        engine = ScanFusionEngine(clock=clock)
        engine.ingest(make_observation(address=FLOCK_A))
        assert engine.snapshot()[0].timestamp == start


class TestUpsertOrdering:
    def test_new_addresses_are_prepended(self, clock):
        engine = ScanFusionEngine(clock=clock)
        for addr in (FLOCK_A, FLOCK_B, FLOCK_C):
            engine.ingest(make_observation(address=addr))
        assert _addresses(engine) == [FLOCK_C, FLOCK_B, FLOCK_A]

    def test_repeat_sighting_replaces_and_moves_to_front(self, clock):
        engine = ScanFusionEngine(clock=clock)
        for addr in (FLOCK_A, FLOCK_B, FLOCK_C):
            engine.ingest(make_observation(address=addr))

        engine.ingest(make_observation(address=FLOCK_A, rssi=-42))

        assert _addresses(engine) == [FLOCK_A, FLOCK_C, FLOCK_B]
        assert engine.snapshot()[0].signal_strength == -42

    def test_one_entry_per_address_with_latest_content(self, clock):
        engine = ScanFusionEngine(clock=clock)
        for rssi in (-90, -40, -75):
            engine.ingest(make_observation(address=FLOCK_A, rssi=rssi))
        snapshot = engine.snapshot()
        assert len(snapshot) == 1
        assert snapshot[0].signal_strength == -75

    def test_batch_applies_per_item_upsert(self, clock):
        engine = ScanFusionEngine(clock=clock)
        engine.ingest(make_observation(address=FLOCK_A))
        results = engine.ingest_batch(
            [
                make_observation(address=FLOCK_B),
                make_observation(address="AA:BB:CC:DD:EE:FF", name="HomeWifi"),
                make_observation(address=FLOCK_A, rssi=-30),
                make_observation(address=FLOCK_B, rssi=-50),
            ]
        )
        assert [r.threat_level for r in results] == [3, 0, 3, 3]
        assert _addresses(engine) == [FLOCK_B, FLOCK_A]
        assert engine.snapshot()[0].signal_strength == -50

    def test_wifi_and_ble_share_address_key(self, clock):
        engine = ScanFusionEngine(clock=clock)
        engine.ingest(make_observation(address=FLOCK_A))
        engine.ingest(make_observation(RadioKind.bluetooth_le, address=FLOCK_A, name=None))
        (detection,) = engine.snapshot()
        assert detection.kind == RadioKind.bluetooth_le


class TestClearAndRemove:
    def test_clear_twice_is_safe(self, clock):
        engine = ScanFusionEngine(clock=clock)
        engine.ingest(make_observation(address=FLOCK_A))
        engine.clear()
        assert engine.snapshot() == ()
        engine.clear()
        assert engine.snapshot() == ()

    def test_remove_single_entry(self, clock):
        engine = ScanFusionEngine(clock=clock)
        engine.ingest(make_observation(address=FLOCK_A))
        engine.ingest(make_observation(address=FLOCK_B))
        assert engine.remove(FLOCK_A) is True
        assert _addresses(engine) == [FLOCK_B]

    def test_remove_missing_entry(self, clock):
        engine = ScanFusionEngine(clock=clock)
        assert engine.remove(FLOCK_A) is False


class TestSubscriptions:
    def test_subscribe_receives_current_then_updates(self, clock):
        engine = ScanFusionEngine(clock=clock)
        engine.ingest(make_observation(address=FLOCK_A))
        received = []
        engine.subscribe(received.append)
        engine.ingest(make_observation(address=FLOCK_B))
        engine.clear()
        assert [len(s) for s in received] == [1, 2, 0]

    def test_batch_publishes_single_snapshot(self, clock):
        engine = ScanFusionEngine(clock=clock)
        received = []
        engine.subscribe(received.append)
        engine.ingest_batch([make_observation(address=a) for a in (FLOCK_A, FLOCK_B, FLOCK_C)])
        assert [len(s) for s in received] == [0, 3]

    def test_non_matching_ingest_publishes_nothing(self, clock):
        engine = ScanFusionEngine(clock=clock)
        received = []
        engine.subscribe(received.append)
        engine.ingest(make_observation(address="AA:BB:CC:DD:EE:FF", name="HomeWifi"))
        assert received == [()]

    def test_unsubscribe(self, clock):
        engine = ScanFusionEngine(clock=clock)
        received = []
        unsubscribe = engine.subscribe(received.append)
        unsubscribe()
        engine.ingest(make_observation(address=FLOCK_A))
        assert received == [()]

    def test_snapshots_are_immutable(self, clock):
        engine = ScanFusionEngine(clock=clock)
        received = []
        engine.subscribe(received.append)
        engine.ingest(make_observation(address=FLOCK_A))
        first = received[-1]
        engine.ingest(make_observation(address=FLOCK_B))
        assert isinstance(first, tuple)
        assert len(first) == 1

    def test_on_upsert_reports_changed_detections_only(self, clock):
        engine = ScanFusionEngine(clock=clock)
        engine.ingest(make_observation(address=FLOCK_A))
        upserts = []
        engine.on_upsert(upserts.append)
        engine.ingest_batch([make_observation(address=FLOCK_B), make_observation(address=FLOCK_B, rssi=-20)])
        engine.clear()
        assert len(upserts) == 1
        (only,) = upserts[0]
        assert only.hardware_address == FLOCK_B
        assert only.signal_strength == -20

    def test_failing_subscriber_does_not_break_ingest(self, clock):
        engine = ScanFusionEngine(clock=clock)

        def _boom(_snapshot):
            raise RuntimeError("subscriber bug")

        engine.subscribe(_boom)
        engine.ingest(make_observation(address=FLOCK_A))
        assert _addresses(engine) == [FLOCK_A]

    def test_location_listener(self, clock):
        engine = ScanFusionEngine(clock=clock)
        seen = []
        engine.on_location(seen.append)
        engine.set_location(10.0, 20.0)
        assert seen == [(10.0, 20.0)]
        assert engine.location == (10.0, 20.0)


class TestConcurrency:
    def test_concurrent_writers_never_expose_duplicates(self):
        engine = ScanFusionEngine()
        addresses = [f"58:8E:81:00:00:{i:02X}" for i in range(20)]
        torn = []

        def _check(snapshot):
            keys = [d.hardware_address for d in snapshot]
            if len(keys) != len(set(keys)):
                torn.append(keys)

        engine.subscribe(_check)

        def _writer(offset):
            for n in range(200):
                engine.ingest(make_observation(address=addresses[(n + offset) % 20], rssi=-(n % 90)))

        threads = [threading.Thread(target=_writer, args=(i,)) for i in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert torn == []
        assert sorted(_addresses(engine)) == sorted(addresses)

    def test_instances_are_independent(self, clock):
        first = ScanFusionEngine(clock=clock)
        second = ScanFusionEngine(clock=clock)
        first.ingest(make_observation(address=FLOCK_A))
        assert second.snapshot() == ()
