"""Mock radios for development and testing.

Produce a realistic mix of ordinary access points and BLE peripherals
alongside devices carrying surveillance-hardware signatures.
"""

import asyncio
import logging
import random
from datetime import UTC, datetime

from flockwatch.radio.base import (
    AdvertisementCallback,
    BaseBleRadio,
    BaseWifiRadio,
    BleAdvertisement,
    WifiResultsListener,
    WifiScanRecord,
)

logger = logging.getLogger(__name__)

# (bssid, ssid, base rssi)
_ACCESS_POINTS = [
    ("AA:BB:CC:11:22:33", "HomeNetwork", -42),
    ("AA:BB:CC:44:55:66", "CoffeeShop-Guest", -67),
    ("DD:EE:FF:11:22:33", "", -80),
    ("58:8E:81:1A:2B:3C", "Flock-4F21", -71),
    ("EC:1B:BD:9A:8B:7C", "", -84),
]

# (address, name, service uuids, base rssi)
_PERIPHERALS = [
    ("F0:12:34:56:78:9A", "Pixel Buds", (), -58),
    ("C4:AA:BB:CC:DD:EE", None, ("0000fe9f-0000-1000-8000-00805f9b34fb",), -75),
    ("D8:F3:BC:10:20:30", "FS Ext Battery", (), -77),
    ("E2:00:11:22:33:44", None, ("0000180a-0000-1000-8000-00805f9b34fb",), -82),
    ("94:34:69:AB:CD:EF", None, (), -88),
]


def _jitter(base: int, spread: int = 6) -> int:
    return base + random.randint(-spread, spread)


class MockWifiRadio(BaseWifiRadio):
    """Scans complete instantly and signal listeners like a real driver would."""

    def __init__(self) -> None:
        self._listeners: list[WifiResultsListener] = []
        self._results: list[WifiScanRecord] = self._generate_results(datetime.now(UTC))

    def register_listener(self, listener: WifiResultsListener) -> None:
        self._listeners.append(listener)

    def unregister_listener(self, listener: WifiResultsListener) -> None:
        self._listeners.remove(listener)

    async def pull_results(self) -> list[WifiScanRecord]:
        return list(self._results)

    async def request_scan(self) -> bool:
        self._results = self._generate_results(datetime.now(UTC))
        for listener in list(self._listeners):
            listener()
        return True

    def _generate_results(self, now: datetime) -> list[WifiScanRecord]:
        records = []
        for bssid, ssid, base_rssi in _ACCESS_POINTS:
            # Distant networks drop out of some scans
            if base_rssi < -75 and random.random() < 0.4:
                continue
            records.append(
                WifiScanRecord(
                    ssid=ssid,
                    bssid=bssid,
                    signal_strength=_jitter(base_rssi),
                    timestamp=now,
                )
            )
        return records


class MockBleRadio(BaseBleRadio):
    """Emits a burst of advertisements every ``interval`` seconds."""

    def __init__(self, interval: float = 1.0) -> None:
        self.interval = interval
        self._callback: AdvertisementCallback | None = None
        self._running = False
        self._task: asyncio.Task[None] | None = None

    async def start(self, callback: AdvertisementCallback) -> None:
        logger.info("Starting mock BLE radio (interval=%ss)", self.interval)
        self._callback = callback
        self._running = True
        self._task = asyncio.create_task(self._advertise_loop())

    async def stop(self) -> None:
        logger.info("Stopping mock BLE radio")
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _advertise_loop(self) -> None:
        while self._running:
            try:
                for adv in self._generate_advertisements(datetime.now(UTC)):
                    if self._callback is not None:
                        self._callback(adv)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Mock BLE radio error")

            await asyncio.sleep(self.interval)

    def _generate_advertisements(self, now: datetime) -> list[BleAdvertisement]:
        adverts = []
        for address, name, uuids, base_rssi in _PERIPHERALS:
            if random.random() < 0.3:
                continue
            adverts.append(
                BleAdvertisement(
                    address=address,
                    advertised_name=name,
                    device_name=None,
                    service_uuids=uuids,
                    signal_strength=_jitter(base_rssi, 8),
                    timestamp=now,
                )
            )
        return adverts
