"""BLE advertisement listener using bleak."""

import logging
from datetime import UTC, datetime

from bleak import BleakScanner
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData
from bleak.exc import BleakError

from flockwatch.radio.base import AdvertisementCallback, BaseBleRadio, BleAdvertisement

logger = logging.getLogger(__name__)


def to_advertisement(device: BLEDevice, adv: AdvertisementData) -> BleAdvertisement:
    """Adapt a bleak detection callback into a BleAdvertisement."""
    try:
        device_name = device.name
    except Exception:
        # Some backends gate the cached name behind extra permissions
        logger.debug("Device name unavailable for %s", device.address)
        device_name = None
    return BleAdvertisement(
        address=device.address,
        advertised_name=adv.local_name,
        device_name=device_name,
        service_uuids=tuple(adv.service_uuids or ()),
        signal_strength=adv.rssi,
        timestamp=datetime.now(UTC),
    )


class BleakBleRadio(BaseBleRadio):
    """Continuous active scan, one callback per received advertisement."""

    def __init__(self, adapter: str | None = None) -> None:
        self.adapter = adapter
        self._scanner: BleakScanner | None = None

    async def start(self, callback: AdvertisementCallback) -> None:
        def _detection(device: BLEDevice, adv: AdvertisementData) -> None:
            callback(to_advertisement(device, adv))

        kwargs = {"bluez": {"adapter": self.adapter}} if self.adapter else {}
        try:
            # Backend lookup happens in the constructor and fails without an adapter
            scanner = BleakScanner(detection_callback=_detection, scanning_mode="active", **kwargs)
            await scanner.start()
        except (BleakError, OSError) as e:
            # No automatic retry; the next start attempt tries again
            logger.error("BLE scan failed to start: %s", e)
            return
        self._scanner = scanner
        logger.info("BLE scanning started%s", f" on {self.adapter}" if self.adapter else "")

    async def stop(self) -> None:
        if self._scanner is None:
            return
        scanner, self._scanner = self._scanner, None
        try:
            await scanner.stop()
        except (BleakError, OSError) as e:
            logger.warning("Error stopping BLE scan: %s", e)
        logger.info("BLE scanning stopped")
