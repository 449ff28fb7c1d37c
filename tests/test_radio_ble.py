"""Tests for the bleak BLE radio."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from bleak.exc import BleakError

from flockwatch.radio.ble import BleakBleRadio, to_advertisement


class _NameGatedDevice:
    address = "E2:00:11:22:33:44"

    @property
    def name(self):
        raise PermissionError("BLUETOOTH_CONNECT not granted")


def _adv_data(local_name=None, uuids=None, rssi=-72):
    return SimpleNamespace(local_name=local_name, service_uuids=uuids or [], rssi=rssi)


class TestToAdvertisement:
    def test_maps_fields(self):
        device = SimpleNamespace(address="d8:f3:bc:10:20:30", name="Cached")
        adv = to_advertisement(device, _adv_data("Penguin", ["0000180A-0000-1000-8000-00805F9B34FB"]))
        assert adv.address == "d8:f3:bc:10:20:30"
        assert adv.advertised_name == "Penguin"
        assert adv.device_name == "Cached"
        assert adv.service_uuids == ("0000180A-0000-1000-8000-00805F9B34FB",)
        assert adv.signal_strength == -72

    def test_unreadable_device_name_becomes_none(self):
        adv = to_advertisement(_NameGatedDevice(), _adv_data())
        assert adv.device_name is None
        assert adv.address == "E2:00:11:22:33:44"


class TestBleakBleRadio:
    @pytest.mark.asyncio
    async def test_start_delivers_advertisements(self):
        scanner = MagicMock()
        scanner.start = AsyncMock()
        scanner.stop = AsyncMock()
        received = []

        with patch("flockwatch.radio.ble.BleakScanner", return_value=scanner) as scanner_cls:
            radio = BleakBleRadio()
            await radio.start(received.append)
            detection_callback = scanner_cls.call_args.kwargs["detection_callback"]
            detection_callback(SimpleNamespace(address="AA:BB:CC:DD:EE:FF", name=None), _adv_data("Flock"))
            await radio.stop()

        assert len(received) == 1
        assert received[0].advertised_name == "Flock"
        scanner.start.assert_awaited_once()
        scanner.stop.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_scan_failure_is_logged_not_raised(self, caplog):
        scanner = MagicMock()
        scanner.start = AsyncMock(side_effect=BleakError("adapter busy"))
        scanner.stop = AsyncMock()

        with patch("flockwatch.radio.ble.BleakScanner", return_value=scanner):
            radio = BleakBleRadio(adapter="hci1")
            await radio.start(lambda adv: None)
            await radio.stop()

        assert "BLE scan failed to start" in caplog.text
        scanner.stop.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_adapter_is_logged_not_raised(self, caplog):
        with patch(
            "flockwatch.radio.ble.BleakScanner",
            side_effect=BleakError("No Bluetooth adapters found."),
        ):
            radio = BleakBleRadio()
            await radio.start(lambda adv: None)
            await radio.stop()

        assert "No Bluetooth adapters found." in caplog.text
        assert radio._scanner is None

    @pytest.mark.asyncio
    async def test_adapter_passed_as_bluez_argument(self):
        scanner = MagicMock()
        scanner.start = AsyncMock()
        scanner.stop = AsyncMock()

        with patch("flockwatch.radio.ble.BleakScanner", return_value=scanner) as scanner_cls:
            radio = BleakBleRadio(adapter="hci1")
            await radio.start(lambda adv: None)
            await radio.stop()

        kwargs = scanner_cls.call_args.kwargs
        assert kwargs["bluez"] == {"adapter": "hci1"}
        assert "adapter" not in kwargs
