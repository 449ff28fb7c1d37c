"""Raw radio records, the uniform Observation shape, and radio interfaces."""

import enum
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime


class RadioKind(enum.StrEnum):
    wifi = "wifi"
    bluetooth_le = "bluetooth_le"


@dataclass(frozen=True)
class WifiScanRecord:
    """One visible access point from a WiFi scan-result pull."""

    ssid: str | None  # "" for a hidden network, None if the backend had no SSID field
    bssid: str | None
    signal_strength: int  # dBm (negative, e.g. -45)
    timestamp: datetime


@dataclass(frozen=True)
class BleAdvertisement:
    """One BLE advertisement callback invocation."""

    address: str | None
    advertised_name: str | None  # local name from the scan record
    device_name: str | None  # name reported by the host stack, may be unreadable
    service_uuids: tuple[str, ...]
    signal_strength: int
    timestamp: datetime


@dataclass(frozen=True)
class Observation:
    """A single radio sighting, independent of the radio it came from."""

    kind: RadioKind
    hardware_address: str
    display_name: str | None
    signal_strength: int
    observed_at: datetime
    service_identifiers: frozenset[str] = field(default_factory=frozenset)
    hidden_ssid: bool = False


WifiResultsListener = Callable[[], None]
AdvertisementCallback = Callable[[BleAdvertisement], None]


class BaseWifiRadio(ABC):
    """WiFi scanning backend.

    The radio announces "scan results changed" to registered listeners;
    listeners then pull the current batch with ``pull_results()``.
    """

    @abstractmethod
    def register_listener(self, listener: WifiResultsListener) -> None:
        """Register a callback for scan-results-changed signals."""

    @abstractmethod
    def unregister_listener(self, listener: WifiResultsListener) -> None:
        """Remove a listener. Raises ValueError if it is not registered."""

    @abstractmethod
    async def pull_results(self) -> list[WifiScanRecord]:
        """Return the access points visible in the latest scan."""

    @abstractmethod
    async def request_scan(self) -> bool:
        """Ask the radio for a fresh scan. Returns False if it was refused."""


class BaseBleRadio(ABC):
    """Continuous BLE advertisement listener."""

    @abstractmethod
    async def start(self, callback: AdvertisementCallback) -> None:
        """Start delivering advertisements to ``callback``."""

    @abstractmethod
    async def stop(self) -> None:
        """Stop the listener."""
