"""Conversion of raw scan records into Observations."""

from collections.abc import Iterable

from flockwatch.radio.base import BleAdvertisement, Observation, RadioKind, WifiScanRecord

HIDDEN_NETWORK_NAME = "Hidden Network"

# Stands in for a BLE scan record without a resolvable address
UNKNOWN_ADDRESS = "UNKNOWN"


def normalize_mac(mac: str) -> str:
    """Normalize a MAC address to uppercase colon-separated format."""
    cleaned = mac.strip().upper().replace("-", ":").replace(".", "")
    # Handle bare hex (e.g. "AABBCCDDEEFF")
    if ":" not in cleaned and len(cleaned) == 12:
        cleaned = ":".join(cleaned[i : i + 2] for i in range(0, 12, 2))
    return cleaned


def from_wifi_record(record: WifiScanRecord) -> Observation:
    """Convert one access point record.

    An empty SSID is a hidden network and gets the hidden-network label;
    an absent SSID stays None.
    """
    hidden = record.ssid == ""
    name = HIDDEN_NETWORK_NAME if hidden else record.ssid
    address = normalize_mac(record.bssid) if record.bssid else UNKNOWN_ADDRESS
    return Observation(
        kind=RadioKind.wifi,
        hardware_address=address,
        display_name=name,
        signal_strength=record.signal_strength,
        observed_at=record.timestamp,
        hidden_ssid=hidden,
    )


def from_wifi_batch(records: Iterable[WifiScanRecord]) -> list[Observation]:
    return [from_wifi_record(r) for r in records]


def from_ble_advertisement(adv: BleAdvertisement) -> Observation:
    """Convert one advertisement, resolving the name advertised -> reported -> None."""
    name = adv.advertised_name or adv.device_name or None
    address = normalize_mac(adv.address) if adv.address else UNKNOWN_ADDRESS
    return Observation(
        kind=RadioKind.bluetooth_le,
        hardware_address=address,
        display_name=name,
        signal_strength=adv.signal_strength,
        observed_at=adv.timestamp,
        service_identifiers=frozenset(u.lower() for u in adv.service_uuids),
    )
