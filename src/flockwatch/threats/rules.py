"""Surveillance-hardware signatures and the threat scoring function."""

from collections.abc import Iterable
from dataclasses import dataclass

from flockwatch.config import Settings
from flockwatch.radio.base import Observation, RadioKind
from flockwatch.radio.normalize import UNKNOWN_ADDRESS

# Known Flock Safety SSID and BLE name fragments
_WIFI_SSID_PATTERNS = ("flock", "FS Ext Battery", "Penguin", "Pigvision")
_BLE_NAME_PATTERNS = ("FS Ext Battery", "Penguin", "Flock", "Pigvision")

# Known Flock Safety MAC address prefixes
_MAC_PREFIXES = (
    "58:8e:81", "cc:cc:cc", "ec:1b:bd", "90:35:ea", "04:0d:84",
    "f0:82:c0", "1c:34:f1", "38:5b:44", "94:34:69", "b4:e3:f9",
    "70:c9:4e", "3c:91:80", "d8:f3:bc", "80:30:49", "14:5a:fc",
    "74:4c:a1", "08:3a:88", "9c:2f:9d", "94:08:53", "e4:aa:ea",
)  # fmt: skip

# Raven service UUIDs, shortened to their distinguishing leading segment
_SERVICE_UUID_FRAGMENTS = (
    "0000180a", "00003100", "00003200", "00003300",
    "00003400", "00003500", "00001809", "00001819",
)  # fmt: skip


@dataclass(frozen=True)
class ClassificationResult:
    threat_level: int  # 0 = no match, 1-3 ascending confidence
    reason: str | None = None

    @property
    def is_threat(self) -> bool:
        return self.threat_level > 0


NO_MATCH = ClassificationResult(0, None)


def _clean(values: Iterable[str]) -> tuple[str, ...]:
    return tuple(v.strip() for v in values if v and v.strip())


@dataclass(frozen=True)
class ThreatRuleSet:
    """Signature lists plus the scoring rules over them.

    Matching is case-insensitive: names by substring, addresses by prefix,
    service identifiers by substring against each advertised identifier.
    """

    wifi_ssid_patterns: tuple[str, ...] = _WIFI_SSID_PATTERNS
    ble_name_patterns: tuple[str, ...] = _BLE_NAME_PATTERNS
    mac_prefixes: tuple[str, ...] = _MAC_PREFIXES
    service_uuid_fragments: tuple[str, ...] = _SERVICE_UUID_FRAGMENTS

    @classmethod
    def from_settings(cls, cfg: Settings) -> "ThreatRuleSet":
        """Build a rule set from configuration; empty lists keep the built-in defaults."""
        return cls(
            wifi_ssid_patterns=_clean(cfg.wifi_ssid_patterns) or _WIFI_SSID_PATTERNS,
            ble_name_patterns=_clean(cfg.ble_name_patterns) or _BLE_NAME_PATTERNS,
            mac_prefixes=_clean(cfg.mac_prefixes) or _MAC_PREFIXES,
            service_uuid_fragments=_clean(cfg.service_uuid_fragments) or _SERVICE_UUID_FRAGMENTS,
        )

    def classify(self, observation: Observation) -> ClassificationResult:
        if observation.kind == RadioKind.bluetooth_le:
            return self._classify_ble(observation)
        return self._classify_wifi(observation)

    def _classify_wifi(self, observation: Observation) -> ClassificationResult:
        name = None if observation.hidden_ssid else observation.display_name
        name_match = _matches_name(name, self.wifi_ssid_patterns)
        mac_match = self._matches_prefix(observation.hardware_address)

        if name_match and mac_match:
            return ClassificationResult(3, "SSID + MAC prefix")
        if name_match:
            return ClassificationResult(2, "SSID")
        if mac_match:
            return ClassificationResult(2, "MAC prefix")
        return NO_MATCH

    def _classify_ble(self, observation: Observation) -> ClassificationResult:
        # A service UUID match alone is decisive
        if self._matches_service(observation.service_identifiers):
            return ClassificationResult(3, "Service UUID")

        name_match = _matches_name(observation.display_name, self.ble_name_patterns)
        mac_match = self._matches_prefix(observation.hardware_address)

        if name_match and mac_match:
            return ClassificationResult(3, "BLE Name + MAC prefix")
        if name_match:
            return ClassificationResult(2, "BLE Name")
        if mac_match:
            # Weaker than a WiFi MAC-only match
            return ClassificationResult(1, "BLE MAC prefix")
        return NO_MATCH

    def _matches_prefix(self, address: str) -> bool:
        if not address or address == UNKNOWN_ADDRESS:
            return False
        upper = address.upper()
        return any(upper.startswith(prefix.upper()) for prefix in self.mac_prefixes)

    def _matches_service(self, identifiers: frozenset[str]) -> bool:
        lowered = [i.lower() for i in identifiers]
        return any(
            fragment.lower() in identifier
            for fragment in self.service_uuid_fragments
            for identifier in lowered
        )


def _matches_name(name: str | None, patterns: Iterable[str]) -> bool:
    if not name:
        return False
    upper = name.upper()
    return any(pattern.upper() in upper for pattern in patterns)


DEFAULT_RULES = ThreatRuleSet()
