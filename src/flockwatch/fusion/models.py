"""Detection: a classified, location-tagged observation."""

from dataclasses import dataclass, field, replace
from datetime import datetime

from flockwatch.radio.base import Observation, RadioKind
from flockwatch.threats.rules import ClassificationResult

# Location used when none has been reported yet
UNKNOWN_LOCATION = (0.0, 0.0)


@dataclass(frozen=True)
class Detection:
    kind: RadioKind
    hardware_address: str
    display_name: str | None
    signal_strength: int
    observed_at: datetime
    latitude: float
    longitude: float
    threat_level: int
    reason: str | None
    timestamp: datetime
    service_identifiers: frozenset[str] = field(default_factory=frozenset)
    hidden_ssid: bool = False
    id: int | None = None  # assigned by the history store

    @classmethod
    def from_observation(
        cls,
        observation: Observation,
        result: ClassificationResult,
        location: tuple[float, float],
        timestamp: datetime,
    ) -> "Detection":
        return cls(
            kind=observation.kind,
            hardware_address=observation.hardware_address,
            display_name=observation.display_name,
            signal_strength=observation.signal_strength,
            observed_at=observation.observed_at,
            latitude=location[0],
            longitude=location[1],
            threat_level=result.threat_level,
            reason=result.reason,
            timestamp=timestamp,
            service_identifiers=observation.service_identifiers,
            hidden_ssid=observation.hidden_ssid,
        )

    def with_id(self, detection_id: int | None) -> "Detection":
        return replace(self, id=detection_id)
