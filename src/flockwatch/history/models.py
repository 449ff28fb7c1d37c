"""Persisted detection record."""

from datetime import UTC, datetime

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from flockwatch.fusion.models import Detection
from flockwatch.radio.base import RadioKind


def _as_utc(value: datetime) -> datetime:
    # SQLite stores naive datetimes
    return value.replace(tzinfo=UTC) if value.tzinfo is None else value


class DetectionRecord(SQLModel, table=True):
    __tablename__ = "detection"

    id: int | None = Field(default=None, primary_key=True)
    kind: RadioKind
    hardware_address: str = Field(index=True, unique=True)
    display_name: str | None = None
    service_identifiers: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    hidden_ssid: bool = False
    signal_strength: int
    observed_at: datetime
    latitude: float = 0.0
    longitude: float = 0.0
    threat_level: int
    reason: str | None = None
    timestamp: datetime = Field(index=True)

    @classmethod
    def from_detection(cls, detection: Detection) -> "DetectionRecord":
        return cls(
            id=detection.id,
            kind=detection.kind,
            hardware_address=detection.hardware_address,
            display_name=detection.display_name,
            service_identifiers=sorted(detection.service_identifiers),
            hidden_ssid=detection.hidden_ssid,
            signal_strength=detection.signal_strength,
            observed_at=detection.observed_at,
            latitude=detection.latitude,
            longitude=detection.longitude,
            threat_level=detection.threat_level,
            reason=detection.reason,
            timestamp=detection.timestamp,
        )

    def update_from(self, detection: Detection) -> None:
        """Overwrite content with ``detection``, keeping this record's id."""
        self.kind = detection.kind
        self.hardware_address = detection.hardware_address
        self.display_name = detection.display_name
        self.service_identifiers = sorted(detection.service_identifiers)
        self.hidden_ssid = detection.hidden_ssid
        self.signal_strength = detection.signal_strength
        self.observed_at = detection.observed_at
        self.latitude = detection.latitude
        self.longitude = detection.longitude
        self.threat_level = detection.threat_level
        self.reason = detection.reason
        self.timestamp = detection.timestamp

    def to_detection(self) -> Detection:
        return Detection(
            kind=RadioKind(self.kind),
            hardware_address=self.hardware_address,
            display_name=self.display_name,
            signal_strength=self.signal_strength,
            observed_at=_as_utc(self.observed_at),
            latitude=self.latitude,
            longitude=self.longitude,
            threat_level=self.threat_level,
            reason=self.reason,
            timestamp=_as_utc(self.timestamp),
            service_identifiers=frozenset(self.service_identifiers or ()),
            hidden_ssid=self.hidden_ssid,
            id=self.id,
        )
