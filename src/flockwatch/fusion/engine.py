"""Scan fusion engine: classification, address-keyed dedup, and live snapshots.

Both radios feed ``ingest``/``ingest_batch``. Each list transition runs under
one lock and swaps in a new immutable tuple, so subscribers only ever see
complete snapshots. Nothing here performs I/O.
"""

import logging
import threading
from collections.abc import Callable, Iterable
from datetime import UTC, datetime

from flockwatch.fusion.models import UNKNOWN_LOCATION, Detection
from flockwatch.radio.base import Observation
from flockwatch.threats.rules import DEFAULT_RULES, ClassificationResult, ThreatRuleSet

logger = logging.getLogger(__name__)

Snapshot = tuple[Detection, ...]
SnapshotCallback = Callable[[Snapshot], None]
UpsertCallback = Callable[[Snapshot], None]
LocationCallback = Callable[[tuple[float, float]], None]


def _utc_now() -> datetime:
    return datetime.now(UTC)


class ScanFusionEngine:
    """Owns the live detection set and the current location."""

    def __init__(
        self,
        rules: ThreatRuleSet = DEFAULT_RULES,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.rules = rules
        self._clock = clock
        self._lock = threading.RLock()
        self._detections: Snapshot = ()
        self._location: tuple[float, float] | None = None
        self._subscribers: list[SnapshotCallback] = []
        self._upsert_listeners: list[UpsertCallback] = []
        self._location_listeners: list[LocationCallback] = []

    # --- Location ---

    @property
    def location(self) -> tuple[float, float] | None:
        return self._location

    def set_location(self, latitude: float, longitude: float) -> None:
        """Tag subsequent detections with this position. Existing ones keep theirs."""
        with self._lock:
            self._location = (latitude, longitude)
            for cb in list(self._location_listeners):
                self._notify(cb, self._location)

    def on_location(self, callback: LocationCallback) -> Callable[[], None]:
        with self._lock:
            self._location_listeners.append(callback)
        return lambda: self._discard(self._location_listeners, callback)

    # --- Ingestion ---

    def ingest(self, observation: Observation) -> ClassificationResult:
        """Classify one observation and upsert it if it matches."""
        return self.ingest_batch([observation])[0]

    def ingest_batch(self, observations: Iterable[Observation]) -> list[ClassificationResult]:
        """Classify and upsert a batch, publishing one snapshot for the whole batch."""
        results: list[ClassificationResult] = []
        with self._lock:
            location = self._location or UNKNOWN_LOCATION
            current = list(self._detections)
            upserted: dict[str, Detection] = {}
            for observation in observations:
                result = self.rules.classify(observation)
                results.append(result)
                if not result.is_threat:
                    continue
                detection = Detection.from_observation(
                    observation, result, location, self._clock()
                )
                logger.debug(
                    "%s match: %s (%s) rssi=%d reason=%s",
                    observation.kind,
                    observation.display_name,
                    observation.hardware_address,
                    observation.signal_strength,
                    result.reason,
                )
                current = _upsert(current, detection)
                upserted[detection.hardware_address] = detection

            if upserted:
                self._commit(tuple(current), tuple(upserted.values()))
        return results

    # --- Live set ---

    def snapshot(self) -> Snapshot:
        return self._detections

    def clear(self) -> None:
        """Empty the live set. Safe to call repeatedly."""
        with self._lock:
            self._commit((), ())

    def remove(self, hardware_address: str) -> bool:
        """Drop one entry from the live set. Returns False if it was not present."""
        with self._lock:
            remaining = tuple(
                d for d in self._detections if d.hardware_address != hardware_address
            )
            if len(remaining) == len(self._detections):
                return False
            self._commit(remaining, ())
            return True

    # --- Subscriptions ---

    def subscribe(self, callback: SnapshotCallback) -> Callable[[], None]:
        """Receive every snapshot, starting with the current one.

        Returns a function that cancels the subscription.
        """
        with self._lock:
            self._subscribers.append(callback)
            self._notify(callback, self._detections)
        return lambda: self._discard(self._subscribers, callback)

    def on_upsert(self, callback: UpsertCallback) -> Callable[[], None]:
        """Receive the detections written by each ingest transition."""
        with self._lock:
            self._upsert_listeners.append(callback)
        return lambda: self._discard(self._upsert_listeners, callback)

    def _commit(self, detections: Snapshot, upserted: Snapshot) -> None:
        # Caller holds the lock
        self._detections = detections
        for cb in list(self._subscribers):
            self._notify(cb, detections)
        if upserted:
            for cb in list(self._upsert_listeners):
                self._notify(cb, upserted)

    def _discard(self, listeners: list, callback: object) -> None:
        with self._lock:
            if callback in listeners:
                listeners.remove(callback)

    @staticmethod
    def _notify(callback: Callable, value: object) -> None:
        try:
            callback(value)
        except Exception:
            logger.exception("Subscriber %r failed", callback)


def _upsert(current: list[Detection], detection: Detection) -> list[Detection]:
    """Replace any entry with the same address and move the new one to the front."""
    rest = [d for d in current if d.hardware_address != detection.hardware_address]
    return [detection, *rest]
