"""Saved detection history: CRUD over DetectionRecord and a subscribable view."""

import logging
import threading
from collections.abc import Callable

from sqlalchemy import Engine
from sqlmodel import Session, select

from flockwatch.fusion.models import Detection
from flockwatch.history.models import DetectionRecord

logger = logging.getLogger(__name__)

HistoryCallback = Callable[[list[Detection]], None]


def insert_or_replace(session: Session, detection: Detection) -> Detection:
    """Write a detection, replacing the row that shares its id or address.

    Returns the stored detection with its storage id set.
    """
    record = session.get(DetectionRecord, detection.id) if detection.id is not None else None
    conflict = _get_record(session, detection.hardware_address)

    if record is None:
        record = conflict
    elif conflict is not None and conflict.id != record.id:
        # Address is unique; the written row takes it over
        session.delete(conflict)
        session.flush()

    if record is None:
        record = DetectionRecord.from_detection(detection.with_id(None))
        session.add(record)
    else:
        record.update_from(detection)

    session.commit()
    session.refresh(record)
    return record.to_detection()


def find_by_address(session: Session, hardware_address: str) -> Detection | None:
    record = _get_record(session, hardware_address)
    return record.to_detection() if record is not None else None


def get_all_detections(session: Session) -> list[Detection]:
    """All saved detections, newest first."""
    stmt = select(DetectionRecord).order_by(DetectionRecord.timestamp.desc())  # type: ignore[attr-defined]
    return [r.to_detection() for r in session.exec(stmt).all()]


def get_detection(session: Session, detection_id: int) -> Detection | None:
    record = session.get(DetectionRecord, detection_id)
    return record.to_detection() if record is not None else None


def delete_by_identity(session: Session, detection: Detection) -> bool:
    """Delete the saved record for this detection.

    Returns True if a record was deleted, False if not found.
    """
    if detection.id is None:
        return False
    record = session.get(DetectionRecord, detection.id)
    if record is None:
        return False
    session.delete(record)
    session.commit()
    return True


def delete_all(session: Session) -> int:
    """Delete every saved record. Returns the number removed."""
    records = session.exec(select(DetectionRecord)).all()
    for record in records:
        session.delete(record)
    session.commit()
    return len(records)


def _get_record(session: Session, hardware_address: str) -> DetectionRecord | None:
    stmt = select(DetectionRecord).where(DetectionRecord.hardware_address == hardware_address)
    return session.exec(stmt).first()


class DetectionHistory:
    """Session-managing facade over the store functions.

    Subscribers receive the full history (newest first) after every write.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._subscribers: list[HistoryCallback] = []
        self._lock = threading.Lock()

    def insert_or_replace(self, detection: Detection) -> Detection:
        with Session(self.engine) as session:
            stored = insert_or_replace(session, detection)
        self._publish()
        return stored

    def find_by_address(self, hardware_address: str) -> Detection | None:
        with Session(self.engine) as session:
            return find_by_address(session, hardware_address)

    def all(self) -> list[Detection]:
        with Session(self.engine) as session:
            return get_all_detections(session)

    def get(self, detection_id: int) -> Detection | None:
        with Session(self.engine) as session:
            return get_detection(session, detection_id)

    def delete_by_identity(self, detection: Detection) -> bool:
        with Session(self.engine) as session:
            deleted = delete_by_identity(session, detection)
        if deleted:
            self._publish()
        return deleted

    def delete_all(self) -> int:
        with Session(self.engine) as session:
            count = delete_all(session)
        logger.info("Cleared %d saved detection(s)", count)
        self._publish()
        return count

    def subscribe(self, callback: HistoryCallback) -> Callable[[], None]:
        """Receive the current history now and after every write."""
        with self._lock:
            self._subscribers.append(callback)
        callback(self.all())

        def _unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return _unsubscribe

    def _publish(self) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        if not subscribers:
            return
        records = self.all()
        for cb in subscribers:
            try:
                cb(records)
            except Exception:
                logger.exception("History subscriber %r failed", cb)
