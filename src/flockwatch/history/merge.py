"""Persistence merge policy: which live detections reach the saved history.

The live set always keeps the latest sighting of an address. The history
keeps the strongest sighting ever seen: a candidate overwrites the stored
record only when its signal is strictly stronger.
"""

import asyncio
import logging
from collections.abc import Iterable

from flockwatch.fusion.engine import ScanFusionEngine, Snapshot
from flockwatch.fusion.models import Detection
from flockwatch.history.store import DetectionHistory

logger = logging.getLogger(__name__)


class StrongerSignalPolicy:
    """Replace only with a strictly stronger (closer to 0 dBm) reading."""

    name = "stronger"

    def should_replace(self, candidate: Detection, existing: Detection) -> bool:
        return candidate.signal_strength > existing.signal_strength


class LatestWinsPolicy:
    """Always replace with the newest reading."""

    name = "latest"

    def should_replace(self, candidate: Detection, existing: Detection) -> bool:
        return True


MergePolicy = StrongerSignalPolicy | LatestWinsPolicy


def persist_detection(
    history: DetectionHistory,
    detection: Detection,
    policy: MergePolicy,
) -> Detection | None:
    """Save ``detection`` if the policy allows it.

    Returns the stored detection, or None if it was discarded.
    """
    if detection.threat_level <= 0:
        return None

    existing = history.find_by_address(detection.hardware_address)
    if existing is None:
        return history.insert_or_replace(detection.with_id(None))
    if not policy.should_replace(detection, existing):
        return None
    return history.insert_or_replace(detection.with_id(existing.id))


def persist_all(
    history: DetectionHistory,
    detections: Iterable[Detection],
    policy: MergePolicy,
) -> int:
    """Apply the policy to each detection. Returns how many were written."""
    written = 0
    for detection in detections:
        if persist_detection(history, detection, policy) is not None:
            written += 1
    return written


class AutoPersister:
    """Feeds live detections to the history store.

    In automatic mode every upsert from the engine is queued and written by a
    background task, so storage I/O never runs on the ingest path. Manual
    mode writes only when ``persist_now()`` is called.
    """

    def __init__(
        self,
        engine: ScanFusionEngine,
        history: DetectionHistory,
        policy: MergePolicy | None = None,
        auto: bool = False,
    ) -> None:
        self.engine = engine
        self.history = history
        self.policy = policy or StrongerSignalPolicy()
        self._auto = auto
        self._queue: asyncio.Queue[Snapshot] = asyncio.Queue()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._task: asyncio.Task[None] | None = None
        self._unsubscribe = None
        # Serializes manual and automatic writes
        self._write_lock = asyncio.Lock()

    @property
    def auto(self) -> bool:
        return self._auto

    async def start(self) -> None:
        logger.info("Starting history writer (auto=%s, policy=%s)", self._auto, self.policy.name)
        self._loop = asyncio.get_running_loop()
        self._task = asyncio.create_task(self._write_loop())
        self._unsubscribe = self.engine.on_upsert(self._on_upsert)
        if self._auto:
            self._enqueue(self.engine.snapshot())

    async def close(self) -> None:
        """Stop accepting upserts and wait for queued writes to finish."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._task is None:
            return
        await self._queue.join()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    def set_auto(self, enabled: bool) -> None:
        """Switch modes. Turning auto on also saves the current live set."""
        self._auto = enabled
        logger.info("Automatic history saving %s", "enabled" if enabled else "disabled")
        if enabled:
            self._enqueue(self.engine.snapshot())

    async def persist_now(self) -> int:
        """Evaluate the current live snapshot once. Returns how many were written."""
        snapshot = self.engine.snapshot()
        async with self._write_lock:
            return await asyncio.to_thread(persist_all, self.history, snapshot, self.policy)

    async def drain(self) -> None:
        """Wait until every queued upsert has been evaluated."""
        await self._queue.join()

    def _on_upsert(self, detections: Snapshot) -> None:
        if self._auto:
            self._enqueue(detections)

    def _enqueue(self, detections: Snapshot) -> None:
        if not detections or self._loop is None or self._loop.is_closed():
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self._queue.put_nowait(detections)
        else:
            # Radio callbacks may arrive on another thread
            self._loop.call_soon_threadsafe(self._queue.put_nowait, detections)

    async def _write_loop(self) -> None:
        while True:
            detections = await self._queue.get()
            try:
                async with self._write_lock:
                    await asyncio.to_thread(persist_all, self.history, detections, self.policy)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Failed to save %d detection(s)", len(detections))
            finally:
                self._queue.task_done()
