"""Webhook alerts when the live detection count grows."""

import asyncio
import logging
from concurrent.futures import Future
from datetime import UTC, datetime
from typing import Any

import httpx

from flockwatch.fusion.engine import ScanFusionEngine, Snapshot
from flockwatch.fusion.models import Detection

logger = logging.getLogger(__name__)


def build_payload(count: int, newest: Detection | None) -> dict[str, Any]:
    """Build the JSON body announcing a new detection."""
    device = None
    if newest is not None:
        device = {
            "kind": str(newest.kind),
            "hardware_address": newest.hardware_address,
            "name": newest.display_name or newest.hardware_address,
            "signal_strength": newest.signal_strength,
            "threat_level": newest.threat_level,
            "reason": newest.reason,
            "latitude": newest.latitude,
            "longitude": newest.longitude,
        }
    return {
        "event": "new_detection",
        "timestamp": datetime.now(UTC).isoformat(),
        "count": count,
        "device": device,
    }


async def dispatch_webhook(url: str, payload: dict[str, Any]) -> dict[str, Any]:
    """POST one payload. Returns a result dict with status_code and success."""
    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            response = await client.post(url, json=payload)
    except Exception as e:
        logger.error("Webhook dispatch error: %s → %s: %s", payload["event"], url, e)
        return {"url": url, "status_code": None, "success": False, "error": str(e)}

    if response.is_success:
        logger.info("Webhook delivered: %s → %s (HTTP %d)", payload["event"], url, response.status_code)
    else:
        logger.warning("Webhook failed: %s → %s (HTTP %d)", payload["event"], url, response.status_code)
    return {"url": url, "status_code": response.status_code, "success": response.is_success}


class DetectionNotifier:
    """Watches live snapshots and fires a webhook whenever the count increases."""

    def __init__(self, engine: ScanFusionEngine, webhook_url: str) -> None:
        self.engine = engine
        self.webhook_url = webhook_url
        self._last_count = 0
        self._loop: asyncio.AbstractEventLoop | None = None
        self._unsubscribe = None
        self._pending: set[Future[dict[str, Any]]] = set()

    def start(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._unsubscribe = self.engine.subscribe(self._on_snapshot)

    async def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._pending:
            pending = [asyncio.wrap_future(f) for f in list(self._pending)]
            await asyncio.gather(*pending, return_exceptions=True)

    def _on_snapshot(self, detections: Snapshot) -> None:
        count = len(detections)
        grew = count > self._last_count
        self._last_count = count
        if not grew or self._loop is None or self._loop.is_closed():
            return
        payload = build_payload(count, detections[0] if detections else None)
        future = asyncio.run_coroutine_threadsafe(
            dispatch_webhook(self.webhook_url, payload), self._loop
        )
        self._pending.add(future)
        future.add_done_callback(self._pending.discard)
