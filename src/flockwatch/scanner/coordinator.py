"""Scan lifecycle: starts and stops the radios feeding the fusion engine.

Idle -> Scanning requires location and BLE-scan access at the moment of the
transition. Scanning runs a continuous BLE listener, a WiFi results listener,
and a ticker that requests a fresh WiFi scan every ``rescan_interval``
seconds. Stopping cancels the ticker and detaches both listeners.
Transitions run one at a time; a radio that fails to start puts the
coordinator back to idle.
"""

import asyncio
import enum
import logging
from collections.abc import Callable
from dataclasses import dataclass

from flockwatch.fusion.engine import ScanFusionEngine
from flockwatch.radio.base import BaseBleRadio, BaseWifiRadio, BleAdvertisement
from flockwatch.radio.normalize import from_ble_advertisement, from_wifi_batch

logger = logging.getLogger(__name__)

StateCallback = Callable[[bool], None]


class ScanState(enum.StrEnum):
    idle = "idle"
    scanning = "scanning"


@dataclass
class PermissionState:
    """Access the host has granted. Read on every start attempt, never cached."""

    location_granted: bool = True
    ble_scan_granted: bool = True

    @property
    def all_granted(self) -> bool:
        return self.location_granted and self.ble_scan_granted


class ScanLifecycleCoordinator:
    def __init__(
        self,
        engine: ScanFusionEngine,
        wifi: BaseWifiRadio | None,
        ble: BaseBleRadio | None,
        permissions: PermissionState | None = None,
        rescan_interval: float = 5.0,
    ) -> None:
        self.engine = engine
        self.wifi = wifi
        self.ble = ble
        self.permissions = permissions or PermissionState()
        self.rescan_interval = rescan_interval
        self._state = ScanState.idle
        self._ticker: asyncio.Task[None] | None = None
        self._pulls: set[asyncio.Task[None]] = set()
        self._state_listeners: list[StateCallback] = []
        self._ble_attached = False
        self._wifi_attached = False
        # Serializes start and stop transitions
        self._transition = asyncio.Lock()

    @property
    def state(self) -> ScanState:
        return self._state

    @property
    def is_scanning(self) -> bool:
        return self._state == ScanState.scanning

    def on_state_change(self, callback: StateCallback) -> Callable[[], None]:
        self._state_listeners.append(callback)

        def _unsubscribe() -> None:
            if callback in self._state_listeners:
                self._state_listeners.remove(callback)

        return _unsubscribe

    async def start_scanning(self) -> bool:
        """Enter the scanning state. Returns False if access is missing or a radio fails."""
        async with self._transition:
            if self.is_scanning:
                return True

            perms = self.permissions
            if not perms.all_granted:
                logger.error(
                    "Cannot start scanning: missing permissions (location=%s, ble_scan=%s)",
                    perms.location_granted,
                    perms.ble_scan_granted,
                )
                return False

            self._set_state(ScanState.scanning)
            try:
                await self._attach()
            except Exception:
                logger.exception("Failed to start scanning")
                self._set_state(ScanState.idle)
                await self._detach()
                return False

            logger.info("Scanning started")
            return True

    async def stop_scanning(self) -> None:
        async with self._transition:
            if not self.is_scanning:
                return
            self._set_state(ScanState.idle)
            await self._detach()
            logger.info("Scanning stopped")

    async def _attach(self) -> None:
        if self.ble is not None:
            await self.ble.start(self._on_advertisement)
            self._ble_attached = True

        if self.wifi is not None:
            self.wifi.register_listener(self._on_wifi_results)
            self._wifi_attached = True
            # Process whatever the radio already has before the first rescan
            await self._process_wifi_results()
            self._ticker = asyncio.create_task(self._rescan_loop())

    async def _detach(self) -> None:
        if self._ble_attached and self.ble is not None:
            self._ble_attached = False
            try:
                await self.ble.stop()
            except Exception:
                logger.exception("Error stopping BLE radio")

        if self._ticker is not None:
            self._ticker.cancel()
            try:
                await self._ticker
            except asyncio.CancelledError:
                pass
            self._ticker = None

        if self._wifi_attached and self.wifi is not None:
            self._wifi_attached = False
            try:
                self.wifi.unregister_listener(self._on_wifi_results)
            except Exception:
                logger.exception("Error unregistering WiFi results listener")

        for task in list(self._pulls):
            task.cancel()

    def _set_state(self, state: ScanState) -> None:
        self._state = state
        for cb in list(self._state_listeners):
            try:
                cb(state == ScanState.scanning)
            except Exception:
                logger.exception("Scan state listener %r failed", cb)

    def _on_advertisement(self, adv: BleAdvertisement) -> None:
        if not self.is_scanning:
            return
        self.engine.ingest(from_ble_advertisement(adv))

    def _on_wifi_results(self) -> None:
        if not self.is_scanning:
            return
        task = asyncio.get_running_loop().create_task(self._process_wifi_results())
        self._pulls.add(task)
        task.add_done_callback(self._pulls.discard)

    async def _process_wifi_results(self) -> None:
        if self.wifi is None:
            return
        try:
            records = await self.wifi.pull_results()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Failed to read WiFi scan results")
            return
        logger.debug("Processing %d WiFi scan results", len(records))
        if records:
            self.engine.ingest_batch(from_wifi_batch(records))

    async def _rescan_loop(self) -> None:
        while self.is_scanning:
            await asyncio.sleep(self.rescan_interval)
            if self.wifi is None or not self.is_scanning:
                break
            try:
                triggered = await self.wifi.request_scan()
                logger.debug("WiFi rescan triggered: %s", triggered)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("WiFi rescan failed")
