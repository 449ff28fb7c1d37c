r"""WiFi radio backed by NetworkManager's ``nmcli``.

Scan results come from terse listing output, e.g.:
    58\:8E\:81\:AA\:BB\:CC:Flock-4F21:72
    AA\:BB\:CC\:DD\:EE\:FF::40
Colons inside values are escaped as ``\:``. SIGNAL is a 0-100 quality
percentage, converted to approximate dBm.
"""

import asyncio
import logging
from datetime import UTC, datetime

from flockwatch.radio.base import BaseWifiRadio, WifiResultsListener, WifiScanRecord

logger = logging.getLogger(__name__)

_FIELDS = "BSSID,SSID,SIGNAL"


def split_terse_line(line: str) -> list[str]:
    """Split one line of ``nmcli -t`` output on unescaped colons."""
    parts: list[str] = []
    current: list[str] = []
    chars = iter(line)
    for ch in chars:
        if ch == "\\":
            current.append(next(chars, ""))
        elif ch == ":":
            parts.append("".join(current))
            current = []
        else:
            current.append(ch)
    parts.append("".join(current))
    return parts


def quality_to_dbm(quality: int) -> int:
    """Map nmcli's 0-100 signal quality onto the -100..-50 dBm range."""
    quality = max(0, min(100, quality))
    return quality // 2 - 100


def parse_wifi_list(output: str, timestamp: datetime) -> list[WifiScanRecord]:
    """Parse ``nmcli -t -f BSSID,SSID,SIGNAL device wifi list`` output."""
    records = []
    for line in output.splitlines():
        if not line.strip():
            continue
        parts = split_terse_line(line)
        if len(parts) < 3:
            logger.debug("Skipping malformed nmcli line: %r", line)
            continue
        bssid, ssid, signal = parts[0], parts[1], parts[2]
        if not bssid:
            continue
        rssi = quality_to_dbm(int(signal)) if signal.isdigit() else -100
        records.append(
            WifiScanRecord(ssid=ssid, bssid=bssid, signal_strength=rssi, timestamp=timestamp)
        )
    return records


class NmcliError(Exception):
    """nmcli exited with a non-zero status."""


class NmcliWifiRadio(BaseWifiRadio):
    """Polls NetworkManager for visible access points."""

    def __init__(self, interface: str | None = None, binary: str = "nmcli") -> None:
        self.interface = interface
        self.binary = binary
        self._listeners: list[WifiResultsListener] = []

    def register_listener(self, listener: WifiResultsListener) -> None:
        self._listeners.append(listener)

    def unregister_listener(self, listener: WifiResultsListener) -> None:
        self._listeners.remove(listener)

    async def pull_results(self) -> list[WifiScanRecord]:
        args = ["-t", "-f", _FIELDS, "device", "wifi", "list", "--rescan", "no"]
        if self.interface:
            args += ["ifname", self.interface]
        output = await self._run(args)
        return parse_wifi_list(output, datetime.now(UTC))

    async def request_scan(self) -> bool:
        args = ["device", "wifi", "rescan"]
        if self.interface:
            args += ["ifname", self.interface]
        try:
            await self._run(args)
        except NmcliError as e:
            # NetworkManager refuses rescans issued too close together
            logger.debug("WiFi rescan refused: %s", e)
            return False

        for listener in list(self._listeners):
            listener()
        return True

    async def _run(self, args: list[str]) -> str:
        proc = await asyncio.create_subprocess_exec(
            self.binary,
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await proc.communicate()
        if proc.returncode != 0:
            raise NmcliError(stderr.decode("utf-8", errors="replace").strip())
        return stdout.decode("utf-8", errors="replace")
