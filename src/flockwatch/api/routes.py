"""REST API endpoints."""

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field
from sqlmodel import Session

from flockwatch.config import save_config
from flockwatch.database import get_session
from flockwatch.fusion.engine import ScanFusionEngine
from flockwatch.fusion.models import Detection
from flockwatch.history.merge import AutoPersister
from flockwatch.history.store import DetectionHistory, get_all_detections
from flockwatch.radio.base import BleAdvertisement, RadioKind, WifiScanRecord
from flockwatch.radio.normalize import from_ble_advertisement, from_wifi_record, normalize_mac
from flockwatch.scanner.coordinator import PermissionState, ScanLifecycleCoordinator

router = APIRouter(prefix="/api")


# Runtime objects built by the app lifespan
def get_engine(request: Request) -> ScanFusionEngine:
    return request.app.state.engine


def get_history(request: Request) -> DetectionHistory:
    return request.app.state.history


def get_persister(request: Request) -> AutoPersister:
    return request.app.state.persister


def get_coordinator(request: Request) -> ScanLifecycleCoordinator:
    return request.app.state.coordinator


# Response / request models
class DetectionResponse(BaseModel):
    id: int | None
    kind: RadioKind
    hardware_address: str
    display_name: str | None
    service_identifiers: list[str]
    hidden_ssid: bool
    signal_strength: int
    observed_at: datetime
    latitude: float
    longitude: float
    threat_level: int
    reason: str | None
    timestamp: datetime

    @classmethod
    def from_detection(cls, d: Detection) -> "DetectionResponse":
        return cls(
            id=d.id,
            kind=d.kind,
            hardware_address=d.hardware_address,
            display_name=d.display_name,
            service_identifiers=sorted(d.service_identifiers),
            hidden_ssid=d.hidden_ssid,
            signal_strength=d.signal_strength,
            observed_at=d.observed_at,
            latitude=d.latitude,
            longitude=d.longitude,
            threat_level=d.threat_level,
            reason=d.reason,
            timestamp=d.timestamp,
        )


class ObservationRequest(BaseModel):
    kind: RadioKind
    hardware_address: str | None = None
    name: str | None = None  # SSID ("" = hidden) or advertised BLE name
    service_identifiers: list[str] = []
    signal_strength: int = Field(le=0)


class ClassificationResponse(BaseModel):
    threat_level: int
    reason: str | None


class LocationRequest(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class PermissionsRequest(BaseModel):
    location_granted: bool | None = None
    ble_scan_granted: bool | None = None


class AutoPersistRequest(BaseModel):
    enabled: bool


def _scan_status(coordinator: ScanLifecycleCoordinator) -> dict[str, str | bool]:
    return {"state": str(coordinator.state), "scanning": coordinator.is_scanning}


# --- Live detections ---


@router.get("/detections")
async def list_live_detections(
    engine: ScanFusionEngine = Depends(get_engine),
) -> list[DetectionResponse]:
    return [DetectionResponse.from_detection(d) for d in engine.snapshot()]


@router.delete("/detections")
async def clear_live_detections(
    engine: ScanFusionEngine = Depends(get_engine),
) -> dict[str, str]:
    engine.clear()
    return {"status": "cleared"}


@router.delete("/detections/{mac}")
async def remove_live_detection(
    mac: str,
    engine: ScanFusionEngine = Depends(get_engine),
) -> dict[str, str]:
    if not engine.remove(normalize_mac(mac)):
        raise HTTPException(status_code=404, detail="Detection not found")
    return {"status": "removed"}


@router.post("/observations")
async def submit_observation(
    request: ObservationRequest,
    engine: ScanFusionEngine = Depends(get_engine),
) -> ClassificationResponse:
    """Classify an observation from an external radio and fuse it into the live set."""
    now = datetime.now(UTC)
    if request.kind == RadioKind.wifi:
        observation = from_wifi_record(
            WifiScanRecord(
                ssid=request.name,
                bssid=request.hardware_address,
                signal_strength=request.signal_strength,
                timestamp=now,
            )
        )
    else:
        observation = from_ble_advertisement(
            BleAdvertisement(
                address=request.hardware_address,
                advertised_name=request.name,
                device_name=None,
                service_uuids=tuple(request.service_identifiers),
                signal_strength=request.signal_strength,
                timestamp=now,
            )
        )
    result = engine.ingest(observation)
    return ClassificationResponse(threat_level=result.threat_level, reason=result.reason)


# --- Location ---


@router.get("/location")
async def get_location(
    engine: ScanFusionEngine = Depends(get_engine),
) -> dict[str, float | None]:
    location = engine.location
    if location is None:
        return {"latitude": None, "longitude": None}
    return {"latitude": location[0], "longitude": location[1]}


@router.put("/location")
async def set_location(
    request: LocationRequest,
    engine: ScanFusionEngine = Depends(get_engine),
) -> dict[str, float]:
    engine.set_location(request.latitude, request.longitude)
    return {"latitude": request.latitude, "longitude": request.longitude}


# --- Scanning ---


@router.get("/scan")
async def scan_status(
    coordinator: ScanLifecycleCoordinator = Depends(get_coordinator),
) -> dict[str, str | bool]:
    return _scan_status(coordinator)


@router.post("/scan/start")
async def start_scan(
    coordinator: ScanLifecycleCoordinator = Depends(get_coordinator),
) -> dict[str, str | bool]:
    if not await coordinator.start_scanning():
        raise HTTPException(status_code=403, detail="Location and Bluetooth scan access required")
    return _scan_status(coordinator)


@router.post("/scan/stop")
async def stop_scan(
    coordinator: ScanLifecycleCoordinator = Depends(get_coordinator),
) -> dict[str, str | bool]:
    await coordinator.stop_scanning()
    return _scan_status(coordinator)


@router.get("/permissions")
async def get_permissions(
    coordinator: ScanLifecycleCoordinator = Depends(get_coordinator),
) -> PermissionState:
    return coordinator.permissions


@router.put("/permissions")
async def update_permissions(
    request: PermissionsRequest,
    coordinator: ScanLifecycleCoordinator = Depends(get_coordinator),
) -> PermissionState:
    perms = coordinator.permissions
    if request.location_granted is not None:
        perms.location_granted = request.location_granted
    if request.ble_scan_granted is not None:
        perms.ble_scan_granted = request.ble_scan_granted
    return perms


# --- Saved history ---


@router.get("/history")
def list_history(
    session: Session = Depends(get_session),
) -> list[DetectionResponse]:
    return [DetectionResponse.from_detection(d) for d in get_all_detections(session)]


@router.delete("/history")
def clear_history(
    history: DetectionHistory = Depends(get_history),
) -> dict[str, int | str]:
    count = history.delete_all()
    return {"status": "cleared", "deleted": count}


@router.delete("/history/{detection_id}")
def delete_history_entry(
    detection_id: int,
    history: DetectionHistory = Depends(get_history),
) -> dict[str, str]:
    detection = history.get(detection_id)
    if detection is None or not history.delete_by_identity(detection):
        raise HTTPException(status_code=404, detail="Saved detection not found")
    return {"status": "deleted"}


@router.post("/history/persist")
async def persist_now(
    persister: AutoPersister = Depends(get_persister),
) -> dict[str, int]:
    written = await persister.persist_now()
    return {"written": written}


@router.get("/settings/auto-persist")
async def get_auto_persist(
    persister: AutoPersister = Depends(get_persister),
) -> dict[str, bool]:
    return {"enabled": persister.auto}


@router.put("/settings/auto-persist")
async def set_auto_persist(
    request: AutoPersistRequest,
    persister: AutoPersister = Depends(get_persister),
) -> dict[str, bool]:
    persister.set_auto(request.enabled)
    save_config({"auto_persist": request.enabled})
    return {"enabled": persister.auto}


# --- Rules ---


@router.get("/rules")
async def list_rules(
    engine: ScanFusionEngine = Depends(get_engine),
) -> dict[str, list[str]]:
    rules = engine.rules
    return {
        "wifi_ssid_patterns": list(rules.wifi_ssid_patterns),
        "ble_name_patterns": list(rules.ble_name_patterns),
        "mac_prefixes": list(rules.mac_prefixes),
        "service_uuid_fragments": list(rules.service_uuid_fragments),
    }
