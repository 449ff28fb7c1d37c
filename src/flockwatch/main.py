"""Flockwatch application entrypoint."""

import base64
import logging
import secrets
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

import flockwatch.database as db_module
from flockwatch.alerts.notifier import DetectionNotifier
from flockwatch.config import Settings, load_config, settings
from flockwatch.fusion.engine import ScanFusionEngine
from flockwatch.history.merge import AutoPersister, StrongerSignalPolicy
from flockwatch.history.store import DetectionHistory
from flockwatch.radio.base import BaseBleRadio, BaseWifiRadio
from flockwatch.scanner.coordinator import PermissionState, ScanLifecycleCoordinator
from flockwatch.threats.rules import ThreatRuleSet

logging.basicConfig(level=settings.log_level.upper())
logger = logging.getLogger(__name__)


def _create_radios(cfg: Settings) -> tuple[BaseWifiRadio | None, BaseBleRadio | None]:
    """Factory: instantiate the configured radio backends."""
    mode = cfg.radio_backend
    if mode == "system":
        from flockwatch.radio.ble import BleakBleRadio
        from flockwatch.radio.nmcli import NmcliWifiRadio

        return NmcliWifiRadio(interface=cfg.wifi_interface), BleakBleRadio(adapter=cfg.ble_adapter)
    if mode == "mock":
        from flockwatch.radio.mock import MockBleRadio, MockWifiRadio

        return MockWifiRadio(), MockBleRadio()
    if mode == "none":
        return None, None
    logger.warning("Unknown radio backend '%s', scanning disabled", mode)
    return None, None


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application startup/shutdown lifecycle."""
    # Import models to register them with SQLModel before init_db()
    import flockwatch.history.models  # noqa: F401

    db_module.init_db()
    logger.info("Database initialized")

    cfg = load_config()
    engine = ScanFusionEngine(rules=ThreatRuleSet.from_settings(cfg))
    initial_location = cfg.get_initial_location()
    if initial_location is not None:
        engine.set_location(*initial_location)

    history = DetectionHistory(db_module.engine)
    persister = AutoPersister(engine, history, StrongerSignalPolicy(), auto=cfg.auto_persist)
    await persister.start()

    notifier = None
    if cfg.webhook_url:
        notifier = DetectionNotifier(engine, cfg.webhook_url)
        notifier.start()

    wifi, ble = _create_radios(cfg)
    coordinator = ScanLifecycleCoordinator(
        engine,
        wifi=wifi,
        ble=ble,
        permissions=PermissionState(
            location_granted=cfg.location_permission,
            ble_scan_granted=cfg.bluetooth_permission,
        ),
        rescan_interval=cfg.wifi_rescan_interval,
    )

    app.state.engine = engine
    app.state.history = history
    app.state.persister = persister
    app.state.coordinator = coordinator

    if wifi is not None or ble is not None:
        await coordinator.start_scanning()
    else:
        logger.info("No radios configured")

    yield

    await coordinator.stop_scanning()
    if notifier is not None:
        await notifier.close()
    await persister.close()
    logger.info("Shutdown complete")


app = FastAPI(
    title="Flockwatch",
    description="Surveillance hardware detection from WiFi and BLE scans",
    version="0.1.0",
    lifespan=lifespan,
)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response


class BasicAuthMiddleware(BaseHTTPMiddleware):
    """HTTP Basic Authentication middleware.

    Protects all routes except /health. Requires valid username/password
    provided via Authorization header.
    """

    def __init__(self, app, username: str, password: str):
        super().__init__(app)
        self.username = username
        self.password = password

    async def dispatch(self, request, call_next):
        # Exempt health check endpoint
        if request.url.path == "/health":
            return await call_next(request)

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Basic "):
            return self._unauthorized_response()

        try:
            decoded = base64.b64decode(auth_header[6:]).decode("utf-8")
            provided_username, provided_password = decoded.split(":", 1)
        except (ValueError, UnicodeDecodeError):
            return self._unauthorized_response()

        # Timing-safe comparison
        username_match = secrets.compare_digest(provided_username, self.username)
        password_match = secrets.compare_digest(provided_password, self.password)

        if not (username_match and password_match):
            return self._unauthorized_response()

        return await call_next(request)

    def _unauthorized_response(self) -> Response:
        return Response(
            content="Unauthorized",
            status_code=401,
            headers={"WWW-Authenticate": 'Basic realm="Flockwatch"'},
        )


app.add_middleware(SecurityHeadersMiddleware)

# Conditionally add BasicAuth if password is configured
if settings.auth_password:
    app.add_middleware(
        BasicAuthMiddleware, username=settings.auth_username, password=settings.auth_password
    )
    logger.info("HTTP Basic Auth enabled")


from flockwatch.api.routes import router as api_router  # noqa: E402

app.include_router(api_router)


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


def main() -> None:
    import uvicorn

    settings.db_path.parent.mkdir(parents=True, exist_ok=True)
    logger.info("Starting Flockwatch on %s:%d", settings.host, settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
