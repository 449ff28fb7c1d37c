"""Shared test fixtures."""

from collections.abc import Callable, Generator
from datetime import UTC, datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

import flockwatch.database as db_module
import flockwatch.history.models  # noqa: F401
from flockwatch.database import get_session
from flockwatch.history.store import DetectionHistory
from flockwatch.main import app
from flockwatch.radio.base import Observation, RadioKind


@pytest.fixture(autouse=True)
def _isolated_env_file(tmp_path, monkeypatch):
    """Keep tests away from any real .env in the working directory."""
    monkeypatch.setattr("flockwatch.config._ENV_FILE", tmp_path / ".env")


@pytest.fixture
def engine():
    """In-memory SQLite engine with all tables created.

    StaticPool ensures every session uses the same connection,
    so the in-memory database is shared across the test.
    """
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(eng)
    return eng


@pytest.fixture
def session(engine) -> Generator[Session, None, None]:
    with Session(engine) as s:
        yield s


@pytest.fixture
def history(engine) -> DetectionHistory:
    return DetectionHistory(engine)


@pytest.fixture
def client(engine, monkeypatch) -> Generator[TestClient, None, None]:
    """FastAPI TestClient with overridden DB engine and session."""
    # Patch the module-level engine so lifespan's init_db() and
    # DetectionHistory both use the test engine.
    monkeypatch.setattr(db_module, "engine", engine)

    def _override_session() -> Generator[Session, None, None]:
        with Session(engine) as s:
            yield s

    app.dependency_overrides[get_session] = _override_session
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


class FakeClock:
    """Deterministic clock advancing one second per call."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        current = self.now
        self.now += timedelta(seconds=1)
        return current


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def make_observation(
    kind: RadioKind = RadioKind.wifi,
    address: str = "58:8E:81:AA:BB:CC",
    name: str | None = "Flock-Cam-12",
    rssi: int = -60,
    services: frozenset[str] = frozenset(),
    hidden: bool = False,
) -> Observation:
    return Observation(
        kind=kind,
        hardware_address=address,
        display_name=name,
        signal_strength=rssi,
        observed_at=datetime(2025, 1, 1, 12, 0, tzinfo=UTC),
        service_identifiers=services,
        hidden_ssid=hidden,
    )


@pytest.fixture
def observation_factory() -> Callable[..., Observation]:
    return make_observation
