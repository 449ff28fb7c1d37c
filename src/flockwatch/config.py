"""Application configuration via environment variables and .env file."""

import re
from pathlib import Path
from typing import Annotated

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode
from pydantic_settings.sources import DotEnvSettingsSource, PydanticBaseSettingsSource

# Path to .env file (patch in tests to use tmp_path / ".env")
_ENV_FILE: Path = Path(".env")

_LIST_FIELDS = (
    "wifi_ssid_patterns",
    "ble_name_patterns",
    "mac_prefixes",
    "service_uuid_fragments",
)


def _field_to_env_key(name: str) -> str:
    """Convert Settings field name to FLOCKWATCH_ env var name."""
    return "FLOCKWATCH_" + name.upper()


def _parse_env_line(line: str) -> tuple[str, str] | None:
    """Parse a single KEY=VALUE or KEY="VALUE" line. Returns (key, value) or None."""
    line = line.strip()
    if not line or line.startswith("#"):
        return None
    m = re.match(r"([A-Za-z_][A-Za-z0-9_]*)=(.*)$", line)
    if not m:
        return None
    key, raw = m.group(1), m.group(2).strip()
    if raw.startswith('"') and raw.endswith('"') and len(raw) >= 2:
        raw = raw[1:-1].replace('\\"', '"').replace("\\n", "\n")
    return (key, raw)


def _format_env_value(value: str) -> str:
    """Format a value for .env: quote if it contains special chars."""
    if not value:
        return ""
    if re.search(r'[\s#"\\\n]', value):
        return '"' + value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n") + '"'
    return value


def _config_value_to_env_str(v: str | list[str] | int | float | bool | None) -> str:
    """Convert a config value to .env string."""
    if isinstance(v, list):
        return ",".join(str(x) for x in v)
    if isinstance(v, bool):
        return "true" if v else "false"
    if v is None:
        return ""
    return str(v)


class Settings(BaseSettings):
    model_config = {
        "env_prefix": "FLOCKWATCH_",
        "env_file_encoding": "utf-8",
    }

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Load .env from _ENV_FILE (patchable in tests)
        return (
            init_settings,
            env_settings,
            DotEnvSettingsSource(
                settings_cls,
                env_file=_ENV_FILE,
                env_file_encoding="utf-8",
            ),
            file_secret_settings,
        )

    # Database
    db_path: Path = Path("./data/flockwatch.db")

    # Logging
    log_level: str = "info"

    # Radio backend: "none", "mock" or "system" (nmcli + bleak)
    radio_backend: str = "none"

    # WiFi (NetworkManager)
    wifi_interface: str | None = None
    wifi_rescan_interval: float = 5.0  # seconds between forced rescans

    # Bluetooth LE (bleak)
    ble_adapter: str | None = None

    # Host-granted access. Checked each time scanning is started.
    location_permission: bool = True
    bluetooth_permission: bool = True

    # Fixed position for stationary deployments
    initial_latitude: float | None = None
    initial_longitude: float | None = None

    # Save every live detection to history as it arrives
    auto_persist: bool = False

    # Threat signatures. Env: FLOCKWATCH_MAC_PREFIXES="58:8e:81,cc:cc:cc"
    # Empty lists fall back to the built-in signature database.
    wifi_ssid_patterns: Annotated[list[str], NoDecode] = []
    ble_name_patterns: Annotated[list[str], NoDecode] = []
    mac_prefixes: Annotated[list[str], NoDecode] = []
    service_uuid_fragments: Annotated[list[str], NoDecode] = []

    @field_validator(*_LIST_FIELDS, mode="before")
    @classmethod
    def parse_list(cls, v: object) -> list[str]:
        """Parse comma-separated string or list."""
        if isinstance(v, str):
            return [s.strip() for s in v.split(",") if s.strip()]
        if isinstance(v, list):
            return [s for s in v if s]
        return []

    # Alerts
    webhook_url: str | None = None

    # Authentication (unset password disables it)
    auth_username: str = "admin"
    auth_password: str | None = None

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    def get_initial_location(self) -> tuple[float, float] | None:
        """Return the configured fixed location, if both coordinates are set."""
        if self.initial_latitude is None or self.initial_longitude is None:
            return None
        return (self.initial_latitude, self.initial_longitude)


def save_config(values: dict[str, str | list[str] | int | float | bool | None]) -> None:
    """Save configuration to .env file.

    Only stores keys that correspond to valid Settings fields.
    Merges with existing .env (preserves non-FLOCKWATCH_* lines and other vars).
    """
    valid_fields = set(Settings.model_fields.keys())
    filtered = {k: v for k, v in values.items() if k in valid_fields}

    # Read existing .env: keep non-FLOCKWATCH lines as-is, collect FLOCKWATCH_* into dict
    other_lines: list[str] = []
    app_vars: dict[str, str] = {}
    if _ENV_FILE.exists():
        with open(_ENV_FILE, encoding="utf-8") as f:
            for line in f:
                parsed = _parse_env_line(line)
                if parsed is None:
                    other_lines.append(line.rstrip("\n"))
                else:
                    key, val = parsed
                    if key.startswith("FLOCKWATCH_"):
                        app_vars[key] = val
                    else:
                        other_lines.append(line.rstrip("\n"))

    for name, val in filtered.items():
        app_vars[_field_to_env_key(name)] = _config_value_to_env_str(val)

    # Write: other lines first, then FLOCKWATCH_* in stable order
    with open(_ENV_FILE, "w", encoding="utf-8") as f:
        for line in other_lines:
            f.write(line + "\n")
        if other_lines:
            f.write("\n")
        for key in sorted(app_vars.keys()):
            f.write(f"{key}={_format_env_value(app_vars[key])}\n")


def load_config() -> Settings:
    """Load configuration from .env and environment (env overrides .env)."""
    return Settings()


settings = Settings()
