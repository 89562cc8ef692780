"""User settings loaded from JSON config files."""

import json
import logging
from dataclasses import asdict, dataclass, fields
from pathlib import Path

from speedly.speed_limit import OVERPASS_URL, REQUEST_TIMEOUT_S, USER_AGENT
from speedly.units import SpeedUnit

logger = logging.getLogger(__name__)

CONFIG_DIR = Path.home() / ".config" / "speedly"
CONFIG_PATH = CONFIG_DIR / "speedly.json"
LOCAL_CONFIG_PATH = Path("speedly.json")


@dataclass
class Settings:
    speed_unit: SpeedUnit = SpeedUnit.METRIC
    manual_speed_limit: int = 0  # 0 = unset, in speed_unit
    speed_smoothing: float = 0.3
    speed_limit_alerts: bool = True
    show_street_name: bool = True
    show_trip_stats: bool = True
    overpass_url: str = OVERPASS_URL
    user_agent: str = USER_AGENT
    request_timeout_s: float = REQUEST_TIMEOUT_S

    def to_dict(self) -> dict:
        data = asdict(self)
        data["speed_unit"] = self.speed_unit.value
        return data


def _load_config() -> dict:
    """Load configuration from config files.

    Merges config from global and local files:
    1. ~/.config/speedly/speedly.json (global, loaded first)
    2. ./speedly.json (local, overrides global)

    Returns:
        Dict with merged config values, empty dict if no files exist.
    """
    config = {}
    for config_path in [CONFIG_PATH, LOCAL_CONFIG_PATH]:
        if config_path.exists():
            try:
                with config_path.open() as f:
                    config.update(json.load(f))
            except (json.JSONDecodeError, OSError) as e:
                logger.warning("Ignoring unreadable config %s: %s", config_path, e)
                continue
    return config


def settings_from_dict(config: dict) -> Settings:
    """Build Settings from a config dict, ignoring unknown keys."""
    known = {f.name for f in fields(Settings)}
    values = {k: v for k, v in config.items() if k in known}
    if "speed_unit" in values:
        values["speed_unit"] = SpeedUnit.parse(values["speed_unit"])
    settings = Settings(**values)
    if settings.manual_speed_limit < 0:
        raise ValueError(f"manual_speed_limit must be >= 0, got {settings.manual_speed_limit}")
    return settings


def load_settings() -> Settings:
    return settings_from_dict(_load_config())


def save_settings(settings: Settings, path: Path = CONFIG_PATH) -> None:
    """Write settings as JSON, creating the config directory if needed."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w") as f:
        json.dump(settings.to_dict(), f, indent=2)
