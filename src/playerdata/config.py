"""Configuration loading from environment variables and playerdata.toml."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib
from pathlib import Path

import tomlkit

_DEFAULT_DATA_DIR = Path.home() / ".playerdata"
_CONFIG_FILENAME = "playerdata.toml"

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass
class PlaytimeConfig:
    """Playing-time ticker configuration."""

    interval: float = 1.0


@dataclass
class PlayerDataConfig:
    """Top-level configuration."""

    data_dir: Path = _DEFAULT_DATA_DIR
    playtime: PlaytimeConfig = field(default_factory=PlaytimeConfig)
    debug: bool = False
    log_level: str = "INFO"

    @property
    def fields_file(self) -> Path:
        return self.data_dir / "fields.json"

    @property
    def players_dir(self) -> Path:
        return self.data_dir / "playerdata"


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def load_config(config_path: Path | None = None) -> PlayerDataConfig:
    """Load configuration from environment variables and optional playerdata.toml.

    Priority: environment variables > playerdata.toml > defaults.
    """
    file_data: dict = {}
    if config_path and config_path.exists():
        file_data = tomllib.loads(config_path.read_text())
    else:
        # Search current dir and ~/.playerdata/
        for candidate in [Path.cwd() / _CONFIG_FILENAME, _DEFAULT_DATA_DIR / _CONFIG_FILENAME]:
            if candidate.exists():
                file_data = tomllib.loads(candidate.read_text())
                break

    storage_data = file_data.get("storage", {})
    playtime_data = file_data.get("playtime", {})

    data_dir = os.getenv("PLAYERDATA_DIR", storage_data.get("data_dir"))
    return PlayerDataConfig(
        data_dir=Path(data_dir).expanduser() if data_dir else _DEFAULT_DATA_DIR,
        playtime=PlaytimeConfig(
            interval=float(
                os.getenv("PLAYERDATA_PLAYTIME_INTERVAL", playtime_data.get("interval", 1.0))
            ),
        ),
        debug=_env_bool("PLAYERDATA_DEBUG", bool(file_data.get("debug", False))),
        log_level=os.getenv("PLAYERDATA_LOG_LEVEL", file_data.get("log_level", "INFO")),
    )


def write_default_config(path: Path) -> Path:
    """Write a commented playerdata.toml holding the default settings."""
    defaults = PlayerDataConfig()

    doc = tomlkit.document()
    doc.add(tomlkit.comment("playerdata configuration"))
    doc.add(tomlkit.nl())
    doc.add(tomlkit.comment("Attach tracebacks to load/save failures"))
    doc.add("debug", defaults.debug)
    doc.add("log_level", defaults.log_level)
    doc.add(tomlkit.nl())

    storage = tomlkit.table()
    storage.add(tomlkit.comment("Holds fields.json and the playerdata/ directory"))
    storage.add("data_dir", str(defaults.data_dir))
    doc.add("storage", storage)

    playtime = tomlkit.table()
    playtime.add(tomlkit.comment("Seconds between playing_time increments"))
    playtime.add("interval", defaults.playtime.interval)
    doc.add("playtime", playtime)

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(tomlkit.dumps(doc), encoding="utf-8")
    return path
