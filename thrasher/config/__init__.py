"""
Configuration management for thrasher.

Settings come from a TOML file and may be overridden on the command line.
Example `~/.config/thrasher/config.toml`:

    db_file = "/home/me/.local/share/thrasher/catalog.db"
    music_dir = "/srv/music"
    artist_cutoff = 5
    recent_albums = 10
"""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, replace
from pathlib import Path

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "THRASHER_CONFIG"
CONFIG_FILENAME = "config.toml"


class ConfigError(Exception):
    """Raised when a required setting is missing or invalid."""


@dataclass(frozen=True)
class Config:
    """Resolved tool settings."""

    db_file: str = ""
    music_dir: str = ""
    artist_cutoff: int = 1
    recent_albums: int = 10

    def with_overrides(
        self,
        *,
        db_file: str | None = None,
        music_dir: str | None = None,
        artist_cutoff: int | None = None,
    ) -> Config:
        """Return a copy with every non-empty override applied."""
        changes: dict[str, object] = {}
        if db_file:
            changes["db_file"] = db_file
        if music_dir:
            changes["music_dir"] = music_dir
        if artist_cutoff:
            changes["artist_cutoff"] = artist_cutoff
        return replace(self, **changes) if changes else self

    def require_db_file(self) -> str:
        if not self.db_file:
            raise ConfigError("database file must be specified; see --help")
        return self.db_file


def default_config_path() -> Path:
    """
    Locate the config file.

    Order: $THRASHER_CONFIG, $XDG_CONFIG_HOME/thrasher/config.toml,
    ~/.config/thrasher/config.toml.
    """
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path).expanduser()

    xdg = os.environ.get("XDG_CONFIG_HOME")
    base = Path(xdg) if xdg else Path.home() / ".config"
    return base / "thrasher" / CONFIG_FILENAME


def _parse_config(data: dict[str, object]) -> Config:
    """Build a Config from TOML data, rejecting values of the wrong type."""
    defaults = Config()

    def _str(key: str, default: str) -> str:
        value = data.get(key, default)
        if not isinstance(value, str):
            raise ConfigError(f"'{key}' must be a string")
        return str(Path(value).expanduser()) if value else value

    def _int(key: str, default: int) -> int:
        value = data.get(key, default)
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigError(f"'{key}' must be an integer")
        return value

    return Config(
        db_file=_str("db_file", defaults.db_file),
        music_dir=_str("music_dir", defaults.music_dir),
        artist_cutoff=_int("artist_cutoff", defaults.artist_cutoff),
        recent_albums=_int("recent_albums", defaults.recent_albums),
    )


def load_config(config_path: Path | None = None) -> Config:
    """
    Load configuration from a TOML file.

    Args:
        config_path: Path to the TOML file. If None, uses `default_config_path()`.

    Returns:
        The loaded Config.

    Raises:
        OSError: the file cannot be read.
        tomllib.TOMLDecodeError: the file is not valid TOML.
        ConfigError: a setting has the wrong type.
    """
    if config_path is None:
        config_path = default_config_path()

    logger.debug("Loading config from %s", config_path)

    with config_path.open("rb") as f:
        data = tomllib.load(f)

    return _parse_config(data)
