"""Configuration management for voicenote."""

from __future__ import annotations

import json
import logging
import os
import sys
from pathlib import Path
from typing import Any

_CONFIG_VERSION = 2
_DB_FILENAME = "transcriptions.db"
_LOG_LEVELS = ("debug", "info", "warning", "error")

logger = logging.getLogger(__name__)


def _default_config_path() -> Path:
    """Get default config file path following XDG spec."""
    config_home = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return config_home / "voicenote" / "config.json"


def _default_data_dir() -> Path:
    data_home = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local" / "share"))
    return data_home / "voicenote"


def default_toggle_shortcut(platform: str = sys.platform) -> str:
    return "Command+Shift+Space" if platform == "darwin" else "Ctrl+Shift+Space"


class Config:
    """Application configuration with persistence.

    The file is shared with the desktop recorder. The API key and shortcut
    settings belong to that process and are not read by the note store or
    the API; they are kept here so desktop settings migrate and survive
    a :meth:`save`.
    """

    def __init__(self, config_path: Path | None = None) -> None:
        self._path = config_path or _default_config_path()
        self._data: dict[str, Any] = self._load()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> dict[str, Any]:
        """Load config from disk or return defaults."""
        if not self._path.exists():
            return self._defaults()
        try:
            with open(self._path, encoding="utf-8") as f:
                data = json.load(f)
                data = self._migrate(data)
                # Validate version
                if data.get("version") != _CONFIG_VERSION:
                    return self._defaults()
                return data
        except (OSError, json.JSONDecodeError):
            logger.warning("Could not read config at %s, using defaults", self._path)
            return self._defaults()

    def _migrate(self, data: dict[str, Any]) -> dict[str, Any]:
        # Files written by the desktop build have no version and camelCase keys.
        if "version" not in data:
            data["version"] = 1
        if data.get("version") == 1:
            data["openai_api_key"] = data.pop("openaiApiKey", "")
            data["toggle_shortcut"] = data.pop("toggleShortcut", "")
            data["hold_shortcut"] = data.pop("holdShortcut", "")
            data["data_dir"] = ""
            data["default_profile"] = "casual"
            data["search_page_size"] = 50
            data["log_level"] = "info"
            data["version"] = 2
        return data

    def _defaults(self) -> dict[str, Any]:
        """Return default configuration."""
        return {
            "version": _CONFIG_VERSION,
            "data_dir": "",
            "default_profile": "casual",
            "search_page_size": 50,
            "log_level": "info",
            "openai_api_key": "",
            "toggle_shortcut": "",
            "hold_shortcut": "",
        }

    def save(self) -> None:
        """Persist config to disk."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with open(self._path, "w", encoding="utf-8") as f:
                json.dump(self._data, f, indent=2)
        except OSError:
            logger.exception("Could not save config to %s", self._path)

    # -- Getters with env var fallback --

    @property
    def data_dir(self) -> Path:
        override = os.getenv("VOICENOTE_DATA_DIR")
        if override:
            return Path(override)
        configured = str(self._data.get("data_dir", ""))
        return Path(configured) if configured else _default_data_dir()

    @property
    def db_path(self) -> Path:
        return self.data_dir / "data" / _DB_FILENAME

    @property
    def log_dir(self) -> Path:
        return self.data_dir / "logs"

    @property
    def default_profile(self) -> str:
        return str(self._data.get("default_profile") or "casual")

    @property
    def search_page_size(self) -> int:
        return max(1, int(self._data.get("search_page_size", 50)))

    @property
    def log_level(self) -> str:
        level = os.getenv("VOICENOTE_LOG_LEVEL") or self._data.get("log_level")
        level = str(level or "info").lower()
        return level if level in _LOG_LEVELS else "info"

    # -- Desktop recorder settings --

    @property
    def openai_api_key(self) -> str:
        return str(self._data.get("openai_api_key") or os.getenv("OPENAI_API_KEY", ""))

    def has_api_key(self) -> bool:
        return self.openai_api_key.startswith("sk-")

    @property
    def toggle_shortcut(self) -> str:
        return str(self._data.get("toggle_shortcut") or default_toggle_shortcut())

    @property
    def hold_shortcut(self) -> str:
        return str(self._data.get("hold_shortcut", ""))

    # -- Setters --

    def set_data_dir(self, value: str | Path) -> None:
        self._data["data_dir"] = str(value).strip()

    def set_default_profile(self, value: str) -> None:
        self._data["default_profile"] = value.strip()

    def set_search_page_size(self, value: int) -> None:
        self._data["search_page_size"] = max(1, int(value))

    def set_log_level(self, value: str) -> None:
        value = value.strip().lower()
        if value not in _LOG_LEVELS:
            raise ValueError(f"Unknown log level: {value}")
        self._data["log_level"] = value

    def set_openai_api_key(self, value: str) -> None:
        self._data["openai_api_key"] = value.strip()

    def set_toggle_shortcut(self, value: str) -> None:
        self._data["toggle_shortcut"] = value.strip()

    def set_hold_shortcut(self, value: str) -> None:
        self._data["hold_shortcut"] = value.strip()
