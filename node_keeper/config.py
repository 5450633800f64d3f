from __future__ import annotations

import json
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

log = logging.getLogger(__name__)

APP_NAME = "NodeKeeper"
SETTINGS_FILENAME = "settings.json"
DEFAULT_RELEASE_URL = "https://api.github.com/repos/nnlgsakib/open-hash-db/releases/latest"
DEFAULT_PORT = 8901


def default_executable_name() -> str:
    return "openhash.exe" if sys.platform == "win32" else "openhash"


def default_home() -> Path:
    appdata = os.getenv("APPDATA")
    if appdata:
        return Path(appdata) / APP_NAME
    return Path.home() / ".node-keeper"


@dataclass(frozen=True)
class Config:
    home: Path
    release_url: str = DEFAULT_RELEASE_URL
    executable_name: str = default_executable_name()
    asset_name: str = default_executable_name()
    stop_timeout: float = 5.0
    status_poll_interval: float = 5.0
    http_timeout: float = 30.0
    port: int = DEFAULT_PORT
    log_level: str = "INFO"

    @property
    def log_dir(self) -> Path:
        return self.home / "logs"

    @property
    def settings_path(self) -> Path:
        return self.home / SETTINGS_FILENAME

    @property
    def default_data_path(self) -> Path:
        return self.home / "data"

    @classmethod
    def from_env(cls, env_path: str | Path | None = None) -> Config:
        load_dotenv(env_path)

        home = os.getenv("NODE_KEEPER_HOME")
        executable = os.getenv("NODE_KEEPER_EXECUTABLE", default_executable_name())

        return cls(
            home=Path(home).expanduser() if home else default_home(),
            release_url=os.getenv("NODE_KEEPER_RELEASE_URL", DEFAULT_RELEASE_URL),
            executable_name=executable,
            asset_name=os.getenv("NODE_KEEPER_ASSET", executable),
            stop_timeout=float(os.getenv("NODE_KEEPER_STOP_TIMEOUT", "5.0")),
            status_poll_interval=float(os.getenv("NODE_KEEPER_POLL_INTERVAL", "5.0")),
            http_timeout=float(os.getenv("NODE_KEEPER_HTTP_TIMEOUT", "30.0")),
            port=int(os.getenv("NODE_KEEPER_PORT", str(DEFAULT_PORT))),
            log_level=os.getenv("NODE_KEEPER_LOG_LEVEL", "INFO").upper(),
        )


class DataPathStore:
    """Persists the last-selected data directory across restarts.

    Stored as ``{"data_path": "..."}`` in the settings file.  A missing
    entry falls back to the default data path; a corrupt file is moved
    aside to ``settings.invalid.json`` and rewritten.
    """

    def __init__(self, settings_path: Path, default_path: Path) -> None:
        self.settings_path = settings_path
        self.default_path = default_path
        self._current: str | None = None

    def default(self) -> str:
        return str(self.default_path)

    def current(self) -> str:
        if self._current is None:
            self._current = self._load() or self.default()
        return self._current

    def set(self, path: str) -> str:
        cleaned = path.strip()
        if not cleaned:
            raise ValueError("Data path must not be empty")
        resolved = str(Path(cleaned).expanduser())
        self._save(resolved)
        self._current = resolved
        log.info("Data path set to %s", resolved)
        return resolved

    def _load(self) -> str | None:
        if not self.settings_path.exists():
            return None
        try:
            data = json.loads(self.settings_path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError):
            backup = self.settings_path.with_suffix(".invalid.json")
            self.settings_path.replace(backup)
            log.warning("Corrupt settings moved to %s", backup)
            return None
        value = data.get("data_path") if isinstance(data, dict) else None
        return value if isinstance(value, str) and value.strip() else None

    def _save(self, path: str) -> None:
        self.settings_path.parent.mkdir(parents=True, exist_ok=True)
        self.settings_path.write_text(
            json.dumps({"data_path": path}, indent=2, sort_keys=True),
            encoding="utf-8",
        )
