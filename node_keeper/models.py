from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from .errors import ValidationError

MIN_PORT = 1
MAX_PORT = 65535


# ---------------------------------------------------------------------------
# RunState: the supervisor's single source of truth
# ---------------------------------------------------------------------------

class RunState(str, enum.Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    UPDATING = "updating"


# ---------------------------------------------------------------------------
# NodeConfig
# ---------------------------------------------------------------------------

def _is_ascii_number(text: str) -> bool:
    # str.isdigit() also accepts "\u00b2" and "\u2460", which int() rejects
    return text.isascii() and text.isdecimal()


def _coerce_port(value: Any, label: str) -> int:
    message = f"Please enter a valid {label} port ({MIN_PORT}-{MAX_PORT})."
    # bool is an int subclass; True is not port 1
    if isinstance(value, bool):
        raise ValidationError(message)
    if isinstance(value, int):
        port = value
    elif isinstance(value, str) and _is_ascii_number(value.strip()):
        port = int(value.strip())
    else:
        raise ValidationError(message)
    if not MIN_PORT <= port <= MAX_PORT:
        raise ValidationError(message)
    return port


@dataclass(frozen=True)
class NodeConfig:
    db_path: str
    api_port: int
    p2p_port: int

    @classmethod
    def parse(cls, db_path: Any, api_port: Any, p2p_port: Any) -> NodeConfig:
        """Build a validated config from raw presentation-layer input.

        Ports may arrive as ints or digit strings ("8080"); anything else
        raises ValidationError with a message fit to show the user.
        """
        path = db_path.strip() if isinstance(db_path, str) else ""
        if not path:
            raise ValidationError("Database path is not set.")
        return cls(
            db_path=path,
            api_port=_coerce_port(api_port, "API"),
            p2p_port=_coerce_port(p2p_port, "P2P"),
        )

    def validate(self) -> NodeConfig:
        """Re-run validation; returns a normalised copy."""
        return NodeConfig.parse(self.db_path, self.api_port, self.p2p_port)

    def to_args(self) -> list[str]:
        return [
            "daemon",
            "--api-port", str(self.api_port),
            "--db", self.db_path,
            "--p2p-port", str(self.p2p_port),
        ]


# ---------------------------------------------------------------------------
# Download / release data
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DownloadProgress:
    bytes_received: int
    bytes_total: int = 0  # 0 = unknown

    @property
    def percent(self) -> int | None:
        """Rounded percentage, or None while the total is unknown."""
        if self.bytes_total <= 0:
            return None
        return min(100, round(self.bytes_received * 100 / self.bytes_total))


@dataclass(frozen=True)
class ReleaseInfo:
    version: str
    url: str
    size: int = 0


# ---------------------------------------------------------------------------
# Log lines
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LogLine:
    timestamp: datetime
    text: str

    def render(self) -> str:
        return f"[{self.timestamp:%Y-%m-%d %H:%M:%S}] {self.text}"


# ---------------------------------------------------------------------------
# Events published by the supervisor
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StatusChanged:
    state: RunState


@dataclass(frozen=True)
class DownloadProgressed:
    progress: DownloadProgress


@dataclass(frozen=True)
class DownloadComplete:
    version: str = ""


@dataclass(frozen=True)
class DownloadFailed:
    reason: str

