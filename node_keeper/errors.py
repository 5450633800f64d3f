"""Error taxonomy for node-keeper.

Every failure carries a stable ``code`` (for tests and logs) and a
human-readable message (for the presentation layer).
"""

from __future__ import annotations


class NodeKeeperError(Exception):
    code = "Error"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code


class ValidationError(NodeKeeperError):
    """Bad node configuration. Never retried."""

    code = "InvalidConfig"


class ConflictError(NodeKeeperError):
    """Operation not permitted in the current run state."""

    code = "Conflict"


class ProcessError(NodeKeeperError):
    """Spawning or terminating the worker failed."""

    code = "SpawnRejected"


class TransferError(NodeKeeperError):
    """Network or disk failure while fetching a binary."""

    code = "NetworkError"


class NotFoundError(NodeKeeperError):
    """The binary, or a release carrying it, does not exist."""

    code = "ExecutableMissing"
