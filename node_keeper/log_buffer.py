"""Bounded, timestamped store of captured node output."""

from __future__ import annotations

from collections import deque
from datetime import datetime

from .models import LogLine

DEFAULT_CAPACITY = 1000


class LogBuffer:
    """Fixed-capacity ring of log lines; the oldest line is evicted first."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._lines: deque[LogLine] = deque(maxlen=capacity)

    def append(self, text: str, timestamp: datetime | None = None) -> LogLine:
        line = LogLine(
            timestamp=timestamp or datetime.now().astimezone(),
            text=text.rstrip("\r\n"),
        )
        self._lines.append(line)
        return line

    def clear(self) -> None:
        self._lines.clear()

    def lines(self) -> list[LogLine]:
        return list(self._lines)

    def text(self) -> str:
        """Render the buffer as newline-terminated ``[timestamp] text`` lines."""
        return "".join(f"{line.render()}\n" for line in self._lines)

    def __len__(self) -> int:
        return len(self._lines)
