"""Bounded, thread-safe log of display lines produced during a run."""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable

MAX_OUTPUT_LINES = 5000


class OutputKind(str, Enum):
    """Type tag for a display line."""

    STDOUT = "stdout"
    STDERR = "stderr"
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"
    RUNNING = "running"

    @property
    def prefix(self) -> str:
        return _PREFIXES[self]


_PREFIXES: dict[OutputKind, str] = {
    OutputKind.STDOUT: "",
    OutputKind.STDERR: "",
    OutputKind.INFO: "  ",
    OutputKind.SUCCESS: "+ ",
    OutputKind.WARNING: "! ",
    OutputKind.ERROR: "x ",
    OutputKind.RUNNING: "> ",
}


@dataclass(frozen=True)
class OutputLine:
    """One display line."""

    text: str
    kind: OutputKind = OutputKind.STDOUT

    @property
    def display(self) -> str:
        return f"{self.kind.prefix}{self.text}"

    @classmethod
    def stdout(cls, text: str) -> "OutputLine":
        return cls(text, OutputKind.STDOUT)

    @classmethod
    def stderr(cls, text: str) -> "OutputLine":
        return cls(text, OutputKind.STDERR)

    @classmethod
    def info(cls, text: str) -> "OutputLine":
        return cls(text, OutputKind.INFO)

    @classmethod
    def success(cls, text: str) -> "OutputLine":
        return cls(text, OutputKind.SUCCESS)

    @classmethod
    def warning(cls, text: str) -> "OutputLine":
        return cls(text, OutputKind.WARNING)

    @classmethod
    def error(cls, text: str) -> "OutputLine":
        return cls(text, OutputKind.ERROR)

    @classmethod
    def running(cls, text: str) -> "OutputLine":
        return cls(text, OutputKind.RUNNING)


OutputListener = Callable[[OutputLine], None]


class OutputBuffer:
    """FIFO-bounded line log shared between the engine thread and readers.

    Writers call :meth:`append`; readers take :meth:`snapshot` or
    :meth:`lines_since`. Once a line has been evicted the ``truncated``
    flag stays set until :meth:`reset`.
    """

    def __init__(self, capacity: int = MAX_OUTPUT_LINES) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._capacity = capacity
        self._lines: deque[OutputLine] = deque(maxlen=capacity)
        self._truncated = False
        self._appended = 0
        self._lock = threading.Lock()
        self._listeners: list[OutputListener] = []

    # ------------------------------------------------------------------ #
    # Writes                                                               #
    # ------------------------------------------------------------------ #

    def append(self, line: OutputLine) -> None:
        with self._lock:
            if len(self._lines) == self._capacity:
                self._truncated = True
            self._lines.append(line)
            self._appended += 1
            listeners = list(self._listeners)
        for listener in listeners:
            listener(line)

    def reset(self) -> None:
        with self._lock:
            self._lines.clear()
            self._truncated = False
            self._appended = 0

    def add_listener(self, listener: OutputListener) -> Callable[[], None]:
        """Call ``listener`` after every append. Returns an unsubscribe function."""
        with self._lock:
            self._listeners.append(listener)

        def _remove() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _remove

    # ------------------------------------------------------------------ #
    # Reads                                                                #
    # ------------------------------------------------------------------ #

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def truncated(self) -> bool:
        with self._lock:
            return self._truncated

    @property
    def total_appended(self) -> int:
        """Lines appended since the last reset, evicted ones included."""
        with self._lock:
            return self._appended

    def snapshot(self) -> tuple[OutputLine, ...]:
        with self._lock:
            return tuple(self._lines)

    def lines_since(self, seen: int) -> tuple[tuple[OutputLine, ...], int]:
        """Return lines appended after ``seen`` total appends, plus the new total.

        Lines that were evicted before the caller caught up are skipped.
        A ``seen`` greater than the current total (the buffer was reset)
        restarts from the beginning.
        """
        with self._lock:
            total = self._appended
            if seen > total:
                seen = 0
            missing = min(total - seen, len(self._lines))
            if missing <= 0:
                return (), total
            lines = tuple(self._lines)[-missing:]
            return lines, total

    def __len__(self) -> int:
        with self._lock:
            return len(self._lines)
