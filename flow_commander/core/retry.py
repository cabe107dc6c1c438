"""Retry limit and exponential backoff for tool calls."""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

DEFAULT_RETRY_LIMIT = 3
DEFAULT_BACKOFF_BASE_S = 5.0
DEFAULT_BACKOFF_CAP_S = 60.0


@dataclass(frozen=True)
class RetryPolicy:
    """Attempts per phase and the wait between them.

    The wait before attempt ``k + 1`` is ``min(cap_s, base_s * 2 ** (k - 1))``.
    """

    retry_limit: int = DEFAULT_RETRY_LIMIT
    base_s: float = DEFAULT_BACKOFF_BASE_S
    cap_s: float = DEFAULT_BACKOFF_CAP_S

    def __post_init__(self) -> None:
        if self.retry_limit < 1:
            raise ValueError("retry_limit must be >= 1")
        if self.base_s < 0 or self.cap_s < 0:
            raise ValueError("backoff values must be >= 0")

    def wait_seconds(self, attempt: int) -> float:
        """Seconds to wait after failed attempt ``attempt`` (1-based)."""
        if attempt < 1:
            raise ValueError("attempt must be >= 1")
        # Cap the exponent so huge attempt counts don't overflow.
        exponent = min(attempt - 1, 62)
        return min(self.cap_s, self.base_s * (2 ** exponent))

    def has_attempts_remaining(self, attempt: int) -> bool:
        return attempt < self.retry_limit


def wait_with_countdown(
    seconds: float,
    cancel_event: threading.Event,
    on_tick: Optional[Callable[[int], None]] = None,
    poll_interval_s: float = 0.1,
) -> bool:
    """Sleep for ``seconds`` unless cancelled.

    ``on_tick`` receives the remaining whole seconds each time that value
    changes. Returns False when ``cancel_event`` fired first.
    """
    deadline = time.monotonic() + max(0.0, seconds)
    last_reported: Optional[int] = None
    step = max(0.01, min(poll_interval_s, 0.2))
    while True:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return not cancel_event.is_set()
        whole = math.ceil(remaining)
        if on_tick is not None and whole != last_reported:
            last_reported = whole
            on_tick(whole)
        if cancel_event.wait(timeout=min(step, remaining)):
            return False
