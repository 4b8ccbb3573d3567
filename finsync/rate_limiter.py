from __future__ import annotations

import threading
import time
from typing import Callable


class MinIntervalRateLimiter:
    """Serializes callers so that consecutive requests are at least ``min_interval`` seconds apart.

    One limiter is owned by one client instance; callers that share the client
    share the gate, including callers on other threads.
    """

    def __init__(
        self,
        min_interval: float = 1.1,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if min_interval < 0:
            raise ValueError("min_interval must not be negative.")
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._last_call: float | None = None

    def wait(self) -> float:
        """Block until the next request may go out; returns the seconds slept."""
        with self._lock:
            waited = 0.0
            if self._last_call is not None:
                elapsed = self._clock() - self._last_call
                if elapsed < self.min_interval:
                    waited = self.min_interval - elapsed
                    self._sleep(waited)
            self._last_call = self._clock()
            return waited
