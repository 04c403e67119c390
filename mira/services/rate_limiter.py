import math
import threading
import time
from dataclasses import dataclass
from typing import Callable

from mira.logging_config import get_logger

logger = get_logger("rate_limiter")

DEFAULT_MAX_REQUESTS = 15
DEFAULT_WINDOW_SECONDS = 60.0
VIOLATIONS_RESET_SIZE = 100


@dataclass(frozen=True)
class RateWindow:
    count: int
    reset_at: float


class RateLimiter:
    """Fixed-window admission control per sender. Memory only."""

    def __init__(
        self,
        max_requests: int = DEFAULT_MAX_REQUESTS,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: dict[str, RateWindow] = {}
        self._violations: dict[str, int] = {}
        self._lock = threading.RLock()

    def admit(self, sender: str) -> bool:
        now = self._clock()
        with self._lock:
            window = self._windows.get(sender)
            if window is None or now > window.reset_at:
                window = RateWindow(count=0, reset_at=now + self.window_seconds)

            if window.count >= self.max_requests:
                self._windows[sender] = window
                self._violations[sender] = self._violations.get(sender, 0) + 1
                return False

            self._windows[sender] = RateWindow(count=window.count + 1, reset_at=window.reset_at)
            return True

    def remaining_time(self, sender: str) -> int:
        """Seconds until the sender's window resets."""
        with self._lock:
            window = self._windows.get(sender)
        if window is None:
            return 0
        remaining = math.ceil(window.reset_at - self._clock())
        return remaining if remaining > 0 else 0

    def remaining_quota(self, sender: str) -> int:
        with self._lock:
            window = self._windows.get(sender)
        if window is None:
            return self.max_requests
        return max(0, self.max_requests - window.count)

    def violations(self, sender: str) -> int:
        with self._lock:
            return self._violations.get(sender, 0)

    def active_senders(self) -> int:
        with self._lock:
            return len(self._windows)

    def cleanup(self) -> int:
        """Evict idle windows. Expired windows reset themselves on use, so this is memory hygiene only."""
        now = self._clock()
        with self._lock:
            idle = [sender for sender, window in self._windows.items() if window.reset_at + self.window_seconds < now]
            for sender in idle:
                del self._windows[sender]

            if len(self._violations) > VIOLATIONS_RESET_SIZE:
                self._violations.clear()

        if idle:
            logger.info("Cleaned rate limit windows", extra={"context": {"removed": len(idle)}})
        return len(idle)
