"""In-process request reservations for the extraction backend.

Each call reserves a start time that respects a sliding 60s request budget,
a minimum spacing between any two requests and a per-worker slot. A 429
from the API sets a backoff that the coordinator reads via
``throttle_delay``.
"""

import time
import logging
from collections import deque
from typing import Callable, Deque, Dict

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60.0


class ReservationRateLimiter:
    def __init__(
        self,
        safe_rpm: int = 950,
        min_spacing: float = 0.063,
        worker_slot: float = 0.030,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.safe_rpm = safe_rpm
        self.min_spacing = min_spacing
        self.worker_slot = worker_slot
        self._clock = clock
        self._starts: Deque[float] = deque()
        self._last_start = float("-inf")
        self._worker_last: Dict[str, float] = {}
        self._backoff_until = 0.0

    def _prune(self, now: float) -> None:
        while self._starts and self._starts[0] <= now - WINDOW_SECONDS:
            self._starts.popleft()

    def reserve(self, worker_id: str) -> float:
        """Books the next start slot for ``worker_id``; returns seconds to wait."""
        now = self._clock()
        self._prune(now)

        start = max(now, self._backoff_until, self._last_start + self.min_spacing)
        start = max(start, self._worker_last.get(worker_id, float("-inf")) + self.worker_slot)
        if len(self._starts) >= self.safe_rpm:
            start = max(start, self._starts[len(self._starts) - self.safe_rpm] + WINDOW_SECONDS)

        self._starts.append(start)
        self._last_start = max(self._last_start, start)
        self._worker_last[worker_id] = start
        return start - now

    def register_rate_limit(self, retry_after: float) -> None:
        until = self._clock() + retry_after
        if until > self._backoff_until:
            self._backoff_until = until
            logger.warning(f"Extraction backend rate limited; backing off {retry_after:.1f}s")

    def throttle_delay(self) -> float:
        now = self._clock()
        self._prune(now)
        delay = self._backoff_until - now
        if len(self._starts) >= self.safe_rpm:
            delay = max(delay, self._starts[0] + WINDOW_SECONDS - now)
        return max(0.0, delay)

    def utilization(self) -> float:
        self._prune(self._clock())
        return len(self._starts) / self.safe_rpm if self.safe_rpm else 0.0
