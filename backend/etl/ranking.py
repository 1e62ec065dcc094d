"""Debounced, fire-and-forget ranking refresh scheduling."""

import time
import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional, Set

logger = logging.getLogger(__name__)

RefreshJob = Callable[[str, str], Awaitable[None]]


class RankRefreshScheduler:
    """Runs ``refresh(coverage_key, source)`` as a background task.

    Requests for the same coverage key inside the debounce window are
    dropped. A failing refresh is logged and never reaches the caller.
    """

    def __init__(self, refresh: RefreshJob, window_minutes: int = 30, clock: Callable[[], float] = time.monotonic):
        self.refresh = refresh
        self.window_seconds = window_minutes * 60
        self._clock = clock
        self._last_scheduled: Dict[str, float] = {}
        self._tasks: Set[asyncio.Task] = set()
        self.failures = 0

    def schedule(self, coverage_key: str, source: str) -> bool:
        now = self._clock()
        last = self._last_scheduled.get(coverage_key)
        if last is not None and now - last < self.window_seconds:
            logger.debug(f"Rank refresh for {coverage_key} debounced")
            return False
        self._last_scheduled[coverage_key] = now

        task = asyncio.get_running_loop().create_task(self._run(coverage_key, source))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info(f"Scheduled rank refresh for {coverage_key} ({source})")
        return True

    async def _run(self, coverage_key: str, source: str) -> None:
        try:
            await self.refresh(coverage_key, source)
        except Exception as e:
            self.failures += 1
            logger.error(f"Rank refresh for {coverage_key} failed: {e}")

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Waits for in-flight refreshes, e.g. before the event loop closes."""
        if self._tasks:
            await asyncio.wait(set(self._tasks), timeout=timeout)


async def log_only_refresh(coverage_key: str, source: str) -> None:
    logger.info(f"[Dry Run] Rank refresh requested for {coverage_key} by {source}")
