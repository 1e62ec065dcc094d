from __future__ import annotations

import asyncio

from etl.ranking import RankRefreshScheduler


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_refresh_runs_in_background_and_debounces() -> None:
    calls: list[tuple[str, str]] = []
    clock = FakeClock()

    async def refresh(key, source):
        calls.append((key, source))

    async def scenario():
        scheduler = RankRefreshScheduler(refresh, window_minutes=30, clock=clock)
        first = scheduler.schedule("austin", "archive:job-1")
        second = scheduler.schedule("austin", "archive:job-2")
        other = scheduler.schedule("houston", "archive:job-3")
        clock.now += 31 * 60
        later = scheduler.schedule("austin", "archive:job-4")
        await scheduler.drain()
        return first, second, other, later

    assert asyncio.run(scenario()) == (True, False, True, True)
    assert sorted(calls) == [
        ("austin", "archive:job-1"),
        ("austin", "archive:job-4"),
        ("houston", "archive:job-3"),
    ]


def test_refresh_failure_is_isolated() -> None:
    async def refresh(key, source):
        raise RuntimeError("rank job crashed")

    async def scenario():
        scheduler = RankRefreshScheduler(refresh)
        assert scheduler.schedule("austin", "keyword:job-1")
        await scheduler.drain()
        return scheduler.failures

    assert asyncio.run(scenario()) == 1
