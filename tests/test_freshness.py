from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

from etl.config import FreshnessSettings
from etl.freshness import FreshnessGate

NOW = datetime(2024, 6, 30, tzinfo=timezone.utc)


class FakeLedger:
    def __init__(self, processed=None, fail: bool = False) -> None:
        self.processed = processed or {}
        self.fail = fail
        self.queries: list[list[str]] = []

    async def latest_processed_at(self, pipelines, source_ids):
        ids = list(source_ids)
        self.queries.append(ids)
        if self.fail:
            raise RuntimeError("ledger offline")
        return {i: self.processed[i] for i in ids if i in self.processed}


class FakeClient:
    def __init__(self, recent=None, fail_for=()) -> None:
        self.recent = recent or {}
        self.fail_for = set(fail_for)
        self.probed: list[str] = []

    async def fetch_post(self, subreddit, post_id):
        raise AssertionError("gate never fetches full posts")

    async def recent_comment_ids(self, subreddit, post_id, limit):
        self.probed.append(post_id)
        if post_id in self.fail_for:
            raise RuntimeError("probe timed out")
        return self.recent.get(post_id, [])[:limit]


def _resolve(ledger, client, post_ids, **settings):
    gate = FreshnessGate(ledger, client, FreshnessSettings(**settings))
    return asyncio.run(gate.resolve("austinfood", post_ids, now=NOW))


def test_never_processed_posts_are_fetched() -> None:
    client = FakeClient()
    decision = _resolve(FakeLedger(), client, ["abc", "t3_def"])

    assert decision.to_fetch == ["abc", "t3_def"]
    assert client.probed == []


def test_recently_processed_post_is_skipped_without_probe() -> None:
    client = FakeClient()
    ledger = FakeLedger({"t3_abc": NOW - timedelta(days=5)})

    decision = _resolve(ledger, client, ["abc"], lookback_days=21)

    assert decision.to_fetch == []
    assert decision.skipped_fresh == ["abc"]
    assert client.probed == []


def test_stale_post_with_enough_new_comments_is_fetched() -> None:
    client = FakeClient({"abc": ["t1_1", "t1_2", "t1_3", "t1_4", "t1_5"]})
    ledger = FakeLedger({"t3_abc": NOW - timedelta(days=40), "t1_1": NOW - timedelta(days=40)})

    decision = _resolve(ledger, client, ["abc"])

    assert decision.to_fetch == ["abc"]
    assert client.probed == ["abc"]


def test_stale_post_without_new_comments_is_skipped() -> None:
    old = NOW - timedelta(days=40)
    client = FakeClient({"abc": ["1", "2", "3", "4"]})
    ledger = FakeLedger({"t3_abc": old, "t1_1": old, "t1_2": old})

    decision = _resolve(ledger, client, ["abc"], min_new_comments=3)

    assert decision.to_fetch == []
    assert decision.skipped_unchanged == ["abc"]


def test_probe_failure_fails_open() -> None:
    client = FakeClient(fail_for={"abc"})
    ledger = FakeLedger({"t3_abc": NOW - timedelta(days=40)})

    decision = _resolve(ledger, client, ["abc"])

    assert decision.to_fetch == ["abc"]
    assert decision.probe_failures == 1


def test_ledger_failure_fetches_everything() -> None:
    decision = _resolve(FakeLedger(fail=True), FakeClient(), ["abc", "def"])
    assert decision.to_fetch == ["abc", "def"]


def test_caller_order_is_preserved() -> None:
    client = FakeClient({"b": ["t1_x", "t1_y", "t1_z"]})
    ledger = FakeLedger({"t3_b": NOW - timedelta(days=30), "t3_c": NOW - timedelta(days=1)})

    decision = _resolve(ledger, client, ["a", "b", "c", "d"])

    assert decision.to_fetch == ["a", "b", "d"]
    assert decision.skipped_count == 1
