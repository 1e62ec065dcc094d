from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from etl.config import PipelineSettings
from etl.exceptions import InvalidBatchJobError
from etl.orchestrator import BatchOrchestrator
from models import (
    BatchJob,
    BatchOptions,
    CollectionType,
    EntitySummary,
    ExtractionOutput,
    PersistenceResult,
    RawMention,
)


class FakeBackend:
    """Emits scripted (restaurant, food) pairs for the sources in each chunk."""

    def __init__(self, script=None, fail_on=()) -> None:
        self.script = script or {}
        self.fail_on = set(fail_on)
        self.chunks: list[str] = []

    def throttle_delay(self) -> float:
        return 0.0

    async def extract(self, chunk, worker_id: str) -> ExtractionOutput:
        self.chunks.append(chunk.chunk_id)
        if chunk.chunk_id in self.fail_on:
            raise RuntimeError("model timeout")
        sources = [c.id for c in chunk.post.comments]
        if chunk.post.extract_from_post:
            sources.insert(0, chunk.post.id)
        mentions = []
        for source_id in sources:
            for restaurant, food in self.script.get(source_id, []):
                mentions.append(
                    RawMention(
                        restaurant=restaurant,
                        restaurant_temp_id=restaurant.lower(),
                        food=food,
                        is_menu_item=food is not None,
                        general_praise=food is None,
                        source_id=source_id,
                    )
                )
        return ExtractionOutput(mentions=mentions)


class FakeSink:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.requests = []

    async def persist(self, request):
        self.requests.append(request)
        if self.fail:
            raise RuntimeError("database unavailable")
        return PersistenceResult(
            entities_created=1,
            connections_created=2,
            created_entity_ids=["r-1"],
            created_entity_summaries=[EntitySummary(entity_id="r-1", name="Franklin", slug="franklin")],
        )


class FakeClient:
    def __init__(self, payloads=None, fail_for=()) -> None:
        self.payloads = payloads or {}
        self.fail_for = set(fail_for)
        self.fetched: list[str] = []

    async def fetch_post(self, subreddit, post_id):
        self.fetched.append(post_id)
        if post_id in self.fail_for:
            raise RuntimeError("503")
        return self.payloads.get(post_id, [])

    async def recent_comment_ids(self, subreddit, post_id, limit):
        return []


class FakeLedger:
    def __init__(self, processed=None) -> None:
        self.processed = processed or {}

    async def latest_processed_at(self, pipelines, source_ids):
        return {i: self.processed[i] for i in source_ids if i in self.processed}


class FakeRefresher:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.scheduled: list[tuple[str, str]] = []

    def schedule(self, coverage_key, source):
        self.scheduled.append((coverage_key, source))
        if self.fail:
            raise RuntimeError("queue down")
        return True


def _payload(post_id: str, comments):
    return [
        {"kind": "Listing", "data": {"children": [{"kind": "t3", "data": {
            "name": f"t3_{post_id}", "title": "Brisket thread", "selftext": "", "subreddit": "austinfood",
            "author": "op", "score": 3, "created_utc": 1717200000,
        }}]}},
        {"kind": "Listing", "data": {"children": [
            {"kind": "t1", "data": {"name": cid, "body": body, "parent_id": f"t3_{post_id}", "score": 2}}
            for cid, body in comments
        ]}},
    ]


def _job(**overrides) -> BatchJob:
    data = {
        "batch_id": "job-1-batch-1",
        "parent_job_id": "job-1",
        "collection_type": CollectionType.ARCHIVE,
        "subreddit": "austinfood",
    }
    data.update(overrides)
    return BatchJob(**data)


@pytest.fixture
def franklin_post(post_factory, comment_factory):
    return post_factory(
        title="Best brisket?",
        comments=[
            comment_factory("t1_a", "Franklin, no contest", score=20),
            comment_factory("t1_b", "Franklin for sure", score=15),
            comment_factory("t1_c", "+1 Franklin", score=5),
            comment_factory("t1_d", "Franklin brisket is the best", score=1),
            comment_factory("t1_e", "brisket", score=0),
        ],
    )


FRANKLIN_SCRIPT = {
    "t1_a": [("Franklin", None)],
    "t1_b": [("Franklin", None)],
    "t1_c": [("Franklin", "Ribs")],
    "t1_d": [("Franklin Brisket", "Brisket")],
    "t1_e": [("Brisket", "Brisket")],
}


def test_prebuilt_posts_flow_through_to_persistence(franklin_post) -> None:
    sink = FakeSink()
    orchestrator = BatchOrchestrator(FakeBackend(FRANKLIN_SCRIPT), sink)

    result = asyncio.run(orchestrator.process_batch(_job(posts=[franklin_post])))

    assert result.success
    request = sink.requests[0]
    assert [m.restaurant for m in request.mentions] == ["Franklin"] * 4
    rewritten = request.mentions[3]
    assert rewritten.source_id == "t1_d"
    assert rewritten.source_content == "Franklin brisket is the best"
    assert rewritten.post_context == "Best brisket?"
    assert request.source_breakdown["pushshift_archive"] == 1
    assert request.source_breakdown["reddit_api_chronological"] == 0
    assert request.temporal_range.earliest == franklin_post.created_at
    assert "t3_p1" in request.source_ids and "t1_e" in request.source_ids

    assert result.metrics.posts_processed == 1
    assert result.metrics.comments_processed == 5
    assert result.metrics.mentions_extracted == 5
    assert result.metrics.mentions_persisted == 4
    assert result.metrics.entities_created == 1
    assert result.details.created_entity_ids == ["r-1"]


def test_fetches_posts_and_skips_failed_ones() -> None:
    client = FakeClient(
        payloads={"good": _payload("good", [("t1_x", "Try Micklethwait")])},
        fail_for={"bad"},
    )
    backend = FakeBackend({"t1_x": [("Micklethwait", None)]})
    orchestrator = BatchOrchestrator(backend, FakeSink(), client=client)

    result = asyncio.run(
        orchestrator.process_batch(_job(collection_type=CollectionType.CHRONOLOGICAL, post_ids=["t3_good", "bad", "empty"]))
    )

    assert result.success
    assert client.fetched == ["good", "bad", "empty"]
    assert result.metrics.posts_processed == 1
    assert result.metrics.mentions_persisted == 1


def test_fully_gated_batch_is_successful_noop() -> None:
    now = datetime.now(timezone.utc)
    ledger = FakeLedger({"t3_a": now - timedelta(days=1), "t3_b": now - timedelta(days=2)})
    client = FakeClient()
    backend = FakeBackend()
    orchestrator = BatchOrchestrator(backend, FakeSink(), client=client, ledger=ledger)

    result = asyncio.run(orchestrator.process_batch(_job(collection_type=CollectionType.KEYWORD, post_ids=["a", "b"])))

    assert result.success
    assert result.metrics.posts_skipped_fresh == 2
    assert client.fetched == []
    assert backend.chunks == []


def test_no_resolvable_posts_is_a_failure_result() -> None:
    client = FakeClient(fail_for={"a"})
    orchestrator = BatchOrchestrator(FakeBackend(), FakeSink(), client=client)

    result = asyncio.run(orchestrator.process_batch(_job(post_ids=["a"])))

    assert not result.success
    assert result.error == "No valid posts retrieved"
    assert result.metrics.posts_processed == 0
    assert result.metrics.mentions_persisted == 0


def test_job_without_posts_or_ids_raises() -> None:
    orchestrator = BatchOrchestrator(FakeBackend(), FakeSink())
    with pytest.raises(InvalidBatchJobError):
        asyncio.run(orchestrator.process_batch(_job()))


def test_persistence_failure_is_reported_not_raised(franklin_post) -> None:
    orchestrator = BatchOrchestrator(FakeBackend(FRANKLIN_SCRIPT), FakeSink(fail=True))

    result = asyncio.run(orchestrator.process_batch(_job(posts=[franklin_post])))

    assert not result.success
    assert "database unavailable" in result.error
    assert result.metrics.mentions_persisted == 0


def test_chunk_failure_is_isolated(post_factory, comment_factory) -> None:
    post = post_factory(comments=[comment_factory(f"t1_{i}", "x" * 100, score=10 - i) for i in range(3)])
    settings = PipelineSettings()
    settings.chunking.max_chars = 150
    backend = FakeBackend({"t1_0": [("Franklin", None)], "t1_2": [("Kerlin", None)]}, fail_on={"chunk_t1_1"})
    sink = FakeSink()
    orchestrator = BatchOrchestrator(backend, sink, settings=settings)

    result = asyncio.run(orchestrator.process_batch(_job(posts=[post])))

    assert result.success
    assert result.metrics.chunks_processed == 3
    assert result.metrics.chunks_failed == 1
    assert any("chunk_t1_1" in w for w in result.details.warnings)
    assert sorted(m.restaurant for m in sink.requests[0].mentions) == ["Franklin", "Kerlin"]


def test_final_batch_schedules_rank_refresh(franklin_post) -> None:
    settings = PipelineSettings(subreddit_coverage={"austinfood": "austin"})
    refresher = FakeRefresher()
    orchestrator = BatchOrchestrator(FakeBackend(), FakeSink(), rank_refresher=refresher, settings=settings)

    asyncio.run(orchestrator.process_batch(_job(posts=[franklin_post], batch_number=1, total_batches=2)))
    assert refresher.scheduled == []

    asyncio.run(orchestrator.process_batch(_job(posts=[franklin_post], batch_number=2, total_batches=2)))
    assert refresher.scheduled == [("austin", "archive:job-1")]


def test_on_demand_and_single_batches_skip_rank_refresh(franklin_post) -> None:
    refresher = FakeRefresher()
    orchestrator = BatchOrchestrator(FakeBackend(), FakeSink(), rank_refresher=refresher)

    asyncio.run(orchestrator.process_batch(
        _job(posts=[franklin_post], collection_type=CollectionType.ON_DEMAND, batch_number=2, total_batches=2)
    ))
    asyncio.run(orchestrator.process_batch(_job(posts=[franklin_post])))

    assert refresher.scheduled == []


def test_rank_refresh_failure_does_not_fail_batch(franklin_post) -> None:
    orchestrator = BatchOrchestrator(FakeBackend(), FakeSink(), rank_refresher=FakeRefresher(fail=True))

    result = asyncio.run(orchestrator.process_batch(_job(posts=[franklin_post], batch_number=3, total_batches=3)))

    assert result.success


def test_diagnostic_samples(franklin_post) -> None:
    orchestrator = BatchOrchestrator(FakeBackend(FRANKLIN_SCRIPT), FakeSink())
    options = BatchOptions(post_sample_count=1, post_sample_comment_limit=2, include_raw_mentions=True)

    result = asyncio.run(orchestrator.process_batch(_job(posts=[franklin_post], options=options)))

    sample = result.details.post_sample[0]
    assert sample.comment_count == 5
    assert sample.comments == ["Franklin, no contest", "Franklin for sure"]
    assert len(result.raw_mentions_sample) == 4
    assert result.raw_mentions_sample[0]["restaurant"] == "Franklin"
