"""
Batch Orchestrator
==================
Drives one batch job end to end:

1. resolve posts (pre-built, or fetched through the freshness gate)
2. chunk
3. extract concurrently
4. enrich mentions from the batch's source tables
5. normalize restaurant names per post
6. drop self-referential duplicates
7. hand off to persistence
8. on the final batch, schedule a ranking refresh (best effort)

Expected failures come back as ``success=False`` results; only a malformed
job raises.
"""

import time
import asyncio
import logging
from collections import Counter
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from models import (
    SOURCE_BREAKDOWN_KEYS,
    BatchDetails,
    BatchJob,
    BatchMetrics,
    BatchProcessingResult,
    CollectionType,
    Mention,
    PersistenceRequest,
    Post,
    PostSample,
    TemporalRange,
)
from .chunker import ContextualChunker
from .config import PipelineSettings
from .coordinator import ConcurrentExtractionCoordinator, ProcessingResult
from .enrichment import apply_enrichment, build_source_enrichment_maps
from .exceptions import InvalidBatchJobError, PipelineError
from .freshness import FreshnessGate, as_post_fullname
from .names import drop_self_referential_mentions, normalize_restaurant_names
from .normalizer import filter_and_transform
from .ports import ExtractionBackend, ForumContentClient, MentionSink, RankRefresher, SourceLedger

logger = logging.getLogger(__name__)

RANK_REFRESH_TYPES = {CollectionType.CHRONOLOGICAL, CollectionType.KEYWORD, CollectionType.ARCHIVE}
SAMPLE_SNIPPET_CHARS = 160
RAW_MENTION_SAMPLE_SIZE = 25


class BatchOrchestrator:
    def __init__(
        self,
        backend: ExtractionBackend,
        sink: MentionSink,
        client: Optional[ForumContentClient] = None,
        ledger: Optional[SourceLedger] = None,
        rank_refresher: Optional[RankRefresher] = None,
        settings: Optional[PipelineSettings] = None,
    ):
        self.settings = settings or PipelineSettings()
        self.backend = backend
        self.sink = sink
        self.client = client
        self.rank_refresher = rank_refresher
        self.chunker = ContextualChunker(self.settings.chunking)
        self.coordinator = ConcurrentExtractionCoordinator(self.settings.coordinator)
        self.freshness = FreshnessGate(ledger, client, self.settings.freshness) if ledger and client else None

    # ------------------------------------------------------------------
    # Post resolution
    # ------------------------------------------------------------------

    async def _fetch_posts(self, job: BatchJob, post_ids: List[str]) -> List[Post]:
        posts: List[Post] = []
        delay = job.options.delay_between_requests
        for index, post_id in enumerate(post_ids):
            if index and delay > 0:
                await asyncio.sleep(delay)
            bare_id = post_id[3:] if post_id.startswith("t3_") else post_id
            url = f"https://reddit.com/r/{job.subreddit}/comments/{bare_id}/"
            try:
                payload = await self.client.fetch_post(job.subreddit, bare_id)
                normalized = filter_and_transform(payload, url)
            except Exception as e:
                logger.error(f"Failed to fetch {post_id} from r/{job.subreddit}: {e}")
                continue
            if normalized.post is None:
                logger.warning(f"Post {post_id} had no usable content; skipping")
                continue
            posts.append(normalized.post)
        return posts

    async def _resolve_posts(self, job: BatchJob, metrics: BatchMetrics) -> Tuple[List[Post], bool]:
        """Returns the posts to process and whether gating left nothing to fetch."""
        if job.posts:
            return list(job.posts), False

        post_ids = list(job.post_ids or [])
        if self.client is None:
            raise PipelineError("Batch carries post ids but no content client is configured")

        if self.freshness is not None:
            decision = await self.freshness.resolve(job.subreddit, post_ids)
            metrics.posts_skipped_fresh = len(decision.skipped_fresh)
            metrics.posts_skipped_unchanged = len(decision.skipped_unchanged)
            post_ids = decision.to_fetch
            if not post_ids:
                return [], True

        return await self._fetch_posts(job, post_ids), False

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _collect_mentions(processing: ProcessingResult) -> List[Mention]:
        mentions: List[Mention] = []
        for output in processing.outputs:
            for index, raw in enumerate(output.mentions):
                mentions.append(Mention.from_raw(raw, index))
        return mentions

    @staticmethod
    def _temporal_range(posts: List[Post]) -> TemporalRange:
        if not posts:
            now = datetime.now(timezone.utc)
            return TemporalRange(earliest=now, latest=now)
        timestamps = [p.created_at for p in posts]
        return TemporalRange(earliest=min(timestamps), latest=max(timestamps))

    @staticmethod
    def _post_sample(job: BatchJob, posts: List[Post]) -> List[PostSample]:
        count = job.options.post_sample_count
        if count <= 0:
            return []
        limit = job.options.post_sample_comment_limit
        return [
            PostSample(
                id=post.id,
                title=post.title,
                comment_count=len(post.comments),
                comments=[c.body[:SAMPLE_SNIPPET_CHARS] for c in post.comments[:limit]],
            )
            for post in posts[:count]
        ]

    def _maybe_refresh_rankings(self, job: BatchJob) -> None:
        if self.rank_refresher is None or job.collection_type not in RANK_REFRESH_TYPES:
            return
        if job.total_batches <= 1 or not job.is_final_batch:
            return
        coverage_key = self.settings.coverage_key(job.subreddit)
        try:
            self.rank_refresher.schedule(coverage_key, f"{job.collection_type.value}:{job.parent_job_id}")
        except Exception as e:
            logger.error(f"Could not schedule rank refresh for {coverage_key}: {e}")

    def _failure(self, job: BatchJob, error: str, started: float) -> BatchProcessingResult:
        return BatchProcessingResult(
            batch_id=job.batch_id,
            parent_job_id=job.parent_job_id,
            collection_type=job.collection_type,
            success=False,
            error=error,
            metrics=BatchMetrics(processing_time=time.monotonic() - started),
        )

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def process_batch(self, job: BatchJob) -> BatchProcessingResult:
        if not job.batch_id or not job.subreddit:
            raise InvalidBatchJobError("Batch job requires batch_id and subreddit")
        if not job.posts and not job.post_ids:
            raise InvalidBatchJobError(f"Batch {job.batch_id} has neither post_ids nor posts")

        started = time.monotonic()
        metrics = BatchMetrics()
        details = BatchDetails()
        logger.info(
            f"Processing {job.collection_type.value} batch {job.batch_id} "
            f"({job.batch_number}/{job.total_batches}) for r/{job.subreddit}"
        )

        try:
            posts, gated_out = await self._resolve_posts(job, metrics)
            if gated_out:
                metrics.processing_time = time.monotonic() - started
                logger.info(f"Batch {job.batch_id}: every post is fresh or unchanged; nothing to do")
                return BatchProcessingResult(
                    batch_id=job.batch_id,
                    parent_job_id=job.parent_job_id,
                    collection_type=job.collection_type,
                    success=True,
                    metrics=metrics,
                )
            if not posts:
                return self._failure(job, "No valid posts retrieved", started)

            metrics.posts_processed = len(posts)
            metrics.comments_processed = sum(len(p.comments) for p in posts)
            details.post_sample = self._post_sample(job, posts)

            chunk_result = self.chunker.create_contextual_chunks(posts)
            validation = self.chunker.validate_chunking(posts, chunk_result)
            if not validation.is_valid:
                details.warnings.extend(validation.issues)
                logger.warning(f"Chunk validation issues in {job.batch_id}: {validation.issues}")

            processing = await self.coordinator.process_concurrent(chunk_result, self.backend)
            metrics.chunks_processed = processing.metrics.chunks_processed
            metrics.chunks_failed = len(processing.failures)
            for failure in processing.failures:
                details.warnings.append(f"{failure.chunk_id}: {failure.error}")

            mentions = self._collect_mentions(processing)
            metrics.mentions_extracted = len(mentions)

            maps = build_source_enrichment_maps(posts)
            apply_enrichment(mentions, maps)
            normalize_restaurant_names(mentions, maps.id_to_post_id)
            mentions = drop_self_referential_mentions(mentions, maps.id_to_post_id)

            breakdown = Counter({key: 0 for key in SOURCE_BREAKDOWN_KEYS.values()})
            breakdown[SOURCE_BREAKDOWN_KEYS[job.collection_type]] = len(posts)
            request = PersistenceRequest(
                mentions=mentions,
                batch_id=job.batch_id,
                collection_type=job.collection_type,
                subreddit=job.subreddit,
                source_breakdown=dict(breakdown),
                temporal_range=self._temporal_range(posts),
                source_ids=processed_source_ids(posts),
            )
            persisted = await self.sink.persist(request)

            metrics.mentions_persisted = len(mentions)
            metrics.entities_created = persisted.entities_created
            metrics.connections_created = persisted.connections_created
            details.created_entity_ids = persisted.created_entity_ids
            details.affected_connection_ids = persisted.affected_connection_ids
            details.created_entity_summaries = persisted.created_entity_summaries
            details.reused_entity_summaries = persisted.reused_entity_summaries

            raw_sample = []
            if job.options.include_raw_mentions:
                raw_sample = [m.model_dump(mode="json") for m in mentions[:RAW_MENTION_SAMPLE_SIZE]]

            self._maybe_refresh_rankings(job)

            metrics.processing_time = time.monotonic() - started
            logger.info(
                f"Batch {job.batch_id} done: {metrics.mentions_persisted} mentions from "
                f"{metrics.posts_processed} posts in {metrics.processing_time:.1f}s"
            )
            return BatchProcessingResult(
                batch_id=job.batch_id,
                parent_job_id=job.parent_job_id,
                collection_type=job.collection_type,
                success=True,
                metrics=metrics,
                details=details,
                raw_mentions_sample=raw_sample,
            )
        except Exception as e:
            logger.error(f"Batch {job.batch_id} failed: {e}")
            return self._failure(job, str(e), started)


def processed_source_ids(posts: List[Post]) -> List[str]:
    """Post and comment fullnames a successful batch should record in the ledger."""
    ids: List[str] = []
    for post in posts:
        ids.append(as_post_fullname(post.id))
        ids.extend(c.id for c in post.comments)
    return ids
