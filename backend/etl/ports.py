"""Ports (interfaces) the batch pipeline depends on.

Each adapter (PRAW, Gemini, Supabase, the rank scheduler) implements one of
these so the core can be driven by in-memory fakes in tests.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, List, Protocol

from models import Chunk, CollectionType, ExtractionOutput, PersistenceRequest, PersistenceResult


class ForumContentClient(Protocol):
    async def fetch_post(self, subreddit: str, post_id: str) -> Any:
        """Returns the raw two-listing post payload."""
        ...

    async def recent_comment_ids(self, subreddit: str, post_id: str, limit: int) -> List[str]:
        ...


class ExtractionBackend(Protocol):
    async def extract(self, chunk: Chunk, worker_id: str) -> ExtractionOutput:
        ...

    def throttle_delay(self) -> float:
        """Seconds the caller should hold off before the next dispatch."""
        ...


class SourceLedger(Protocol):
    async def latest_processed_at(
        self, pipelines: Iterable[CollectionType], source_ids: Iterable[str]
    ) -> Dict[str, datetime]:
        ...


class MentionSink(Protocol):
    async def persist(self, request: PersistenceRequest) -> PersistenceResult:
        ...


class RankRefresher(Protocol):
    def schedule(self, coverage_key: str, source: str) -> bool:
        """Queues a refresh; returns False when debounced."""
        ...
