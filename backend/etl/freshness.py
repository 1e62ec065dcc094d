"""Freshness gate: skips re-fetching posts that are unlikely to have changed."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional

from models import CollectionType
from .config import FreshnessSettings
from .ports import ForumContentClient, SourceLedger

logger = logging.getLogger(__name__)

ALL_PIPELINES = tuple(CollectionType)


def as_post_fullname(post_id: str) -> str:
    return post_id if post_id.startswith("t3_") else f"t3_{post_id}"


@dataclass
class FreshnessDecision:
    to_fetch: List[str] = field(default_factory=list)
    skipped_fresh: List[str] = field(default_factory=list)
    skipped_unchanged: List[str] = field(default_factory=list)
    probe_failures: int = 0

    @property
    def skipped_count(self) -> int:
        return len(self.skipped_fresh) + len(self.skipped_unchanged)


class FreshnessGate:
    """Consults the processed-source ledger and probes recent comments."""

    def __init__(
        self,
        ledger: SourceLedger,
        client: ForumContentClient,
        settings: Optional[FreshnessSettings] = None,
        pipelines: Iterable[CollectionType] = ALL_PIPELINES,
    ):
        self.ledger = ledger
        self.client = client
        self.settings = settings or FreshnessSettings()
        self.pipelines = tuple(pipelines)

    async def _needs_fetch(self, subreddit: str, post_id: str) -> Optional[bool]:
        """True/False from the probe, None when the probe failed."""
        try:
            comment_ids = await self.client.recent_comment_ids(
                subreddit, post_id, self.settings.probe_sample_size
            )
            if not comment_ids:
                return False
            fullnames = [c if c.startswith("t1_") else f"t1_{c}" for c in comment_ids]
            recorded = await self.ledger.latest_processed_at(self.pipelines, fullnames)
            new_count = sum(1 for c in fullnames if c not in recorded)
            return new_count >= self.settings.min_new_comments
        except Exception as e:
            logger.warning(f"Freshness probe failed for {post_id}; fetching anyway: {e}")
            return None

    async def resolve(self, subreddit: str, post_ids: List[str], now: Optional[datetime] = None) -> FreshnessDecision:
        decision = FreshnessDecision()
        if not post_ids:
            return decision
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(days=self.settings.lookback_days)

        try:
            processed: Dict[str, datetime] = await self.ledger.latest_processed_at(
                self.pipelines, [as_post_fullname(p) for p in post_ids]
            )
        except Exception as e:
            logger.warning(f"Source ledger lookup failed; fetching all {len(post_ids)} posts: {e}")
            decision.to_fetch = list(post_ids)
            return decision

        to_probe: List[str] = []
        for post_id in post_ids:
            last_seen = processed.get(as_post_fullname(post_id))
            if last_seen is None:
                decision.to_fetch.append(post_id)
            elif last_seen >= cutoff:
                decision.skipped_fresh.append(post_id)
            else:
                to_probe.append(post_id)

        if to_probe:
            verdicts = await asyncio.gather(*(self._needs_fetch(subreddit, p) for p in to_probe))
            for post_id, verdict in zip(to_probe, verdicts):
                if verdict is None:
                    decision.probe_failures += 1
                    decision.to_fetch.append(post_id)
                elif verdict:
                    decision.to_fetch.append(post_id)
                else:
                    decision.skipped_unchanged.append(post_id)

        # Keep the caller's ordering
        wanted = set(decision.to_fetch)
        decision.to_fetch = [p for p in post_ids if p in wanted]

        logger.info(
            f"Freshness gate r/{subreddit}: fetch {len(decision.to_fetch)}, "
            f"fresh {len(decision.skipped_fresh)}, unchanged {len(decision.skipped_unchanged)}"
        )
        return decision
