import asyncio
import logging
from dataclasses import dataclass
from typing import Optional
from contextlib import asynccontextmanager

from .archive import ArchiveReconstructor
from .config import PipelineSettings
from .db import get_supabase
from .llm.extractor import GeminiExtractionBackend
from .orchestrator import BatchOrchestrator
from .persistence import LoggingMentionSink, SupabaseMentionStore, SupabaseSourceLedger
from .ranking import RankRefreshScheduler, log_only_refresh
from .reddit import RedditContentClient

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Container for all pipeline services."""
    settings: PipelineSettings
    orchestrator: BatchOrchestrator
    archive: ArchiveReconstructor
    rank_scheduler: RankRefreshScheduler
    reddit: Optional[RedditContentClient] = None


@asynccontextmanager
async def create_services(
    settings: Optional[PipelineSettings] = None,
    dry_run: bool = False,
    with_reddit: bool = True,
):
    """
    Initialize all services with proper lifecycle management.

    Usage:
        async with create_services() as services:
            result = await services.orchestrator.process_batch(job)
    """
    settings = settings or PipelineSettings.from_env()
    supabase = None if dry_run else get_supabase()

    if supabase is None:
        if not dry_run:
            logger.warning("No Supabase client; running as dry run")
        sink = LoggingMentionSink()
        ledger = None
        refresh = log_only_refresh
    else:
        store = SupabaseMentionStore(supabase)
        sink = store
        ledger = SupabaseSourceLedger(supabase)

        async def refresh(coverage_key: str, source: str) -> None:
            await asyncio.to_thread(store.refresh_rankings, coverage_key)

    reddit = RedditContentClient() if with_reddit else None
    rank_scheduler = RankRefreshScheduler(refresh, settings.rank_refresh_window_minutes)
    orchestrator = BatchOrchestrator(
        backend=GeminiExtractionBackend(settings.gemini),
        sink=sink,
        client=reddit,
        ledger=ledger,
        rank_refresher=rank_scheduler,
        settings=settings,
    )

    services = Services(
        settings=settings,
        orchestrator=orchestrator,
        archive=ArchiveReconstructor(settings.archive),
        rank_scheduler=rank_scheduler,
        reddit=reddit,
    )

    try:
        yield services
    finally:
        # Let queued rank refreshes finish before the loop closes
        await rank_scheduler.drain(timeout=60)
