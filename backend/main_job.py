"""Batch job runner for the Buzz collection pipeline."""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from etl.archive import plan_archive_batches
from etl.services import create_services
from models import BatchJob, BatchMetrics, BatchOptions, BatchProcessingResult, CollectionType

load_dotenv()

DEFAULT_SUBREDDIT = os.getenv("DEFAULT_SUBREDDIT", "austinfood")
DEFAULT_BATCH_SIZE = int(os.getenv("CHRONOLOGICAL_BATCH_SIZE", "25"))


def write_payload(payload: dict, output_path: Path) -> Path:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(json.dumps(payload, indent=2, default=str))
    logging.info("Saved %s", output_path)
    return output_path


def plan_chronological_batches(subreddit: str, post_ids: List[str], batch_size: int, options: BatchOptions) -> List[BatchJob]:
    parent_job_id = f"chronological-{subreddit}-{int(datetime.now(timezone.utc).timestamp() * 1000)}"
    total = (len(post_ids) + batch_size - 1) // batch_size
    return [
        BatchJob(
            batch_id=f"{parent_job_id}-batch-{index + 1}",
            parent_job_id=parent_job_id,
            collection_type=CollectionType.CHRONOLOGICAL,
            subreddit=subreddit,
            batch_number=index + 1,
            total_batches=total,
            post_ids=post_ids[index * batch_size:(index + 1) * batch_size],
            options=options,
        )
        for index in range(total)
    ]


def summarize(results: List[BatchProcessingResult]) -> BatchMetrics:
    totals = BatchMetrics()
    for result in results:
        for name, value in result.metrics.model_dump().items():
            setattr(totals, name, getattr(totals, name) + value)
    return totals


async def run_job(args: argparse.Namespace) -> List[BatchProcessingResult]:
    options = BatchOptions(post_sample_count=args.post_sample, include_raw_mentions=args.raw_mentions)
    async with create_services(dry_run=args.dry_run, with_reddit=args.mode == "chronological") as services:
        if args.mode == "archive":
            logging.info("Archive file sizes: %s", services.archive.available_archives([args.subreddit]))
            reconstruction = await services.archive.reconstruct_async(args.subreddit)
            jobs = plan_archive_batches(
                args.subreddit,
                reconstruction.posts,
                batch_size=args.batch_size or services.settings.archive.batch_size,
                max_posts=args.limit or services.settings.archive.max_posts,
                options=options,
            )
        else:
            post_ids = await asyncio.to_thread(services.reddit.list_new_post_ids, args.subreddit, args.limit or 25)
            jobs = plan_chronological_batches(args.subreddit, post_ids, args.batch_size or DEFAULT_BATCH_SIZE, options)

        if not jobs:
            logging.warning("Nothing to process for r/%s", args.subreddit)
            return []

        results = []
        for job in jobs:
            result = await services.orchestrator.process_batch(job)
            if not result.success:
                logging.error("Batch %s failed: %s", job.batch_id, result.error)
            results.append(result)
        return results


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Collect restaurant mentions from Reddit")
    parser.add_argument("mode", choices=["chronological", "archive"], help="Collection mode")
    parser.add_argument("--subreddit", type=str, default=DEFAULT_SUBREDDIT, help="Subreddit to collect")
    parser.add_argument("--limit", type=int, default=None, help="Max posts to process")
    parser.add_argument("--batch-size", type=int, default=None, help="Posts per batch")
    parser.add_argument("--post-sample", type=int, default=0, help="Include a diagnostic sample of N posts")
    parser.add_argument("--raw-mentions", action="store_true", help="Include a raw mentions sample in results")
    parser.add_argument("--dry-run", action="store_true", help="Log mentions instead of writing to Supabase")
    parser.add_argument("--output", type=Path, default=None, help="Where to save batch results JSON")
    parser.add_argument("--log-level", type=str, default="INFO", help="Logging level")
    return parser.parse_args(argv)


def main() -> None:
    args = parse_args()
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    results = asyncio.run(run_job(args))
    print(summarize(results).summary())
    if args.output:
        write_payload({"results": [r.model_dump(mode="json") for r in results]}, args.output)


if __name__ == "__main__":
    main()
