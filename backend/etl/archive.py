"""
Pushshift Archive Reconstructor
===============================
Streams a subreddit's ``{sub}_submissions.zst`` and ``{sub}_comments.zst``
exports one line at a time and rebuilds the same Post/Comment shape the live
API path produces. Files are never read into memory whole.
"""

import io
import json
import time
import asyncio
import hashlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

import zstandard

from models import BatchJob, BatchOptions, CollectionType, Comment, Post
from .config import ArchiveSettings
from .exceptions import ArchiveReadError
from .normalizer import REDDIT_BASE_URL, parse_timestamp

logger = logging.getLogger(__name__)

# Pushshift dumps are written with long-distance matching windows.
MAX_WINDOW_SIZE = 2 ** 31
ARCHIVED_POST_TITLE = "(archived post)"
PLACEHOLDER_POST_TITLE = "(archived submission)"


@dataclass
class ArchiveFileMetrics:
    path: str
    total_lines: int = 0
    valid_lines: int = 0
    error_lines: int = 0
    skipped_lines: int = 0
    processing_time_seconds: float = 0.0
    errors: List[Tuple[int, str]] = field(default_factory=list)


@dataclass
class ArchiveReconstruction:
    subreddit: str
    posts: List[Post]
    submissions: ArchiveFileMetrics
    comments: ArchiveFileMetrics

    @property
    def comment_count(self) -> int:
        return sum(len(p.comments) for p in self.posts)


def archive_paths(base_directory: Path, subreddit: str) -> Tuple[Path, Path]:
    folder = Path(base_directory) / subreddit
    return (
        folder / f"{subreddit}_submissions.zst",
        folder / f"{subreddit}_comments.zst",
    )


def fallback_id(record: Dict[str, Any], prefix: str) -> str:
    """Deterministic id for records that arrive without one."""
    canonical = json.dumps(record, sort_keys=True, default=str)
    return f"{prefix}archived_{hashlib.sha1(canonical.encode('utf-8')).hexdigest()[:12]}"


def _with_prefix(value: Any, prefix: str) -> Optional[str]:
    if not value or not isinstance(value, str):
        return None
    return value if value.startswith(prefix) else f"{prefix}{value}"


class ArchiveReconstructor:
    """Rebuilds posts and comments from a subreddit's compressed archive pair."""

    def __init__(self, settings: Optional[ArchiveSettings] = None):
        self.settings = settings or ArchiveSettings()

    def iter_lines(self, path: Path, metrics: ArchiveFileMetrics) -> Iterator[Tuple[int, Dict[str, Any]]]:
        """Yields ``(line_number, record)`` for every parseable line."""
        if not path.exists():
            raise ArchiveReadError(path, "archive file not found")

        decompressor = zstandard.ZstdDecompressor(max_window_size=MAX_WINDOW_SIZE)
        try:
            with open(path, "rb") as raw:
                with decompressor.stream_reader(raw) as reader:
                    text = io.TextIOWrapper(reader, encoding="utf-8", errors="replace")
                    for line_number, line in enumerate(text, start=1):
                        metrics.total_lines += 1
                        line = line.strip()
                        if not line:
                            metrics.skipped_lines += 1
                            continue
                        try:
                            record = json.loads(line)
                        except json.JSONDecodeError as e:
                            self._record_error(metrics, line_number, f"invalid JSON: {e.msg}")
                            continue
                        if not isinstance(record, dict):
                            self._record_error(metrics, line_number, "record is not an object")
                            continue
                        yield line_number, record
        except zstandard.ZstdError as e:
            logger.error(f"Failed to decompress {path}: {e}")
            raise ArchiveReadError(path, f"decompression failed: {e}") from e
        except OSError as e:
            logger.error(f"Failed to read {path}: {e}")
            raise ArchiveReadError(path, str(e)) from e

    def _record_error(self, metrics: ArchiveFileMetrics, line_number: int, message: str) -> None:
        metrics.error_lines += 1
        if len(metrics.errors) < self.settings.max_error_samples:
            metrics.errors.append((line_number, message))

    def _read_submissions(self, path: Path, subreddit: str) -> Tuple[Dict[str, dict], ArchiveFileMetrics]:
        metrics = ArchiveFileMetrics(path=str(path))
        started = time.monotonic()
        posts: Dict[str, dict] = {}

        for line_number, record in self.iter_lines(path, metrics):
            try:
                post_id = _with_prefix(record.get("name") or record.get("id"), "t3_") or fallback_id(record, "t3_")
                title = (record.get("title") or "").strip()
                selftext = (record.get("selftext") or "").strip()
                if selftext in ("[deleted]", "[removed]"):
                    selftext = ""
                permalink = record.get("permalink") or ""
                posts[post_id] = {
                    "id": post_id,
                    "title": title or ARCHIVED_POST_TITLE,
                    "body": selftext or title,
                    "subreddit": record.get("subreddit") or subreddit,
                    "author": record.get("author") or "unknown",
                    "url": f"{REDDIT_BASE_URL}{permalink}" if permalink else (record.get("url") or ""),
                    "score": record.get("score"),
                    "created_at": parse_timestamp(record.get("created_utc")),
                    "comments": [],
                }
                metrics.valid_lines += 1
            except Exception as e:
                self._record_error(metrics, line_number, str(e))

        metrics.processing_time_seconds = time.monotonic() - started
        return posts, metrics

    def _read_comments(self, path: Path, subreddit: str, posts: Dict[str, dict]) -> ArchiveFileMetrics:
        metrics = ArchiveFileMetrics(path=str(path))
        started = time.monotonic()

        for line_number, record in self.iter_lines(path, metrics):
            try:
                body = (record.get("body") or "").strip()
                if not body or body in ("[deleted]", "[removed]"):
                    metrics.skipped_lines += 1
                    continue

                post_id = _with_prefix(record.get("link_id"), "t3_")
                if post_id is None:
                    self._record_error(metrics, line_number, "comment has no link_id")
                    continue

                if post_id not in posts:
                    posts[post_id] = {
                        "id": post_id,
                        "title": PLACEHOLDER_POST_TITLE,
                        "body": "",
                        "subreddit": record.get("subreddit") or subreddit,
                        "author": "unknown",
                        "url": "",
                        "score": 0,
                        "created_at": parse_timestamp(record.get("created_utc")),
                        "comments": [],
                    }

                comment_id = _with_prefix(record.get("name") or record.get("id"), "t1_") or fallback_id(record, "t1_")
                parent_id = record.get("parent_id")
                if not (isinstance(parent_id, str) and parent_id.startswith(("t1_", "t3_"))):
                    parent_id = post_id

                permalink = record.get("permalink") or ""
                posts[post_id]["comments"].append(
                    Comment(
                        id=comment_id,
                        body=body,
                        author=record.get("author") or "[deleted]",
                        score=record.get("score"),
                        created_at=parse_timestamp(record.get("created_utc")),
                        parent_id=parent_id,
                        url=f"{REDDIT_BASE_URL}{permalink}" if permalink else "",
                    )
                )
                metrics.valid_lines += 1
            except Exception as e:
                self._record_error(metrics, line_number, str(e))

        metrics.processing_time_seconds = time.monotonic() - started
        return metrics

    def reconstruct(self, subreddit: str) -> ArchiveReconstruction:
        """Reads both archive files for ``subreddit`` and returns ordered posts."""
        submissions_path, comments_path = archive_paths(self.settings.base_directory, subreddit)
        logger.info(f"Reconstructing r/{subreddit} from {submissions_path.parent}")

        raw_posts, submission_metrics = self._read_submissions(submissions_path, subreddit)
        comment_metrics = self._read_comments(comments_path, subreddit, raw_posts)

        posts: List[Post] = []
        for data in raw_posts.values():
            data["comments"].sort(key=lambda c: c.score, reverse=True)
            posts.append(Post(**data))
        posts.sort(key=lambda p: p.created_at)

        logger.info(
            f"r/{subreddit}: {len(posts)} posts, "
            f"{submission_metrics.error_lines + comment_metrics.error_lines} malformed lines"
        )
        return ArchiveReconstruction(
            subreddit=subreddit,
            posts=posts,
            submissions=submission_metrics,
            comments=comment_metrics,
        )

    async def reconstruct_async(self, subreddit: str) -> ArchiveReconstruction:
        return await asyncio.to_thread(self.reconstruct, subreddit)

    def available_archives(self, subreddits: List[str]) -> Dict[str, Dict[str, Any]]:
        report: Dict[str, Dict[str, Any]] = {}
        for subreddit in subreddits:
            submissions_path, comments_path = archive_paths(self.settings.base_directory, subreddit)
            report[subreddit] = {
                "submissions": submissions_path.stat().st_size if submissions_path.exists() else None,
                "comments": comments_path.stat().st_size if comments_path.exists() else None,
            }
        return report


def plan_archive_batches(
    subreddit: str,
    posts: List[Post],
    batch_size: int = 20,
    max_posts: Optional[int] = None,
    options: Optional[BatchOptions] = None,
) -> List[BatchJob]:
    """Splits reconstructed posts into archive batch jobs carrying the posts themselves."""
    selected = posts[:max_posts] if max_posts else posts
    if not selected:
        return []

    parent_job_id = f"archive-{subreddit}-{int(datetime.now(timezone.utc).timestamp() * 1000)}"
    total = (len(selected) + batch_size - 1) // batch_size
    jobs: List[BatchJob] = []
    for index in range(total):
        jobs.append(
            BatchJob(
                batch_id=f"{parent_job_id}-batch-{index + 1}",
                parent_job_id=parent_job_id,
                collection_type=CollectionType.ARCHIVE,
                subreddit=subreddit,
                batch_number=index + 1,
                total_batches=total,
                posts=selected[index * batch_size:(index + 1) * batch_size],
                options=options or BatchOptions(),
            )
        )
    return jobs
