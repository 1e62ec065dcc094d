"""Pipeline configuration loaded from the environment (and a local .env)."""

import os
import logging
from pathlib import Path
from typing import Dict, Optional
from pydantic import BaseModel, Field
from dotenv import load_dotenv

load_dotenv()
logger = logging.getLogger(__name__)


def parse_positive_int(value: Optional[str], default: int) -> int:
    """Parses a positive integer, falling back to ``default`` on junk."""
    if value is None or value == "":
        return default
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        logger.warning(f"Ignoring non-integer setting value {value!r}; using {default}")
        return default
    return parsed if parsed > 0 else default


def parse_coverage_map(value: Optional[str]) -> Dict[str, str]:
    """Parses ``sub=key,sub2=key2`` into a lowercase subreddit -> coverage key map."""
    mapping: Dict[str, str] = {}
    for pair in (value or "").split(","):
        if "=" not in pair:
            continue
        subreddit, key = pair.split("=", 1)
        if subreddit.strip() and key.strip():
            mapping[subreddit.strip().lower()] = key.strip()
    return mapping


class ChunkingLimits(BaseModel):
    max_comments: int = 80
    max_chars: int = 12000
    max_tokens: int = 35000
    seconds_per_comment: float = 6.4
    post_only_seconds: float = 5.0

    @classmethod
    def from_env(cls) -> "ChunkingLimits":
        return cls(
            max_comments=parse_positive_int(os.getenv("LLM_MAX_CHUNK_COMMENTS"), 80),
            max_chars=parse_positive_int(os.getenv("LLM_MAX_CHUNK_CHARS"), 12000),
            max_tokens=parse_positive_int(os.getenv("LLM_CHUNK_TARGET_TOKENS"), 35000),
        )


class CoordinatorSettings(BaseModel):
    concurrency: int = 16
    worker_id_space: int = 16
    max_wait_step: float = 2.0
    engaged_score_threshold: int = 10

    @classmethod
    def from_env(cls) -> "CoordinatorSettings":
        return cls(concurrency=parse_positive_int(os.getenv("CONCURRENCY"), 16))


class FreshnessSettings(BaseModel):
    lookback_days: int = 21
    probe_sample_size: int = 5
    min_new_comments: int = 3

    @classmethod
    def from_env(cls) -> "FreshnessSettings":
        return cls(
            lookback_days=parse_positive_int(os.getenv("FRESHNESS_LOOKBACK_DAYS"), 21),
            probe_sample_size=parse_positive_int(os.getenv("FRESHNESS_PROBE_SAMPLE_SIZE"), 5),
            min_new_comments=parse_positive_int(os.getenv("FRESHNESS_MIN_NEW_COMMENTS"), 3),
        )


class ArchiveSettings(BaseModel):
    base_directory: Path = Path("archives")
    batch_size: int = 20
    max_posts: Optional[int] = None
    max_error_samples: int = 100

    @classmethod
    def from_env(cls) -> "ArchiveSettings":
        max_posts = os.getenv("ARCHIVE_MAX_POSTS")
        return cls(
            base_directory=Path(os.getenv("ARCHIVE_BASE_DIRECTORY", "archives")),
            batch_size=parse_positive_int(os.getenv("ARCHIVE_BATCH_SIZE"), 20),
            max_posts=parse_positive_int(max_posts, 0) or None,
        )


class GeminiSettings(BaseModel):
    api_key: Optional[str] = None
    model: str = "gemini-1.5-flash"
    safe_rpm: int = 950
    min_spacing_seconds: float = 0.063
    worker_slot_seconds: float = 0.030
    max_retries: int = 3
    default_backoff_seconds: float = 15.0

    @classmethod
    def from_env(cls) -> "GeminiSettings":
        return cls(
            api_key=os.getenv("GEMINI_API_KEY"),
            model=os.getenv("GEMINI_MODEL", "gemini-1.5-flash"),
            safe_rpm=parse_positive_int(os.getenv("LLM_SAFE_RPM"), 950),
            max_retries=parse_positive_int(os.getenv("LLM_MAX_RETRIES"), 3),
        )


class PipelineSettings(BaseModel):
    """Everything the batch pipeline reads from the environment."""
    chunking: ChunkingLimits = Field(default_factory=ChunkingLimits)
    coordinator: CoordinatorSettings = Field(default_factory=CoordinatorSettings)
    freshness: FreshnessSettings = Field(default_factory=FreshnessSettings)
    archive: ArchiveSettings = Field(default_factory=ArchiveSettings)
    gemini: GeminiSettings = Field(default_factory=GeminiSettings)
    rank_refresh_window_minutes: int = 30
    subreddit_coverage: Dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_env(cls) -> "PipelineSettings":
        return cls(
            chunking=ChunkingLimits.from_env(),
            coordinator=CoordinatorSettings.from_env(),
            freshness=FreshnessSettings.from_env(),
            archive=ArchiveSettings.from_env(),
            gemini=GeminiSettings.from_env(),
            rank_refresh_window_minutes=parse_positive_int(os.getenv("RANK_REFRESH_WINDOW_MINUTES"), 30),
            subreddit_coverage=parse_coverage_map(os.getenv("SUBREDDIT_COVERAGE")),
        )

    def coverage_key(self, subreddit: str) -> str:
        return self.subreddit_coverage.get(subreddit.lower(), subreddit.lower())
