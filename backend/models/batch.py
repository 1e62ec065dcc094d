"""Batch job and batch result models used at the work-queue boundary."""

from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from .database import EntitySummary
from .enums import CollectionType
from .social import Post, utc_now


class BatchOptions(BaseModel):
    depth: int = 50
    delay_between_requests: float = 0.0
    post_sample_count: int = 0
    post_sample_comment_limit: int = 3
    include_raw_mentions: bool = False


class BatchJob(BaseModel):
    """One unit of work: either post ids to fetch or pre-built posts."""
    batch_id: str
    parent_job_id: str
    collection_type: CollectionType
    subreddit: str
    batch_number: int = 1
    total_batches: int = 1
    created_at: datetime = Field(default_factory=utc_now)
    priority: int = 0
    post_ids: Optional[List[str]] = None
    posts: Optional[List[Post]] = None
    options: BatchOptions = Field(default_factory=BatchOptions)

    @property
    def is_final_batch(self) -> bool:
        return self.batch_number >= self.total_batches


class BatchMetrics(BaseModel):
    posts_processed: int = 0
    comments_processed: int = 0
    chunks_processed: int = 0
    chunks_failed: int = 0
    mentions_extracted: int = 0
    mentions_persisted: int = 0
    entities_created: int = 0
    connections_created: int = 0
    posts_skipped_fresh: int = 0
    posts_skipped_unchanged: int = 0
    processing_time: float = 0.0

    def summary(self) -> str:
        return (
            f"\n{'='*50}\nBatch Complete!\n{'='*50}\n"
            f"Duration: {self.processing_time:.1f}s\n"
            f"Posts processed: {self.posts_processed}\n"
            f"Comments processed: {self.comments_processed}\n"
            f"Chunks: {self.chunks_processed} ({self.chunks_failed} failed)\n"
            f"Mentions extracted: {self.mentions_extracted}\n"
            f"Mentions persisted: {self.mentions_persisted}\n"
            f"Entities created: {self.entities_created}\n"
            f"Skipped (fresh/unchanged): {self.posts_skipped_fresh}/{self.posts_skipped_unchanged}\n"
        )


class PostSample(BaseModel):
    id: str
    title: str
    comment_count: int
    comments: List[str] = Field(default_factory=list)


class BatchDetails(BaseModel):
    created_entity_ids: List[str] = Field(default_factory=list)
    affected_connection_ids: List[str] = Field(default_factory=list)
    created_entity_summaries: List[EntitySummary] = Field(default_factory=list)
    reused_entity_summaries: List[EntitySummary] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    post_sample: List[PostSample] = Field(default_factory=list)


class BatchProcessingResult(BaseModel):
    batch_id: str
    parent_job_id: str
    collection_type: CollectionType
    success: bool
    error: Optional[str] = None
    metrics: BatchMetrics = Field(default_factory=BatchMetrics)
    completed_at: datetime = Field(default_factory=utc_now)
    details: BatchDetails = Field(default_factory=BatchDetails)
    raw_mentions_sample: List[Dict[str, Any]] = Field(default_factory=list)
