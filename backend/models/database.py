"""Persistence models exchanged with the mention sink and source ledger."""

from datetime import datetime
from typing import Dict, List, Optional
from pydantic import BaseModel, Field, field_validator

from .enums import CollectionType
from .extraction import Mention


class TemporalRange(BaseModel):
    earliest: datetime
    latest: datetime


class EntitySummary(BaseModel):
    """Short description of a restaurant entity touched by a batch."""
    entity_id: str
    name: str
    slug: Optional[str] = None


class PersistenceRequest(BaseModel):
    mentions: List[Mention]
    batch_id: str
    collection_type: CollectionType
    subreddit: str
    source_breakdown: Dict[str, int] = Field(default_factory=dict)
    temporal_range: TemporalRange
    # Post and comment fullnames to record in the processed-source ledger
    source_ids: List[str] = Field(default_factory=list)


class PersistenceResult(BaseModel):
    entities_created: int = 0
    connections_created: int = 0
    created_entity_ids: List[str] = Field(default_factory=list)
    affected_connection_ids: List[str] = Field(default_factory=list)
    created_entity_summaries: List[EntitySummary] = Field(default_factory=list)
    reused_entity_summaries: List[EntitySummary] = Field(default_factory=list)


class SourceLedgerEntry(BaseModel):
    """Row of the processed_sources table."""
    pipeline: CollectionType
    source_id: str
    subreddit: Optional[str] = None
    processed_at: datetime

    model_config = {"extra": "ignore"}

    @field_validator("processed_at", mode="before")
    @classmethod
    def parse_datetime(cls, v):
        if isinstance(v, str):
            return datetime.fromisoformat(v.replace("Z", "+00:00"))
        return v
