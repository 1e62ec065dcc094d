"""
Buzz Collector Data Models
==========================
Pydantic models for the collection and extraction pipeline.
"""

from .enums import CollectionType, SourceKind, SOURCE_BREAKDOWN_KEYS
from .social import Post, Comment, NormalizedContent, utc_now
from .chunking import Chunk, ChunkPost, ChunkMetadata, ChunkResult, ChunkValidation
from .extraction import RawMention, Mention, ExtractionOutput, RateLimitInfo, VITAL_FIELDS
from .database import (
    EntitySummary,
    PersistenceRequest,
    PersistenceResult,
    SourceLedgerEntry,
    TemporalRange,
)
from .batch import (
    BatchJob,
    BatchOptions,
    BatchMetrics,
    BatchDetails,
    BatchProcessingResult,
    PostSample,
)

__all__ = [
    # Enums
    "CollectionType",
    "SourceKind",
    "SOURCE_BREAKDOWN_KEYS",
    # Social
    "Post",
    "Comment",
    "NormalizedContent",
    "utc_now",
    # Chunking
    "Chunk",
    "ChunkPost",
    "ChunkMetadata",
    "ChunkResult",
    "ChunkValidation",
    # Extraction
    "RawMention",
    "Mention",
    "ExtractionOutput",
    "RateLimitInfo",
    "VITAL_FIELDS",
    # Database
    "EntitySummary",
    "PersistenceRequest",
    "PersistenceResult",
    "SourceLedgerEntry",
    "TemporalRange",
    # Batch
    "BatchJob",
    "BatchOptions",
    "BatchMetrics",
    "BatchDetails",
    "BatchProcessingResult",
    "PostSample",
]
