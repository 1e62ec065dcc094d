"""Chunk models passed from the chunker to the extraction coordinator."""

from datetime import datetime
from typing import Dict, List, Optional
from pydantic import BaseModel, Field

from .social import Comment


class ChunkPost(BaseModel):
    """Post context carried by a chunk.

    The first chunk of a post carries full context (author, score and
    timestamp) and is the only one flagged for post-level extraction; later
    chunks carry the light context only.
    """
    id: str
    extract_from_post: bool = False
    title: str = ""
    body: str = ""
    subreddit: str = ""
    url: str = ""
    author: Optional[str] = None
    score: Optional[int] = None
    created_at: Optional[datetime] = None
    comments: List[Comment] = Field(default_factory=list)


class Chunk(BaseModel):
    chunk_id: str
    post: ChunkPost


class ChunkMetadata(BaseModel):
    chunk_id: str
    comment_count: int
    root_comment_score: int = 0
    estimated_processing_time: float = 0.0
    estimated_token_count: int = 0
    post_id: str
    post_chunk_index: int = 0
    thread_root_id: str
    root_comment_ids: List[str] = Field(default_factory=list)
    root_comment_scores: List[int] = Field(default_factory=list)


class ChunkResult(BaseModel):
    """Parallel lists of chunks and their metadata."""
    chunks: List[Chunk] = Field(default_factory=list)
    metadata: List[ChunkMetadata] = Field(default_factory=list)


class ChunkValidation(BaseModel):
    is_valid: bool
    issues: List[str] = Field(default_factory=list)
    summary: Dict[str, int] = Field(default_factory=dict)
