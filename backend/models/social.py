"""Forum content models shared by the normalizer, archive reader and chunker."""

from datetime import datetime, timezone
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Comment(BaseModel):
    """One comment, flattened and linked to its parent by id."""
    id: str
    body: str
    author: str = "[deleted]"
    score: int = 0
    created_at: datetime = Field(default_factory=utc_now)
    parent_id: Optional[str] = None
    url: str = ""

    model_config = {"frozen": True, "extra": "ignore"}

    @field_validator("score", mode="before")
    @classmethod
    def clamp_score(cls, v):
        try:
            return max(0, int(v or 0))
        except (TypeError, ValueError):
            return 0


class Post(BaseModel):
    """A forum post with its flattened comments."""
    id: str
    title: str = ""
    body: str = ""
    subreddit: str
    author: str = "unknown"
    url: str = ""
    score: int = 0
    created_at: datetime = Field(default_factory=utc_now)
    comments: List[Comment] = Field(default_factory=list)

    model_config = {"frozen": True, "extra": "ignore"}

    @field_validator("score", mode="before")
    @classmethod
    def clamp_score(cls, v):
        try:
            return max(0, int(v or 0))
        except (TypeError, ValueError):
            return 0

    @property
    def bare_id(self) -> str:
        return self.id[3:] if self.id.startswith("t3_") else self.id


class NormalizedContent(BaseModel):
    """Normalizer output: the post (None when unusable) and its comments."""
    post: Optional[Post] = None
    comments: List[Comment] = Field(default_factory=list)
