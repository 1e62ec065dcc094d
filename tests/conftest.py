"""Shared pytest fixtures."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

import pytest

from models import Comment, Post

BASE_TIME = datetime(2024, 6, 1, tzinfo=timezone.utc)


def make_comment(
    comment_id: str,
    body: str = "great tacos",
    score: int = 1,
    parent_id: Optional[str] = None,
) -> Comment:
    return Comment(
        id=comment_id,
        body=body,
        author="eater",
        score=score,
        created_at=BASE_TIME,
        parent_id=parent_id,
        url=f"https://reddit.com/r/austinfood/comments/p1/_/{comment_id}",
    )


def make_post(post_id: str = "t3_p1", comments=None, title: str = "", body: str = "", **kwargs) -> Post:
    return Post(
        id=post_id,
        title=title,
        body=body,
        subreddit=kwargs.pop("subreddit", "austinfood"),
        author="op",
        url=f"https://reddit.com/r/austinfood/comments/{post_id[3:]}/",
        score=kwargs.pop("score", 5),
        created_at=kwargs.pop("created_at", BASE_TIME),
        comments=comments or [],
    )


@pytest.fixture
def comment_factory():
    return make_comment


@pytest.fixture
def post_factory():
    return make_post
