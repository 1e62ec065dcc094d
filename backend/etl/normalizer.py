"""
Reddit Content Normalizer
=========================
Turns the raw ``/comments/{id}.json`` response (a post listing followed by a
comment-tree listing) into a flat, parent-linked ``Post`` + ``Comment`` list.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from models import Comment, NormalizedContent, Post

logger = logging.getLogger(__name__)

REMOVED_BODIES = {"[deleted]", "[removed]"}
REDDIT_BASE_URL = "https://reddit.com"


def parse_timestamp(value: Any) -> datetime:
    """Normalizes epoch seconds/milliseconds or ISO strings to an aware UTC datetime.

    Anything missing or malformed becomes "now" so a single bad record never
    fails the batch.
    """
    now = datetime.now(timezone.utc)
    if value is None or isinstance(value, bool):
        return now
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return now
        try:
            value = float(text)
        except ValueError:
            try:
                parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
            except ValueError:
                return now
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        seconds = value / 1000 if value > 1e10 else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return now
    return now


def _listing_children(listing: Any) -> List[Dict[str, Any]]:
    if not isinstance(listing, dict):
        return []
    children = (listing.get("data") or {}).get("children")
    return children if isinstance(children, list) else []


def _parent_or_none(parent_id: Any) -> Optional[str]:
    if isinstance(parent_id, str) and parent_id.startswith(("t1_", "t3_")):
        return parent_id
    return None


def _build_post(data: Dict[str, Any], post_url: str) -> Optional[Post]:
    title = (data.get("title") or "").strip()
    selftext = (data.get("selftext") or "").strip()
    if not title and not selftext:
        return None

    post_id = data.get("name") or (f"t3_{data['id']}" if data.get("id") else "t3_unknown")
    return Post(
        id=post_id,
        title=title,
        body=selftext or title,
        subreddit=data.get("subreddit") or "",
        author=data.get("author") or "unknown",
        url=post_url or data.get("url") or "",
        score=data.get("score"),
        created_at=parse_timestamp(data.get("created_utc")),
    )


def _walk_comments(children: List[Dict[str, Any]]) -> List[Comment]:
    """Depth-first walk preserving API order; dropped comments keep their replies."""
    comments: List[Comment] = []
    stack = list(reversed(children))
    while stack:
        child = stack.pop()
        if not isinstance(child, dict) or child.get("kind") != "t1":
            continue
        data = child.get("data") or {}

        replies = data.get("replies")
        reply_children = _listing_children(replies) if isinstance(replies, dict) else []
        stack.extend(reversed(reply_children))

        body = (data.get("body") or "").strip()
        if not body or body in REMOVED_BODIES:
            continue
        comment_id = data.get("name")
        if not comment_id:
            logger.debug("Dropping comment without a fullname")
            continue

        permalink = data.get("permalink") or ""
        comments.append(
            Comment(
                id=comment_id,
                body=body,
                author=data.get("author") or "[deleted]",
                score=data.get("score"),
                created_at=parse_timestamp(data.get("created_utc")),
                parent_id=_parent_or_none(data.get("parent_id")),
                url=f"{REDDIT_BASE_URL}{permalink}" if permalink else "",
            )
        )
    return comments


def filter_and_transform(response: Any, post_url: str = "") -> NormalizedContent:
    """Normalizes one post payload. ``post`` is None when the payload is unusable."""
    if not isinstance(response, list) or len(response) < 2:
        logger.warning("Unexpected post payload shape; skipping")
        return NormalizedContent()

    post_children = _listing_children(response[0])
    if not post_children:
        return NormalizedContent()

    post = _build_post(post_children[0].get("data") or {}, post_url)
    if post is None:
        return NormalizedContent()

    comments = _walk_comments(_listing_children(response[1]))
    return NormalizedContent(post=post.model_copy(update={"comments": comments}), comments=comments)
