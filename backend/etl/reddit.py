"""Reddit content client built on PRAW.

PRAW handles OAuth and its own request pacing; raw listing JSON is pulled
with ``Reddit.request`` so the normalizer sees the same payload shape the
public API returns. Calls run on a worker thread to keep the loop free.
"""

import os
import asyncio
import logging
from typing import Any, List, Optional

import praw
from dotenv import load_dotenv

from .exceptions import ContentFetchError

load_dotenv()
logger = logging.getLogger(__name__)


def create_reddit() -> praw.Reddit:
    return praw.Reddit(
        client_id=os.getenv("REDDIT_CLIENT_ID"),
        client_secret=os.getenv("REDDIT_CLIENT_SECRET"),
        user_agent=os.getenv("REDDIT_USER_AGENT", "buzz-collector/0.1"),
    )


class RedditContentClient:
    def __init__(self, reddit: Optional[praw.Reddit] = None, comment_limit: int = 500):
        self.reddit = reddit or create_reddit()
        self.comment_limit = comment_limit

    def _get(self, path: str, params: dict) -> Any:
        return self.reddit.request(method="GET", path=path, params=params)

    async def fetch_post(self, subreddit: str, post_id: str) -> Any:
        path = f"/r/{subreddit}/comments/{post_id}/"
        try:
            return await asyncio.to_thread(self._get, path, {"limit": self.comment_limit, "raw_json": 1})
        except Exception as e:
            raise ContentFetchError(f"GET {path} failed: {e}") from e

    async def recent_comment_ids(self, subreddit: str, post_id: str, limit: int) -> List[str]:
        bare_id = post_id[3:] if post_id.startswith("t3_") else post_id
        path = f"/r/{subreddit}/comments/{bare_id}/"
        payload = await asyncio.to_thread(
            self._get, path, {"sort": "new", "limit": limit, "depth": 1, "raw_json": 1}
        )
        if not isinstance(payload, list) or len(payload) < 2:
            return []
        children = ((payload[1] or {}).get("data") or {}).get("children") or []
        return [c["data"]["name"] for c in children if c.get("kind") == "t1" and c.get("data", {}).get("name")][:limit]

    def list_new_post_ids(self, subreddit: str, limit: int = 25) -> List[str]:
        """Newest submissions first, as ``t3_`` fullnames."""
        logger.info(f"Fetching {limit} newest posts from r/{subreddit}...")
        return [submission.name for submission in self.reddit.subreddit(subreddit).new(limit=limit)]
