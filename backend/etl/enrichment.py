"""
Source Enrichment
=================
Fills each mention's source fields (text, upvotes, url, timestamp,
subreddit, post context) from lookup tables built over the batch's posts.
The extraction backend is never asked to echo source text back.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from models import Mention, Post, SourceKind

logger = logging.getLogger(__name__)


@dataclass
class SourceMetadata:
    source_type: SourceKind
    upvotes: int
    url: str
    created_at: datetime
    subreddit: str


@dataclass
class SourceEnrichmentMaps:
    content_by_id: Dict[str, str] = field(default_factory=dict)
    metadata_by_id: Dict[str, SourceMetadata] = field(default_factory=dict)
    id_to_post_id: Dict[str, str] = field(default_factory=dict)
    post_context_by_source: Dict[str, str] = field(default_factory=dict)

    def register(self, source_id: str, post_id: str, content: str, metadata: SourceMetadata, post_body: str):
        """Indexes a source under both its fullname and its bare id."""
        keys = [source_id]
        if source_id[:3] in ("t1_", "t3_"):
            keys.append(source_id[3:])
        for key in keys:
            self.content_by_id[key] = content
            self.metadata_by_id[key] = metadata
            self.id_to_post_id[key] = post_id
            self.post_context_by_source[key] = post_body


def build_source_enrichment_maps(posts: List[Post]) -> SourceEnrichmentMaps:
    maps = SourceEnrichmentMaps()
    for post in posts:
        post_text = post.body or post.title
        maps.register(
            post.id,
            post.id,
            post_text,
            SourceMetadata(SourceKind.POST, post.score, post.url, post.created_at, post.subreddit),
            post_text,
        )
        for comment in post.comments:
            maps.register(
                comment.id,
                post.id,
                comment.body,
                SourceMetadata(SourceKind.COMMENT, comment.score, comment.url or post.url, comment.created_at, post.subreddit),
                post_text,
            )
    return maps


def apply_enrichment(mentions: List[Mention], maps: SourceEnrichmentMaps) -> int:
    """Overwrites enrichment fields in place; returns mentions whose source was unknown."""
    unknown = 0
    for mention in mentions:
        metadata: Optional[SourceMetadata] = maps.metadata_by_id.get(mention.source_id)
        if metadata is None:
            unknown += 1
            logger.debug(f"Mention {mention.temp_id} references unknown source {mention.source_id}")
            continue
        mention.source_type = metadata.source_type
        mention.source_content = maps.content_by_id.get(mention.source_id)
        mention.source_upvotes = metadata.upvotes
        mention.source_url = metadata.url
        mention.source_created_at = metadata.created_at
        mention.subreddit = metadata.subreddit
        mention.post_context = maps.post_context_by_source.get(mention.source_id)
    if unknown:
        logger.warning(f"{unknown} mentions reference sources outside this batch")
    return unknown
