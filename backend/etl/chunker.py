"""
Contextual Chunker
==================
Splits each post's comment tree into model-sized chunks. A thread (a
top-level comment plus every nested reply) is never split across chunks;
threads are greedily packed, highest-scoring first, until the character or
token budget would be exceeded.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from models import Chunk, ChunkMetadata, ChunkPost, ChunkResult, ChunkValidation, Comment, Post
from .config import ChunkingLimits

logger = logging.getLogger(__name__)


def estimate_tokens(chars: int) -> int:
    if chars <= 0:
        return 0
    return max(1, chars // 4)


@dataclass
class _Thread:
    root: Comment
    comments: List[Comment]
    chars: int


@dataclass
class _Group:
    threads: List[_Thread] = field(default_factory=list)
    chars: int = 0

    @property
    def comment_count(self) -> int:
        return sum(len(t.comments) for t in self.threads)


def _is_top_level(comment: Comment, post: Post) -> bool:
    parent = comment.parent_id
    return parent is None or parent == post.id or parent == post.bare_id or parent == f"t3_{post.bare_id}"


class ContextualChunker:
    """Packs comment threads into chunks under the configured limits."""

    def __init__(self, limits: Optional[ChunkingLimits] = None):
        self.limits = limits or ChunkingLimits()

    # ------------------------------------------------------------------
    # Thread collection
    # ------------------------------------------------------------------

    def _dedupe(self, post: Post) -> List[Comment]:
        seen: Set[str] = set()
        unique: List[Comment] = []
        for comment in post.comments:
            if comment.id in seen:
                logger.warning(f"Duplicate comment id {comment.id} in {post.id}; keeping first")
                continue
            seen.add(comment.id)
            unique.append(comment)
        return unique

    def _collect_thread(self, root: Comment, children: Dict[str, List[Comment]], visited: Set[str]) -> List[Comment]:
        """Depth-first, iterative; the visited set guards against cyclic parent chains."""
        thread: List[Comment] = []
        stack = [root]
        while stack:
            comment = stack.pop()
            if comment.id in visited:
                continue
            visited.add(comment.id)
            thread.append(comment)
            stack.extend(reversed(children.get(comment.id, [])))
        return thread

    # ------------------------------------------------------------------
    # Packing
    # ------------------------------------------------------------------

    def _would_overflow(self, group: _Group, thread: _Thread) -> bool:
        proposed_chars = group.chars + thread.chars
        proposed_tokens = estimate_tokens(proposed_chars)
        proposed_comments = group.comment_count + len(thread.comments)
        return (
            proposed_chars > self.limits.max_chars
            or proposed_tokens > self.limits.max_tokens
            or (
                proposed_comments > self.limits.max_comments
                and proposed_tokens > 0.8 * self.limits.max_tokens
            )
        )

    def _pack(self, threads: List[_Thread], context_chars: int) -> List[_Group]:
        groups: List[_Group] = []
        current = _Group(chars=context_chars)
        for thread in threads:
            if current.threads and self._would_overflow(current, thread):
                groups.append(current)
                current = _Group(chars=context_chars)
            current.threads.append(thread)
            current.chars += thread.chars
        if current.threads:
            groups.append(current)
        return groups

    # ------------------------------------------------------------------
    # Chunk construction
    # ------------------------------------------------------------------

    def _chunk_post(self, post: Post, comments: List[Comment], full_context: bool) -> ChunkPost:
        return ChunkPost(
            id=post.id,
            extract_from_post=full_context,
            title=post.title,
            body=post.body,
            subreddit=post.subreddit,
            url=post.url,
            author=post.author if full_context else None,
            score=post.score if full_context else None,
            created_at=post.created_at if full_context else None,
            comments=comments,
        )

    def _metadata(
        self,
        chunk_id: str,
        post: Post,
        index: int,
        comments: List[Comment],
        roots: List[Comment],
        thread_root_id: str,
        chars: int,
    ) -> ChunkMetadata:
        estimated_time = (
            len(comments) * self.limits.seconds_per_comment if comments else self.limits.post_only_seconds
        )
        return ChunkMetadata(
            chunk_id=chunk_id,
            comment_count=len(comments),
            root_comment_score=max((r.score for r in roots), default=0),
            estimated_processing_time=estimated_time,
            estimated_token_count=estimate_tokens(chars),
            post_id=post.id,
            post_chunk_index=index,
            thread_root_id=thread_root_id,
            root_comment_ids=[r.id for r in roots],
            root_comment_scores=[r.score for r in roots],
        )

    def chunk_post(self, post: Post) -> ChunkResult:
        comments = self._dedupe(post)
        context_chars = len(post.title) + len(post.body)
        result = ChunkResult()

        children: Dict[str, List[Comment]] = defaultdict(list)
        top_level: List[Comment] = []
        for comment in comments:
            if _is_top_level(comment, post):
                top_level.append(comment)
            else:
                children[comment.parent_id].append(comment)

        # sorted() is stable, so equal scores keep the forum's own order
        top_level = sorted(top_level, key=lambda c: c.score, reverse=True)

        visited: Set[str] = set()
        threads = []
        for root in top_level:
            thread_comments = self._collect_thread(root, children, visited)
            threads.append(
                _Thread(root=root, comments=thread_comments, chars=sum(len(c.body) for c in thread_comments))
            )

        if not comments:
            chunk_id = f"chunk_post_{post.id}"
            result.chunks.append(Chunk(chunk_id=chunk_id, post=self._chunk_post(post, [], True)))
            result.metadata.append(self._metadata(chunk_id, post, 0, [], [], post.id, context_chars))
            return result

        for index, group in enumerate(self._pack(threads, context_chars)):
            group_comments = [c for t in group.threads for c in t.comments]
            roots = [t.root for t in group.threads]
            if len(roots) == 1:
                chunk_id = f"chunk_{roots[0].id}"
                thread_root_id = roots[0].id
            else:
                chunk_id = f"chunk_{post.id}_group_{index}"
                thread_root_id = "group:" + ",".join(r.id for r in roots)
            result.chunks.append(
                Chunk(chunk_id=chunk_id, post=self._chunk_post(post, group_comments, index == 0))
            )
            result.metadata.append(
                self._metadata(chunk_id, post, index, group_comments, roots, thread_root_id, group.chars)
            )

        orphans = [c for c in comments if c.id not in visited]
        if orphans:
            index = len(result.chunks)
            chunk_id = f"chunk_orphaned_{post.id}"
            logger.debug(f"{len(orphans)} orphaned comments in {post.id}")
            result.chunks.append(
                Chunk(chunk_id=chunk_id, post=self._chunk_post(post, orphans, index == 0))
            )
            result.metadata.append(
                self._metadata(
                    chunk_id, post, index, orphans, [], "orphaned",
                    context_chars + sum(len(c.body) for c in orphans),
                )
            )
        return result

    def create_contextual_chunks(self, posts: List[Post]) -> ChunkResult:
        """Chunks every post, preserving post order and score order within each post."""
        result = ChunkResult()
        for post in posts:
            post_result = self.chunk_post(post)
            result.chunks.extend(post_result.chunks)
            result.metadata.extend(post_result.metadata)

        logger.info(
            f"Created {len(result.chunks)} chunks from {len(posts)} posts "
            f"({sum(m.comment_count for m in result.metadata)} comments)"
        )
        return result

    def validate_chunking(self, posts: List[Post], result: ChunkResult) -> ChunkValidation:
        """Checks comment conservation; reports issues rather than raising."""
        issues: List[str] = []
        original = sum(len({c.id for c in p.comments}) for p in posts)
        chunked = sum(len(chunk.post.comments) for chunk in result.chunks)
        metadata_total = sum(m.comment_count for m in result.metadata)

        if original != chunked:
            issues.append(f"Comment count mismatch: {original} original vs {chunked} chunked")
        if metadata_total != chunked:
            issues.append(f"Metadata count mismatch: {metadata_total} in metadata vs {chunked} chunked")

        empty_per_post: Dict[str, int] = defaultdict(int)
        for chunk in result.chunks:
            if not chunk.post.comments:
                empty_per_post[chunk.post.id] += 1
        for post_id, count in empty_per_post.items():
            if count > 1:
                issues.append(f"Post {post_id} has {count} chunks without comments")

        return ChunkValidation(
            is_valid=not issues,
            issues=issues,
            summary={
                "original_comments": original,
                "chunked_comments": chunked,
                "total_chunks": len(result.chunks),
            },
        )
