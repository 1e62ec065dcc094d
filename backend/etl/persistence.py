"""
Supabase Persistence Adapters
=============================
- ``SupabaseSourceLedger``: reads the processed_sources ledger
- ``SupabaseMentionStore``: upserts restaurants + connections, inserts mentions
  and records processed sources once a batch is stored
- ``LoggingMentionSink``: dry-run sink that only logs

Normalized schema:
- Restaurant identity (Table: restaurants, unique slug)
- Restaurant/food pairings (Table: connections, unique restaurant_id + food_name)
- Social proof (Table: mentions)
- Ledger (Table: processed_sources, unique pipeline + source_id)
"""

import re
import asyncio
import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from supabase import Client

from models import (
    CollectionType,
    EntitySummary,
    Mention,
    PersistenceRequest,
    PersistenceResult,
    SourceLedgerEntry,
)
from .exceptions import PersistenceError

logger = logging.getLogger(__name__)

LEDGER_QUERY_CHUNK = 200


def create_slug(name: str) -> str:
    slug = name.lower()
    slug = re.sub(r"[^a-z0-9\s-]", "", slug)
    slug = re.sub(r"[\s_]+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")


# =============================================================================
# SOURCE LEDGER
# =============================================================================

class SupabaseSourceLedger:
    def __init__(self, client: Client):
        self.client = client

    def _query(self, pipelines: List[str], source_ids: List[str]) -> Dict[str, datetime]:
        latest: Dict[str, datetime] = {}
        for start in range(0, len(source_ids), LEDGER_QUERY_CHUNK):
            batch = source_ids[start:start + LEDGER_QUERY_CHUNK]
            result = (
                self.client.table("processed_sources")
                .select("pipeline, source_id, processed_at")
                .in_("pipeline", pipelines)
                .in_("source_id", batch)
                .execute()
            )
            for row in result.data or []:
                entry = SourceLedgerEntry(**row)
                previous = latest.get(entry.source_id)
                if previous is None or entry.processed_at > previous:
                    latest[entry.source_id] = entry.processed_at
        return latest

    async def latest_processed_at(
        self, pipelines: Iterable[CollectionType], source_ids: Iterable[str]
    ) -> Dict[str, datetime]:
        ids = list(dict.fromkeys(source_ids))
        if not ids:
            return {}
        return await asyncio.to_thread(self._query, [p.value for p in pipelines], ids)


# =============================================================================
# MENTION STORE
# =============================================================================

class SupabaseMentionStore:
    """Writes a batch's cleaned mentions and marks its sources processed."""

    def __init__(self, client: Client):
        self.client = client

    def _existing_restaurants(self, slugs: List[str]) -> Dict[str, str]:
        if not slugs:
            return {}
        result = self.client.table("restaurants").select("id, slug").in_("slug", slugs).execute()
        return {row["slug"]: row["id"] for row in result.data or []}

    def _upsert_restaurants(self, names: Dict[str, str], subreddit: str) -> Tuple[Dict[str, str], List[EntitySummary], List[EntitySummary]]:
        existing = self._existing_restaurants(list(names))
        created: List[EntitySummary] = []
        reused = [EntitySummary(entity_id=existing[s], name=names[s], slug=s) for s in names if s in existing]

        new_rows = [{"name": names[s], "slug": s, "subreddit": subreddit} for s in names if s not in existing]
        if new_rows:
            result = self.client.table("restaurants").upsert(new_rows, on_conflict="slug").execute()
            for row in result.data or []:
                existing[row["slug"]] = row["id"]
                created.append(EntitySummary(entity_id=row["id"], name=row["name"], slug=row["slug"]))
        return existing, created, reused

    def _upsert_connections(self, mentions: List[Mention], restaurant_ids: Dict[str, str]) -> Tuple[Dict[Tuple[str, str], str], int]:
        rows: Dict[Tuple[str, str], dict] = {}
        for mention in mentions:
            restaurant_id = restaurant_ids.get(create_slug(mention.restaurant))
            if not restaurant_id or not mention.food:
                continue
            key = (restaurant_id, mention.food.lower())
            rows.setdefault(key, {
                "restaurant_id": restaurant_id,
                "food_name": mention.food.lower(),
                "is_menu_item": bool(mention.is_menu_item),
                "food_categories": mention.food_categories,
            })
        if not rows:
            return {}, 0
        result = (
            self.client.table("connections")
            .upsert(list(rows.values()), on_conflict="restaurant_id,food_name")
            .execute()
        )
        ids = {(row["restaurant_id"], row["food_name"]): row["id"] for row in result.data or []}
        return ids, len(ids)

    def _mention_row(self, mention: Mention, request: PersistenceRequest, restaurant_id: str, connection_id: Optional[str]) -> dict:
        data = mention.model_dump(mode="json", exclude={"temp_id", "restaurant_temp_id", "food_temp_id", "post_context"})
        data.update(
            {
                "restaurant_id": restaurant_id,
                "connection_id": connection_id,
                "batch_id": request.batch_id,
                "collection_type": request.collection_type.value,
            }
        )
        return {k: v for k, v in data.items() if v is not None}

    def _record_sources(self, request: PersistenceRequest) -> None:
        if not request.source_ids:
            return
        processed_at = datetime.now(timezone.utc).isoformat()
        rows = [
            {
                "pipeline": request.collection_type.value,
                "source_id": source_id,
                "subreddit": request.subreddit,
                "processed_at": processed_at,
            }
            for source_id in request.source_ids
        ]
        self.client.table("processed_sources").upsert(rows, on_conflict="pipeline,source_id").execute()

    def _persist(self, request: PersistenceRequest) -> PersistenceResult:
        names: Dict[str, str] = {}
        for mention in request.mentions:
            slug = create_slug(mention.restaurant)
            if slug:
                names.setdefault(slug, mention.restaurant)

        restaurant_ids, created, reused = self._upsert_restaurants(names, request.subreddit)
        connection_ids, connections_created = self._upsert_connections(request.mentions, restaurant_ids)

        rows = []
        for mention in request.mentions:
            restaurant_id = restaurant_ids.get(create_slug(mention.restaurant))
            if not restaurant_id:
                continue
            connection_id = connection_ids.get((restaurant_id, (mention.food or "").lower()))
            rows.append(self._mention_row(mention, request, restaurant_id, connection_id))
        if rows:
            self.client.table("mentions").insert(rows).execute()

        self._record_sources(request)
        return PersistenceResult(
            entities_created=len(created),
            connections_created=connections_created,
            created_entity_ids=[s.entity_id for s in created],
            affected_connection_ids=list(connection_ids.values()),
            created_entity_summaries=created,
            reused_entity_summaries=reused,
        )

    async def persist(self, request: PersistenceRequest) -> PersistenceResult:
        try:
            return await asyncio.to_thread(self._persist, request)
        except Exception as e:
            logger.error(f"Failed to persist batch {request.batch_id}: {e}")
            raise PersistenceError(str(e)) from e

    def refresh_rankings(self, coverage_key: str) -> None:
        self.client.rpc("refresh_rank_scores", {"p_coverage_key": coverage_key}).execute()


class LoggingMentionSink:
    """Dry-run sink: summarizes what would have been written."""

    def __init__(self):
        self.requests: List[PersistenceRequest] = []

    async def persist(self, request: PersistenceRequest) -> PersistenceResult:
        self.requests.append(request)
        by_restaurant: Dict[str, int] = defaultdict(int)
        for mention in request.mentions:
            by_restaurant[mention.restaurant] += 1
        for name, count in sorted(by_restaurant.items(), key=lambda item: -item[1]):
            logger.info(f"[Dry Run] {name}: {count} mentions")
        return PersistenceResult()
