"""
Restaurant Name Normalization
=============================
Per-post, token-based cleanup of extracted restaurant names. Fixes the
common extraction slip where a dish is folded into the restaurant field
("Franklin Brisket" -> "Franklin") and drops mentions whose restaurant name
is just the dish restated.
"""

import re
import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Optional

from models import Mention

logger = logging.getLogger(__name__)

_TOKEN_SPLIT = re.compile(r"[^a-z0-9]+")


def tokenize(value: Optional[str]) -> List[str]:
    if not value or not isinstance(value, str):
        return []
    return [t for t in _TOKEN_SPLIT.split(value.lower()) if t]


def name_key(tokens: Iterable[str]) -> str:
    return " ".join(tokens)


@dataclass
class NameEntry:
    surface: str
    tokens: FrozenSet[str]
    token_count: int
    count: int = 0
    upvotes: int = 0


def group_by_post(mentions: List[Mention], id_to_post_id: Dict[str, str]) -> Dict[str, List[Mention]]:
    grouped: Dict[str, List[Mention]] = OrderedDict()
    for mention in mentions:
        post_id = id_to_post_id.get(mention.source_id)
        if post_id is None:
            continue
        grouped.setdefault(post_id, []).append(mention)
    return grouped


def build_name_table(mentions: List[Mention]) -> Dict[str, NameEntry]:
    table: Dict[str, NameEntry] = OrderedDict()
    for mention in mentions:
        tokens = tokenize(mention.restaurant)
        if not tokens:
            continue
        key = name_key(tokens)
        entry = table.get(key)
        if entry is None:
            entry = table[key] = NameEntry(
                surface=mention.restaurant.strip(), tokens=frozenset(tokens), token_count=len(tokens)
            )
        entry.count += 1
        entry.upvotes += mention.source_upvotes or 0
    return table


def _dish_sets(mentions: List[Mention]) -> List[FrozenSet[str]]:
    seen = []
    for mention in mentions:
        tokens = frozenset(tokenize(mention.food))
        if tokens and tokens not in seen:
            seen.append(tokens)
    return seen


def _best_entry(
    remainder: FrozenSet[str],
    own_key: str,
    table: Dict[str, NameEntry],
    food_tokens: FrozenSet[str],
    dish_sets: List[FrozenSet[str]],
) -> Optional[NameEntry]:
    """Highest count, then upvotes, then most tokens among clean entries containing the remainder."""
    best: Optional[NameEntry] = None
    for key, entry in table.items():
        if key == own_key or not remainder <= entry.tokens:
            continue
        # A candidate that still carries dish tokens would be rewritten again on a second pass
        if entry.tokens & food_tokens or any(dish <= entry.tokens for dish in dish_sets):
            continue
        if best is None or (entry.count, entry.upvotes, entry.token_count) > (
            best.count,
            best.upvotes,
            best.token_count,
        ):
            best = entry
    return best


def normalize_post_mentions(mentions: List[Mention]) -> int:
    """Rewrites restaurant names in place for one post's mentions; returns rewrites."""
    table = build_name_table(mentions)
    dish_sets = _dish_sets(mentions)
    rewrites = 0

    for mention in mentions:
        restaurant_tokens = tokenize(mention.restaurant)
        if not restaurant_tokens:
            continue
        own_key = name_key(restaurant_tokens)
        restaurant_set = frozenset(restaurant_tokens)
        food_tokens = frozenset(tokenize(mention.food))

        best: Optional[NameEntry] = None
        if restaurant_set & food_tokens:
            remainder = restaurant_set - food_tokens
            if remainder:
                best = _best_entry(remainder, own_key, table, food_tokens, dish_sets)

        if best is None:
            for dish in dish_sets:
                if not dish <= restaurant_set:
                    continue
                remainder = restaurant_set - dish
                if not remainder:
                    continue
                candidate = _best_entry(remainder, own_key, table, food_tokens, dish_sets)
                if candidate is not None and (
                    best is None
                    or (candidate.count, candidate.upvotes, candidate.token_count)
                    > (best.count, best.upvotes, best.token_count)
                ):
                    best = candidate

        if best is not None:
            logger.debug(f"Normalized restaurant '{mention.restaurant}' -> '{best.surface}'")
            mention.restaurant = best.surface
            rewrites += 1
    return rewrites


def normalize_restaurant_names(mentions: List[Mention], id_to_post_id: Dict[str, str]) -> int:
    total = 0
    for post_mentions in group_by_post(mentions, id_to_post_id).values():
        total += normalize_post_mentions(post_mentions)
    if total:
        logger.info(f"Normalized {total} restaurant names")
    return total


def drop_self_referential_mentions(mentions: List[Mention], id_to_post_id: Dict[str, str]) -> List[Mention]:
    """Drops mentions whose restaurant name only restates the dish.

    Such a mention survives when a strictly longer name in the same post
    contains all of its tokens. Mentions with an empty restaurant name are
    dropped as well.
    """
    tables = {post_id: build_name_table(group) for post_id, group in group_by_post(mentions, id_to_post_id).items()}

    kept: List[Mention] = []
    for mention in mentions:
        restaurant_set = frozenset(tokenize(mention.restaurant))
        if not restaurant_set:
            continue

        food_set = set(tokenize(mention.food))
        for category in mention.food_categories:
            food_set.update(tokenize(category))

        if not food_set or restaurant_set != food_set:
            kept.append(mention)
            continue

        table = tables.get(id_to_post_id.get(mention.source_id), {})
        if any(restaurant_set < entry.tokens for entry in table.values()):
            kept.append(mention)

    dropped = len(mentions) - len(kept)
    if dropped:
        logger.info(f"Dropped {dropped} self-referential or nameless mentions")
    return kept
