from __future__ import annotations

from etl.names import (
    build_name_table,
    drop_self_referential_mentions,
    normalize_restaurant_names,
    tokenize,
)
from models import Mention


def _mention(restaurant, food=None, source_id="t1_a", upvotes=0, categories=None) -> Mention:
    return Mention(
        temp_id=f"{restaurant}-{food}-{source_id}",
        restaurant=restaurant,
        restaurant_temp_id=restaurant.lower(),
        food=food,
        food_categories=categories or [],
        general_praise=food is None,
        source_id=source_id,
        source_upvotes=upvotes,
    )


POST_INDEX = {f"t1_{x}": "t3_p1" for x in "abcdefgh"}


def test_tokenize() -> None:
    assert tokenize("Terry Black's BBQ!") == ["terry", "black", "s", "bbq"]
    assert tokenize(None) == []
    assert tokenize("  --  ") == []


def test_name_table_counts_and_upvotes() -> None:
    table = build_name_table([_mention("Franklin", upvotes=10), _mention("franklin", upvotes=5), _mention("")])
    assert list(table) == ["franklin"]
    assert (table["franklin"].count, table["franklin"].upvotes, table["franklin"].surface) == (2, 15, "Franklin")


def test_dish_folded_into_restaurant_name_is_rewritten() -> None:
    mentions = [
        _mention("Franklin", "Ribs", "t1_a", upvotes=10),
        _mention("Franklin", None, "t1_b", upvotes=20),
        _mention("Franklin", "Turkey", "t1_c", upvotes=10),
        _mention("Franklin Brisket", "Brisket", "t1_d", upvotes=1),
    ]

    rewrites = normalize_restaurant_names(mentions, POST_INDEX)

    assert rewrites == 1
    assert mentions[3].restaurant == "Franklin"


def test_cross_mention_dish_is_stripped() -> None:
    mentions = [
        _mention("La Barbecue", "Beef Rib", "t1_a"),
        _mention("La Barbecue", None, "t1_b"),
        _mention("La Barbecue Beef Rib", None, "t1_c"),
    ]

    normalize_restaurant_names(mentions, POST_INDEX)

    assert mentions[2].restaurant == "La Barbecue"


def test_best_candidate_prefers_count_then_upvotes() -> None:
    mentions = [
        _mention("Joe's Tacos", None, "t1_a", upvotes=1),
        _mention("Joe's Cafe", None, "t1_b", upvotes=50),
        _mention("Joe's Cafe", None, "t1_c", upvotes=0),
        _mention("Joe's Queso", "Queso", "t1_d"),
    ]

    normalize_restaurant_names(mentions, POST_INDEX)

    assert mentions[3].restaurant == "Joe's Cafe"


def test_mentions_in_other_posts_are_not_candidates() -> None:
    index = dict(POST_INDEX, t1_z="t3_other")
    mentions = [_mention("Franklin", None, "t1_z"), _mention("Franklin Brisket", "Brisket", "t1_a")]

    normalize_restaurant_names(mentions, index)

    assert mentions[1].restaurant == "Franklin Brisket"


def test_normalization_is_idempotent() -> None:
    def build():
        return [
            _mention("Franklin", "Brisket Sandwich", "t1_a", upvotes=3),
            _mention("Franklin Sandwich", None, "t1_b"),
            _mention("Franklin Brisket", "Brisket", "t1_c"),
            _mention("Franklin Brisket", "Brisket", "t1_d"),
            _mention("Kerlin BBQ", "Kolaches", "t1_e"),
            _mention("Kerlin BBQ Kolaches", None, "t1_f"),
            _mention("Brisket", "Brisket", "t1_g"),
        ]

    once = build()
    normalize_restaurant_names(once, POST_INDEX)
    twice = build()
    normalize_restaurant_names(twice, POST_INDEX)
    normalize_restaurant_names(twice, POST_INDEX)

    assert [m.restaurant for m in once] == [m.restaurant for m in twice]


def test_self_referential_mention_is_dropped() -> None:
    mentions = [
        _mention("Franklin", "Brisket", "t1_a"),
        _mention("Brisket", "Brisket", "t1_b"),
        _mention("Tacos", "Al Pastor", "t1_c", categories=["tacos"]),
        _mention("Al Pastor Tacos", "Al Pastor", "t1_d", categories=["Tacos"]),
    ]

    kept = drop_self_referential_mentions(mentions, POST_INDEX)

    assert [m.restaurant for m in kept] == ["Franklin", "Tacos"]


def test_self_referential_mention_kept_when_longer_name_exists() -> None:
    mentions = [_mention("Veracruz", "Veracruz", "t1_a"), _mention("Veracruz All Natural", None, "t1_b")]

    kept = drop_self_referential_mentions(mentions, POST_INDEX)

    assert len(kept) == 2


def test_nameless_mentions_are_dropped() -> None:
    kept = drop_self_referential_mentions([_mention("", "Queso", "t1_a"), _mention("Kerbey Lane", None, "t1_b")], POST_INDEX)
    assert [m.restaurant for m in kept] == ["Kerbey Lane"]
