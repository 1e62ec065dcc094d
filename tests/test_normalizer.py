from __future__ import annotations

from datetime import datetime, timezone

from etl.normalizer import filter_and_transform, parse_timestamp


def _comment(name, body, parent_id="t3_abc", replies=None, score=3, created=1717200000):
    return {
        "kind": "t1",
        "data": {
            "name": name,
            "body": body,
            "author": "someone",
            "score": score,
            "created_utc": created,
            "parent_id": parent_id,
            "permalink": f"/r/austinfood/comments/abc/_/{name[3:]}/",
            "replies": {"kind": "Listing", "data": {"children": replies or []}} if replies else "",
        },
    }


def _response(post_data, comments):
    return [
        {"kind": "Listing", "data": {"children": [{"kind": "t3", "data": post_data}]}},
        {"kind": "Listing", "data": {"children": comments}},
    ]


POST_DATA = {
    "id": "abc",
    "name": "t3_abc",
    "title": "Where to get brisket?",
    "selftext": "",
    "subreddit": "austinfood",
    "author": "op",
    "score": -4,
    "created_utc": 1717200000,
}


def test_post_fields_are_normalized() -> None:
    content = filter_and_transform(_response(POST_DATA, []), "https://reddit.com/r/austinfood/comments/abc/")

    post = content.post
    assert post.id == "t3_abc"
    assert post.body == "Where to get brisket?"
    assert post.score == 0
    assert post.url == "https://reddit.com/r/austinfood/comments/abc/"
    assert post.created_at == datetime(2024, 6, 1, tzinfo=timezone.utc)


def test_post_id_falls_back_to_prefixed_id() -> None:
    data = dict(POST_DATA, name=None)
    assert filter_and_transform(_response(data, [])).post.id == "t3_abc"


def test_post_without_title_or_body_is_none() -> None:
    data = dict(POST_DATA, title="", selftext="")
    content = filter_and_transform(_response(data, [_comment("t1_a", "hi")]))
    assert content.post is None
    assert content.comments == []


def test_bad_shapes_yield_no_post() -> None:
    assert filter_and_transform({"error": 404}).post is None
    assert filter_and_transform([]).post is None


def test_deleted_comments_dropped_but_replies_kept() -> None:
    tree = [
        _comment(
            "t1_gone",
            "[deleted]",
            replies=[_comment("t1_child", "Franklin is worth the wait", parent_id="t1_gone")],
        ),
        _comment("t1_removed", "[removed]"),
        _comment("t1_empty", "   "),
        _comment("t1_ok", "Try La Barbecue"),
    ]
    content = filter_and_transform(_response(POST_DATA, tree))

    assert [c.id for c in content.comments] == ["t1_child", "t1_ok"]
    assert content.comments[0].parent_id == "t1_gone"
    assert content.post.comments == content.comments


def test_depth_first_order_and_parent_links() -> None:
    tree = [
        _comment("t1_a", "a", replies=[_comment("t1_a1", "a1", parent_id="t1_a")]),
        _comment("t1_b", "b", parent_id="garbage"),
    ]
    content = filter_and_transform(_response(POST_DATA, tree))

    assert [c.id for c in content.comments] == ["t1_a", "t1_a1", "t1_b"]
    assert content.comments[2].parent_id is None
    assert content.comments[0].url == "https://reddit.com/r/austinfood/comments/abc/_/a/"


def test_non_comment_children_are_ignored() -> None:
    tree = [{"kind": "more", "data": {"children": ["x", "y"]}}, _comment("t1_a", "a")]
    content = filter_and_transform(_response(POST_DATA, tree))
    assert [c.id for c in content.comments] == ["t1_a"]


def test_parse_timestamp_handles_seconds_millis_and_junk() -> None:
    expected = datetime(2024, 6, 1, tzinfo=timezone.utc)
    assert parse_timestamp(1717200000) == expected
    assert parse_timestamp(1717200000000) == expected
    assert parse_timestamp("1717200000") == expected
    assert parse_timestamp("2024-06-01T00:00:00Z") == expected

    before = datetime.now(timezone.utc)
    for junk in (None, "not a date", {"x": 1}):
        assert parse_timestamp(junk) >= before
