"""Enumeration types for the Buzz collector."""

from enum import Enum


class CollectionType(str, Enum):
    CHRONOLOGICAL = "chronological"
    KEYWORD = "keyword"
    ARCHIVE = "archive"
    ON_DEMAND = "on-demand"


class SourceKind(str, Enum):
    POST = "post"
    COMMENT = "comment"


# Persistence-side breakdown keys, one per collection type.
SOURCE_BREAKDOWN_KEYS = {
    CollectionType.ARCHIVE: "pushshift_archive",
    CollectionType.CHRONOLOGICAL: "reddit_api_chronological",
    CollectionType.KEYWORD: "reddit_api_keyword_search",
    CollectionType.ON_DEMAND: "reddit_api_on_demand",
}
