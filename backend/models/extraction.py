"""Extraction models: the backend payload and the mentions built from it."""

from datetime import datetime
from typing import Any, List, Optional
from pydantic import BaseModel, Field, field_validator

from .enums import SourceKind

VITAL_FIELDS = ("source_id", "restaurant_temp_id", "general_praise")


def _coerce_str_list(v: Any) -> List[str]:
    if v is None:
        return []
    if isinstance(v, str):
        v = [v]
    if not isinstance(v, (list, tuple)):
        return []
    return [str(item).strip() for item in v if item is not None and str(item).strip()]


def _coerce_optional_bool(v: Any) -> Optional[bool]:
    if v is None or isinstance(v, bool):
        return v
    if isinstance(v, (int, float)):
        return bool(v)
    if isinstance(v, str):
        lowered = v.strip().lower()
        if lowered in ("true", "yes", "1"):
            return True
        if lowered in ("false", "no", "0"):
            return False
    return None


class RawMention(BaseModel):
    """One mention exactly as the extraction backend returned it.

    Every field is optional so a malformed payload can be inspected for
    missing vital fields instead of failing to parse outright.
    """
    temp_id: Optional[str] = None
    restaurant: Optional[str] = None
    restaurant_temp_id: Optional[str] = None
    restaurant_attributes: List[str] = Field(default_factory=list)
    food: Optional[str] = None
    food_temp_id: Optional[str] = None
    food_categories: List[str] = Field(default_factory=list)
    food_attributes: List[str] = Field(default_factory=list)
    is_menu_item: Optional[bool] = None
    general_praise: Optional[bool] = None
    source_id: Optional[str] = None

    model_config = {"extra": "ignore"}

    @field_validator("restaurant_attributes", "food_categories", "food_attributes", mode="before")
    @classmethod
    def coerce_list(cls, v):
        return _coerce_str_list(v)

    @field_validator("is_menu_item", "general_praise", mode="before")
    @classmethod
    def coerce_bool(cls, v):
        return _coerce_optional_bool(v)

    @field_validator(
        "temp_id", "restaurant", "restaurant_temp_id", "food", "food_temp_id", "source_id",
        mode="before",
    )
    @classmethod
    def coerce_text(cls, v):
        if v is None:
            return None
        text = str(v).strip()
        return text or None

    def missing_vital_fields(self) -> List[str]:
        return [name for name in VITAL_FIELDS if getattr(self, name) is None]


class RateLimitInfo(BaseModel):
    wait_seconds: float = 0.0
    worker_id: Optional[str] = None
    rpm_utilization: float = 0.0


class ExtractionOutput(BaseModel):
    mentions: List[RawMention] = Field(default_factory=list)
    rate_limit_info: Optional[RateLimitInfo] = None


class Mention(BaseModel):
    """A validated mention, enriched in place by the orchestrator."""
    temp_id: str
    restaurant: str = ""
    restaurant_temp_id: str
    restaurant_attributes: List[str] = Field(default_factory=list)
    food: Optional[str] = None
    food_temp_id: Optional[str] = None
    food_categories: List[str] = Field(default_factory=list)
    food_attributes: List[str] = Field(default_factory=list)
    is_menu_item: Optional[bool] = None
    general_praise: bool
    source_id: str

    # Enrichment, filled from the batch's lookup tables
    source_type: Optional[SourceKind] = None
    source_content: Optional[str] = None
    source_upvotes: int = 0
    source_url: Optional[str] = None
    source_created_at: Optional[datetime] = None
    subreddit: Optional[str] = None
    post_context: Optional[str] = None

    @classmethod
    def from_raw(cls, raw: RawMention, index: int = 0) -> "Mention":
        """Builds a mention from a raw payload whose vital fields are present."""
        data = raw.model_dump()
        data["temp_id"] = raw.temp_id or f"{raw.source_id}-m{index}"
        data["restaurant"] = raw.restaurant or ""
        return cls(**data)
