"""Gemini-powered extraction backend.

Sends one chunk (post context plus complete comment threads) per request and
quarantines the model's JSON into ``RawMention`` records. Source text is
never requested back; the orchestrator re-attaches it from its own tables.
"""

import json
import asyncio
import logging
from typing import Any, Dict, List, Optional

import google.generativeai as genai
from google.api_core.exceptions import ResourceExhausted
from pydantic import ValidationError

from models import Chunk, ExtractionOutput, RateLimitInfo, RawMention
from ..config import GeminiSettings
from ..exceptions import ExtractionError, ExtractionRateLimitError
from .rate_limiter import ReservationRateLimiter

logger = logging.getLogger(__name__)

_PROMPT = """You extract restaurant and dish mentions from food-forum discussions.
The input is JSON: a post and a list of comments, each with an "id".
Return ONLY a JSON object {"mentions": [...]}. Each mention must contain:
- "temp_id": unique id within this response
- "restaurant": restaurant name exactly as it should be displayed
- "restaurant_temp_id": the same value for every mention of the same restaurant
- "restaurant_attributes": list of short descriptors (e.g. "patio", "cash only")
- "food": dish name, or null when the praise is not about a specific dish
- "food_categories": list of broader categories for the dish
- "food_attributes": list of short descriptors for the dish
- "is_menu_item": true when "food" is a specific item on the menu
- "general_praise": true when the restaurant is praised without a specific dish
- "source_id": the "id" of the post or comment the mention comes from
Only read the post text itself when "extract_from_post" is true.
Do not copy source text into the response. If nothing is mentioned return {"mentions": []}.
"""


def build_chunk_payload(chunk: Chunk) -> Dict[str, Any]:
    post = chunk.post
    payload: Dict[str, Any] = {
        "id": post.id,
        "extract_from_post": post.extract_from_post,
        "title": post.title,
        "content": post.body,
        "subreddit": post.subreddit,
    }
    if post.extract_from_post:
        payload["author"] = post.author
        payload["score"] = post.score
        payload["created_at"] = post.created_at.isoformat() if post.created_at else None
    payload["comments"] = [
        {"id": c.id, "content": c.body, "author": c.author, "score": c.score, "parent_id": c.parent_id}
        for c in post.comments
    ]
    return payload


def _parse_json_blob(blob: str) -> List[Any]:
    try:
        data = json.loads(blob)
    except json.JSONDecodeError:
        start = blob.find("{")
        end = blob.rfind("}") + 1
        if start == -1 or end == 0:
            return []
        try:
            data = json.loads(blob[start:end])
        except json.JSONDecodeError:
            return []
    if isinstance(data, dict):
        data = data.get("mentions", [])
    return data if isinstance(data, list) else []


def parse_mentions(blob: str, chunk_id: str = "") -> List[RawMention]:
    mentions: List[RawMention] = []
    for item in _parse_json_blob(blob):
        if not isinstance(item, dict):
            continue
        try:
            mentions.append(RawMention.model_validate(item))
        except ValidationError as e:
            logger.warning(f"Quarantined malformed mention in {chunk_id}: {e.error_count()} errors")
    return mentions


def _response_text(response) -> str:
    text = getattr(response, "text", None)
    if text:
        return text
    parts = []
    for candidate in getattr(response, "candidates", []) or []:
        for part in getattr(getattr(candidate, "content", None), "parts", []) or []:
            if getattr(part, "text", None):
                parts.append(part.text)
    return "".join(parts)


class GeminiExtractionBackend:
    def __init__(self, settings: Optional[GeminiSettings] = None, limiter: Optional[ReservationRateLimiter] = None, model=None):
        self.settings = settings or GeminiSettings.from_env()
        self.limiter = limiter or ReservationRateLimiter(
            safe_rpm=self.settings.safe_rpm,
            min_spacing=self.settings.min_spacing_seconds,
            worker_slot=self.settings.worker_slot_seconds,
        )
        self.model = model or self._configure_model()

    def _configure_model(self):
        if not self.settings.api_key:
            raise ExtractionError("GEMINI_API_KEY is not set")
        genai.configure(api_key=self.settings.api_key)
        return genai.GenerativeModel(
            self.settings.model,
            system_instruction=_PROMPT,
            generation_config={"response_mime_type": "application/json", "temperature": 0.1},
        )

    def throttle_delay(self) -> float:
        return self.limiter.throttle_delay()

    async def extract(self, chunk: Chunk, worker_id: str) -> ExtractionOutput:
        content = json.dumps(build_chunk_payload(chunk), ensure_ascii=False)
        waited = 0.0

        for attempt in range(self.settings.max_retries + 1):
            wait = self.limiter.reserve(worker_id)
            if wait > 0:
                waited += wait
                await asyncio.sleep(wait)
            try:
                response = await self.model.generate_content_async(content)
            except ResourceExhausted as e:
                backoff = self.settings.default_backoff_seconds * (attempt + 1)
                self.limiter.register_rate_limit(backoff)
                if attempt == self.settings.max_retries:
                    raise ExtractionRateLimitError(f"Rate limited on {chunk.chunk_id}: {e}", retry_after=backoff) from e
                continue
            except Exception as e:
                raise ExtractionError(f"Gemini call failed for {chunk.chunk_id}: {e}") from e

            mentions = parse_mentions(_response_text(response), chunk.chunk_id)
            return ExtractionOutput(
                mentions=mentions,
                rate_limit_info=RateLimitInfo(
                    wait_seconds=waited,
                    worker_id=worker_id,
                    rpm_utilization=self.limiter.utilization(),
                ),
            )

        raise ExtractionRateLimitError(f"Rate limited on {chunk.chunk_id}")
