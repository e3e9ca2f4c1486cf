"""
FireCrawl structured-extraction adapter.

FireCrawl crawls the target pages and returns stories shaped by the JSON
schema we send. Anything that does not validate against that schema is
dropped item by item.
"""
import re
from typing import Any, Optional
import logging

import httpx
from pydantic import BaseModel, Field, ValidationError

from impact_news.core.errors import MalformedPayloadError
from impact_news.core.taxonomy import MARKET_TAG_KEYWORDS, SYMBOL_STOPWORDS
from impact_news.services.data_ingestion.rate_limiter import RetryPolicy, Sleep
from impact_news.sources.base import (
    CandidateArticle,
    FetchParams,
    SourceAdapter,
    is_valid_article,
    parse_timestamp,
)

logger = logging.getLogger(__name__)

SYMBOL_PATTERN = re.compile(r"\b[A-Z]{2,5}\b")
DEFAULT_SCORE_SEED = 60


class ExtractedStory(BaseModel):
    """One story as the extraction schema describes it."""
    title: str
    content: str
    published_date: str
    source: Optional[str] = None
    url: Optional[str] = None


class ExtractionResult(BaseModel):
    news_stories: list[ExtractedStory] = Field(default_factory=list)


class FireCrawlAdapter(SourceAdapter):
    """Adapter for the FireCrawl /extract endpoint."""

    source_id = "firecrawl"
    name = "FireCrawl"

    API_URL = "https://api.firecrawl.dev/v1/extract"

    def __init__(
        self,
        api_key: Optional[str] = None,
        enabled: bool = True,
        urls: Optional[list[str]] = None,
        prompt: str = "Extract the latest news stories.",
        policy: Optional[RetryPolicy] = None,
        sleep: Optional[Sleep] = None,
    ):
        super().__init__(policy=policy, sleep=sleep)
        self.api_key = api_key
        self.enabled = enabled
        self.urls = urls or []
        self.prompt = prompt

    def is_configured(self) -> bool:
        return self.enabled and bool(self.api_key) and bool(self.urls)

    async def fetch_batch(self, client: httpx.AsyncClient, params: FetchParams) -> dict[str, Any]:
        body = {
            "apiKey": self.api_key,
            "urls": self.urls,
            "prompt": self.prompt,
            "schema": ExtractionResult.model_json_schema(),
        }
        response = await self._request(
            client,
            "POST",
            self.API_URL,
            json=body,
            headers={"Authorization": f"Bearer {self.api_key}"},
        )
        try:
            data = response.json()
        except ValueError as e:
            raise MalformedPayloadError(self.source_id, "response is not JSON") from e

        # v1 wraps the extraction in {"success": ..., "data": {...}}
        extracted = data.get("data", data) if isinstance(data, dict) else None
        if not isinstance(extracted, dict) or not isinstance(extracted.get("news_stories"), list):
            raise MalformedPayloadError(self.source_id, "missing 'news_stories' array")

        return {"news_stories": extracted["news_stories"]}

    @staticmethod
    def determine_category(story: ExtractedStory) -> str:
        title = story.title.lower()
        content = story.content.lower()
        if "bitcoin" in content or "bitcoin" in title:
            return "crypto"
        if "ethereum" in content or "ethereum" in title:
            return "web3"
        if "market" in content or "market" in title:
            return "stocks"
        return "crypto"

    @staticmethod
    def extract_tags(story: ExtractedStory) -> list[str]:
        text = f"{story.title} {story.content}".lower()
        tags = {keyword for keyword in MARKET_TAG_KEYWORDS if keyword in text}
        for symbol in SYMBOL_PATTERN.findall(story.title):
            if symbol not in SYMBOL_STOPWORDS:
                tags.add(symbol.lower())
        return sorted(tags)

    def _parse_story(self, raw: Any) -> Optional[CandidateArticle]:
        try:
            story = ExtractedStory.model_validate(raw)
        except ValidationError as e:
            logger.debug(f"Dropping extracted story that fails the schema: {e.error_count()} errors")
            return None

        title = story.title.strip()
        published_at = parse_timestamp(story.published_date)
        if not is_valid_article(title, story.url, published_at, story.content):
            return None

        return CandidateArticle(
            title=title,
            url=story.url.strip(),
            source_name=story.source or "FireCrawl",
            source_id=self.source_id,
            published_at=published_at,
            content=story.content.strip(),
            language="en",
            category=self.determine_category(story),
            tags=self.extract_tags(story),
            score_seed=DEFAULT_SCORE_SEED,
        )

    def to_candidates(self, payload: dict[str, Any]) -> list[CandidateArticle]:
        stories = payload.get("news_stories")
        if not isinstance(stories, list):
            raise MalformedPayloadError(self.source_id, "payload missing 'news_stories' array")

        candidates = [c for c in (self._parse_story(raw) for raw in stories) if c]
        dropped = len(stories) - len(candidates)
        if dropped:
            logger.info(f"FireCrawl: dropped {dropped}/{len(stories)} extracted stories")
        return candidates
