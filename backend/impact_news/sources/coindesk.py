"""
CoinDesk data API adapter for the general crypto news feed.
API docs: https://developers.coindesk.com/documentation/data-api/news
"""
from typing import Any, Optional
import logging

import httpx

from impact_news.core.errors import MalformedPayloadError
from impact_news.services.data_ingestion.rate_limiter import RetryPolicy, Sleep
from impact_news.sources.base import (
    CandidateArticle,
    FetchParams,
    SourceAdapter,
    clean_content,
    is_valid_article,
    parse_timestamp,
)

logger = logging.getLogger(__name__)

# Provider category code -> our category
CATEGORY_MAP = {
    "BTC": "crypto",
    "ETH": "crypto",
    "EXCHANGE": "crypto",
    "MARKET": "stocks",
    "BUSINESS": "business",
    "REGULATION": "crypto",
    "TRADING": "stocks",
    "TECHNOLOGY": "technology",
}

TITLE_TAGS = ["bitcoin", "ethereum", "crypto", "blockchain", "defi", "nft", "web3", "metaverse"]


class CoinDeskAdapter(SourceAdapter):
    """Adapter for the CoinDesk article list endpoint."""

    source_id = "coindesk"
    name = "CoinDesk"

    API_URL = "https://data-api.coindesk.com/news/v1/article/list"

    def __init__(
        self,
        api_key: Optional[str] = None,
        enabled: bool = True,
        limit: int = 10,
        policy: Optional[RetryPolicy] = None,
        sleep: Optional[Sleep] = None,
    ):
        super().__init__(policy=policy, sleep=sleep)
        self.api_key = api_key
        self.enabled = enabled
        self.limit = limit

    def is_configured(self) -> bool:
        return self.enabled and bool(self.api_key)

    async def fetch_batch(self, client: httpx.AsyncClient, params: FetchParams) -> dict[str, Any]:
        response = await self._request(
            client,
            "GET",
            self.API_URL,
            params={"lang": "EN", "limit": self.limit},
            headers={"Authorization": f"Api-Key {self.api_key}"},
        )
        try:
            data = response.json()
        except ValueError as e:
            raise MalformedPayloadError(self.source_id, "response is not JSON") from e

        if not isinstance(data, dict) or not isinstance(data.get("Data"), list):
            raise MalformedPayloadError(self.source_id, "missing 'Data' array")

        logger.info(f"CoinDesk returned {len(data['Data'])} articles")
        return {"Data": data["Data"]}

    @staticmethod
    def map_category(article: dict) -> str:
        categories = article.get("CATEGORY_DATA") or []
        if categories and isinstance(categories[0], dict):
            return CATEGORY_MAP.get(categories[0].get("CATEGORY"), "crypto")
        return "crypto"

    @staticmethod
    def extract_tags(article: dict) -> list[str]:
        tags: set[str] = set()

        for category in article.get("CATEGORY_DATA") or []:
            if isinstance(category, dict) and category.get("NAME"):
                tags.add(category["NAME"].lower())

        for keyword in (article.get("KEYWORDS") or "").split("|"):
            cleaned = keyword.strip().lower()
            if cleaned:
                tags.add(cleaned)

        title = (article.get("TITLE") or "").lower()
        tags.update(tag for tag in TITLE_TAGS if tag in title)

        return sorted(tags)

    @staticmethod
    def sentiment_seed(article: dict) -> int:
        """Provider popularity signal on a 0-100 scale."""
        score = 50
        sentiment = article.get("SENTIMENT")
        if sentiment == "POSITIVE":
            score += 15
        elif sentiment == "NEGATIVE":
            score -= 10

        upvotes = article.get("UPVOTES") or 0
        downvotes = article.get("DOWNVOTES") or 0
        if upvotes > 0:
            score += min(upvotes * 2, 20)
        if downvotes > 0:
            score -= min(downvotes * 2, 20)

        return max(0, min(100, score))

    def _parse_article(self, article: dict) -> Optional[CandidateArticle]:
        title = (article.get("TITLE") or "").strip()
        url = article.get("URL")
        body = article.get("BODY")
        subtitle = article.get("SUBTITLE")
        published_at = parse_timestamp(article.get("PUBLISHED_ON"))

        if not is_valid_article(title, url, published_at, body, subtitle):
            return None

        source_data = article.get("SOURCE_DATA") or {}
        guid = article.get("GUID")
        return CandidateArticle(
            title=title,
            url=url.strip(),
            source_name=source_data.get("NAME") or "CoinDesk",
            source_id=self.source_id,
            published_at=published_at,
            content=clean_content(body or subtitle, subtitle),
            description=subtitle,
            image_url=article.get("IMAGE_URL"),
            guid=str(guid) if guid else None,
            language=(article.get("LANG") or "en").lower(),
            category=self.map_category(article),
            tags=self.extract_tags(article),
            score_seed=self.sentiment_seed(article),
        )

    def to_candidates(self, payload: dict[str, Any]) -> list[CandidateArticle]:
        articles = payload.get("Data")
        if not isinstance(articles, list):
            raise MalformedPayloadError(self.source_id, "payload missing 'Data' array")

        candidates = []
        for article in articles:
            if not isinstance(article, dict):
                continue
            candidate = self._parse_article(article)
            if candidate:
                candidates.append(candidate)
        return candidates
