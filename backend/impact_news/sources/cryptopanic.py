"""
CryptoPanic adapter.
API docs: https://cryptopanic.com/developers/api/
"""
from typing import Any, Optional
import logging

import httpx

from impact_news.core.errors import MalformedPayloadError
from impact_news.core.taxonomy import CRYPTO_TAG_KEYWORDS
from impact_news.services.data_ingestion.rate_limiter import RetryPolicy, Sleep
from impact_news.sources.base import (
    CandidateArticle,
    FetchParams,
    SourceAdapter,
    is_valid_article,
    parse_timestamp,
)

logger = logging.getLogger(__name__)

FILTERS = ("rising", "hot", "bullish", "bearish", "important")


class CryptoPanicAdapter(SourceAdapter):
    """Adapter for CryptoPanic's aggregated crypto news posts."""

    source_id = "cryptopanic"
    name = "CryptoPanic"

    API_URL = "https://cryptopanic.com/api/v1/posts/"

    def __init__(
        self,
        api_key: Optional[str] = None,
        enabled: bool = True,
        post_filter: str = "rising",
        currencies: Optional[str] = None,
        regions: str = "en",
        kind: str = "news",
        policy: Optional[RetryPolicy] = None,
        sleep: Optional[Sleep] = None,
    ):
        super().__init__(policy=policy, sleep=sleep)
        if post_filter not in FILTERS:
            raise ValueError(f"Unknown CryptoPanic filter: {post_filter}")
        self.api_key = api_key
        self.enabled = enabled
        self.post_filter = post_filter
        self.currencies = currencies
        self.regions = regions
        self.kind = kind

    def is_configured(self) -> bool:
        return self.enabled and bool(self.api_key)

    def _query(self) -> dict[str, str]:
        query = {
            "auth_token": self.api_key,
            "public": "true",
            "filter": self.post_filter,
            "regions": self.regions,
            "kind": self.kind,
        }
        if self.currencies:
            query["currencies"] = self.currencies
        return query

    async def fetch_batch(self, client: httpx.AsyncClient, params: FetchParams) -> dict[str, Any]:
        response = await self._request(client, "GET", self.API_URL, params=self._query())
        try:
            data = response.json()
        except ValueError as e:
            raise MalformedPayloadError(self.source_id, "response is not JSON") from e

        if not isinstance(data, dict) or not isinstance(data.get("results"), list):
            raise MalformedPayloadError(self.source_id, "missing 'results' array")

        logger.info(f"CryptoPanic returned {len(data['results'])} posts")
        return {"results": data["results"]}

    @staticmethod
    def vote_seed(post: dict) -> int:
        """Positive-heavy posts seed 70, negative-heavy 30, otherwise 50."""
        votes = post.get("votes") or {}
        positive = votes.get("positive") or 0
        negative = votes.get("negative") or 0
        if negative > positive:
            return 30
        if positive > negative:
            return 70
        return 50

    @staticmethod
    def determine_category(post: dict) -> str:
        title = (post.get("title") or "").lower()

        if "nft" in title or "non-fungible" in title or "collectible" in title:
            return "web3"
        if "defi" in title or "decentralized finance" in title:
            return "web3"
        if "regulation" in title or "sec" in title or "law" in title:
            return "crypto"
        if "mining" in title or "miner" in title or "hash rate" in title:
            return "crypto"
        if "trading" in title or "price" in title or "market" in title:
            return "stocks"
        return "crypto"

    @staticmethod
    def extract_tags(post: dict) -> list[str]:
        tags: set[str] = set()
        for currency in post.get("currencies") or []:
            if isinstance(currency, dict) and currency.get("code"):
                tags.add(currency["code"].lower())

        title = (post.get("title") or "").lower()
        tags.update(keyword for keyword in CRYPTO_TAG_KEYWORDS if keyword in title)
        return sorted(tags)

    def _parse_post(self, post: dict) -> Optional[CandidateArticle]:
        title = (post.get("title") or "").strip()
        url = post.get("url")
        description = post.get("description")
        published_at = parse_timestamp(post.get("published_at"))

        if not is_valid_article(title, url, published_at, description, description):
            return None

        source = post.get("source") or {}
        metadata = post.get("metadata") or {}
        post_id = post.get("id")
        return CandidateArticle(
            title=title,
            url=url.strip(),
            source_name=source.get("domain") or source.get("title") or "CryptoPanic",
            source_id=self.source_id,
            published_at=published_at,
            content=description.strip(),
            description=description,
            image_url=metadata.get("image"),
            guid=str(post_id) if post_id is not None else None,
            language=post.get("language") or "en",
            category=self.determine_category(post),
            tags=self.extract_tags(post),
            score_seed=self.vote_seed(post),
        )

    def to_candidates(self, payload: dict[str, Any]) -> list[CandidateArticle]:
        posts = payload.get("results")
        if not isinstance(posts, list):
            raise MalformedPayloadError(self.source_id, "payload missing 'results' array")

        candidates = []
        for post in posts:
            if not isinstance(post, dict):
                continue
            candidate = self._parse_post(post)
            if candidate:
                candidates.append(candidate)
        return candidates
