"""
NewsAPI adapter for general technology and business headlines.
API docs: https://newsapi.org/docs
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Optional
import logging

import httpx

from impact_news.core.errors import AuthenticationError, MalformedPayloadError, UpstreamError
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

PRIMARY_CATEGORIES = ["technology"]
EXTRA_CATEGORIES = ["business"]
PRIMARY_QUERIES = ["artificial intelligence"]
EXTRA_QUERIES = ["machine learning"]

MAX_CALLS_SINGLE = 3
MAX_CALLS_MULTI = 6
MAX_FETCH_ERRORS = 2


class NewsAPIAdapter(SourceAdapter):
    """
    Adapter for NewsAPI top headlines and keyword search.

    One fetch issues a bounded number of calls: top headlines per
    (category, language), then, outside single-category mode, an
    /everything search per query over the last two days.
    """

    source_id = "newsapi"
    name = "NewsAPI"

    BASE_URL = "https://newsapi.org/v2"
    COUNTRY = "us"
    PAGE_SIZE = 20

    def __init__(
        self,
        api_key: Optional[str] = None,
        enabled: bool = True,
        inter_call_delay: float = 5.0,
        policy: Optional[RetryPolicy] = None,
        sleep: Optional[Sleep] = None,
    ):
        super().__init__(policy=policy, sleep=sleep)
        self.api_key = api_key
        self.enabled = enabled
        self.inter_call_delay = inter_call_delay

    def is_configured(self) -> bool:
        return self.enabled and bool(self.api_key)

    def _plan_calls(self, params: FetchParams) -> list[tuple[str, dict[str, Any], str]]:
        """Build the (endpoint, query params, language) list for one run, capped."""
        languages = params.languages or ["en"]
        categories = PRIMARY_CATEGORIES + ([] if params.single_category else EXTRA_CATEGORIES)
        queries = [] if params.single_category else PRIMARY_QUERIES + EXTRA_QUERIES
        max_calls = MAX_CALLS_SINGLE if params.single_category else MAX_CALLS_MULTI

        since = (datetime.now(timezone.utc) - timedelta(days=2)).strftime("%Y-%m-%d")
        calls: list[tuple[str, dict[str, Any], str]] = []
        # Language outermost: the cap drops whole trailing languages first
        for language in languages:
            for category in categories:
                calls.append((
                    "top-headlines",
                    {
                        "country": self.COUNTRY,
                        "pageSize": self.PAGE_SIZE,
                        "language": language,
                        "category": category,
                    },
                    language,
                ))
            for query in queries:
                calls.append((
                    "everything",
                    {
                        "q": query,
                        "sortBy": "publishedAt",
                        "pageSize": self.PAGE_SIZE,
                        "language": language,
                        "from": since,
                    },
                    language,
                ))

        return calls[:max_calls]

    async def _call(self, client: httpx.AsyncClient, endpoint: str, query: dict[str, Any]) -> list[dict]:
        response = await self._request(
            client,
            "GET",
            f"{self.BASE_URL}/{endpoint}",
            params={**query, "apiKey": self.api_key},
        )
        try:
            data = response.json()
        except ValueError as e:
            raise MalformedPayloadError(self.source_id, f"{endpoint}: response is not JSON") from e

        if not isinstance(data, dict) or data.get("status") != "ok":
            message = data.get("message") if isinstance(data, dict) else None
            raise MalformedPayloadError(self.source_id, f"{endpoint}: {message or 'unexpected status'}")

        articles = data.get("articles")
        if not isinstance(articles, list):
            raise MalformedPayloadError(self.source_id, f"{endpoint}: missing 'articles' array")
        return articles

    async def fetch_batch(self, client: httpx.AsyncClient, params: FetchParams) -> dict[str, Any]:
        calls = self._plan_calls(params)
        collected: list[dict] = []
        errors: list[str] = []
        last_error: Optional[UpstreamError] = None
        succeeded = 0

        for index, (endpoint, query, language) in enumerate(calls):
            if index > 0:
                await self._pause(self.inter_call_delay)

            try:
                articles = await self._call(client, endpoint, query)
            except AuthenticationError:
                raise
            except UpstreamError as e:
                logger.warning(f"NewsAPI {endpoint} call failed: {e}")
                errors.append(str(e))
                last_error = e
                if len(errors) > MAX_FETCH_ERRORS:
                    logger.warning("Too many NewsAPI errors, stopping this run")
                    break
                continue

            succeeded += 1
            for article in articles:
                if isinstance(article, dict):
                    collected.append({**article, "_language": language})
            logger.debug(f"NewsAPI {endpoint} returned {len(articles)} articles ({language})")

        if succeeded == 0 and last_error is not None:
            raise last_error

        return {"articles": collected, "calls": len(calls), "errors": errors}

    def _parse_article(self, article: dict) -> Optional[CandidateArticle]:
        """Parse a NewsAPI article into a candidate."""
        title = (article.get("title") or "").strip()
        if title == "[Removed]":
            return None

        url = article.get("url")
        content = article.get("content")
        description = article.get("description")
        if description == "[Removed]":
            description = None
        published_at = parse_timestamp(article.get("publishedAt"))

        if not is_valid_article(title, url, published_at, content, description):
            return None

        source = article.get("source") or {}
        return CandidateArticle(
            title=title,
            url=url.strip(),
            source_name=source.get("name") or "Unknown",
            source_id=self.source_id,
            published_at=published_at,
            content=clean_content(content, description),
            description=description,
            image_url=article.get("urlToImage"),
            guid=None,
            language=article.get("_language") or "en",
        )

    def to_candidates(self, payload: dict[str, Any]) -> list[CandidateArticle]:
        articles = payload.get("articles")
        if not isinstance(articles, list):
            raise MalformedPayloadError(self.source_id, "payload missing 'articles' array")

        candidates = []
        for article in articles:
            if not isinstance(article, dict):
                continue
            candidate = self._parse_article(article)
            if candidate:
                candidates.append(candidate)

        logger.info(f"NewsAPI: {len(candidates)}/{len(articles)} articles passed validation")
        return candidates
