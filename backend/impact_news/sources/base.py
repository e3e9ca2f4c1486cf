"""
Base interface for article sources.
All providers (NewsAPI, CoinDesk, CryptoPanic, RSS crawler, FireCrawl) implement this interface.
"""
import asyncio
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from impact_news.services.data_ingestion.rate_limiter import RetryPolicy, Sleep, request_with_retry

MIN_TITLE_LENGTH = 10
MIN_CONTENT_LENGTH = 50
TRUNCATION_MARKER = re.compile(r"\s*\[\+\d+ chars\]\s*$")


@dataclass
class CandidateArticle:
    """
    Provider-shaped article after parsing, before classification and storage.

    `category`, `tags` and `score_seed` are only set when the provider
    supplies its own taxonomy or popularity signal.
    """
    title: str
    url: str
    source_name: str
    source_id: str
    published_at: datetime
    content: str = ""
    description: Optional[str] = None
    image_url: Optional[str] = None
    guid: Optional[str] = None
    language: str = "en"
    category: Optional[str] = None
    tags: list[str] = field(default_factory=list)
    score_seed: Optional[int] = None

    @property
    def dedup_key(self) -> tuple[str, ...]:
        if self.guid:
            return ("guid", self.source_id, self.guid)
        return ("url", self.url)

    @property
    def storage_guid(self) -> str:
        """Value persisted as source_guid: the GUID, or the URL when absent."""
        return self.guid or self.url

    @property
    def text(self) -> str:
        """Title and description, the text used for classification."""
        return f"{self.title} {self.description or ''}"


@dataclass
class FetchParams:
    """Per-run options passed to every adapter."""
    languages: list[str] = field(default_factory=lambda: ["en"])
    single_category: bool = True


def is_valid_article(
    title: Optional[str],
    url: Optional[str],
    published_at: Any,
    content: Optional[str] = None,
    description: Optional[str] = None,
) -> bool:
    """
    Minimum bar for turning a raw item into a candidate.

    Requires a title of at least 10 characters after trimming, a URL, a
    publish timestamp and some content or description.
    """
    if not title or len(title.strip()) < MIN_TITLE_LENGTH:
        return False
    if not url or not url.strip():
        return False
    if not published_at:
        return False
    has_content = bool(content and content.strip())
    has_description = bool(description and description.strip())
    return has_content or has_description


def clean_content(content: Optional[str], description: Optional[str]) -> str:
    """Strip provider truncation markers; fall back to the description for stubs."""
    cleaned = TRUNCATION_MARKER.sub("", content or "").strip()
    if len(cleaned) < MIN_CONTENT_LENGTH and description:
        return description.strip()
    return cleaned


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse ISO-8601 strings or unix seconds into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


class SourceAdapter(ABC):
    """Abstract base class for provider adapters."""

    #: Stable identifier stored with every article and used to key breaker/cache state
    source_id: str = ""
    name: str = ""

    def __init__(self, policy: Optional[RetryPolicy] = None, sleep: Optional[Sleep] = None):
        self.policy = policy or RetryPolicy()
        self._sleep = sleep or asyncio.sleep

    @abstractmethod
    def is_configured(self) -> bool:
        """Whether credentials and switches allow this source to run."""
        pass

    @abstractmethod
    async def fetch_batch(self, client: httpx.AsyncClient, params: FetchParams) -> dict[str, Any]:
        """
        Fetch one provider payload.

        Returns a JSON-serializable dict so it can be cached verbatim.

        Raises:
            AuthenticationError, RateLimitedError, UpstreamError: transport failures
            MalformedPayloadError: the response is missing the expected structure
        """
        pass

    @abstractmethod
    def to_candidates(self, payload: dict[str, Any]) -> list[CandidateArticle]:
        """Convert a payload into validated candidates, dropping invalid items."""
        pass

    async def _request(self, client: httpx.AsyncClient, method: str, url: str, **kwargs) -> httpx.Response:
        return await request_with_retry(
            client, self.source_id, method, url, policy=self.policy, sleep=self._sleep, **kwargs
        )

    async def _pause(self, seconds: float) -> None:
        if seconds > 0:
            await self._sleep(seconds)
