"""
Domain models for Impact News.
These are the core business entities, independent of database/API representation.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# =============================================================================
# Enums
# =============================================================================

class RunStatus(str, Enum):
    """Outcome of an aggregation run or of one source within it."""
    RUNNING = "running"
    SUCCESS = "success"
    PARTIAL_SUCCESS = "partial_success"
    ERROR = "error"
    SKIPPED = "skipped"


class SourceCondition(str, Enum):
    """Why a source did not deliver fresh articles."""
    AUTH_ERROR = "auth_error"
    RATE_LIMITED = "rate_limited"
    CIRCUIT_OPEN = "circuit_open"
    MALFORMED_PAYLOAD = "malformed_payload"
    UPSTREAM_ERROR = "upstream_error"
    NOT_CONFIGURED = "not_configured"
    CACHED = "cached"


class SortKey(str, Enum):
    """Sort orders supported by the article listing."""
    PUBLISHED_AT = "published_at"
    RELEVANCE_SCORE = "relevance_score"
    RANDOM = "random"


# =============================================================================
# Articles
# =============================================================================

class StoredArticle(BaseModel):
    """Canonical persisted article."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    content: str = ""
    description: Optional[str] = None
    url: str
    image_url: Optional[str] = None
    source_name: str
    source_id: str
    source_guid: Optional[str] = None
    language: str = "en"
    published_at: datetime
    category: str = "general"
    tags: list[str] = Field(default_factory=list)
    relevance_score: Optional[int] = Field(default=None, ge=10, le=90)
    provider_score: Optional[int] = Field(default=None, ge=0, le=100)
    created_at: Optional[datetime] = None


class ScoredArticle(StoredArticle):
    """A stored article with a read-time personalized score overlay."""
    personal_score: int = Field(ge=0, le=100)


class RelevanceBreakdown(BaseModel):
    """Every personalization signal, individually, plus the clamped total."""
    base: int = 10
    title_keywords: int = 0
    content_keywords: int = 0
    category: int = 0
    source: int = 0
    language: int = 0
    tag_matches: int = 0
    tag_richness: int = 0
    excluded_title: int = 0
    excluded_content: int = 0
    freshness: int = 0
    matched_keywords: list[str] = Field(default_factory=list)
    matched_excluded: list[str] = Field(default_factory=list)

    @property
    def raw_total(self) -> int:
        return (
            self.base
            + self.title_keywords
            + self.content_keywords
            + self.category
            + self.source
            + self.language
            + self.tag_matches
            + self.tag_richness
            + self.excluded_title
            + self.excluded_content
            + self.freshness
        )

    @property
    def total(self) -> int:
        return min(max(self.raw_total, 0), 100)

    @property
    def label(self) -> str:
        score = self.total
        if score >= 80:
            return "Very High"
        if score >= 60:
            return "High"
        if score >= 40:
            return "Medium"
        if score >= 20:
            return "Low"
        return "Very Low"


# =============================================================================
# Users
# =============================================================================

class UserPreferences(BaseModel):
    """A user's personalization preferences."""
    user_id: str
    keywords: list[str] = Field(default_factory=list)
    excluded_keywords: list[str] = Field(default_factory=list)
    categories: list[str] = Field(default_factory=list)
    sources: list[str] = Field(default_factory=list)
    languages: list[str] = Field(default_factory=list)
    updated_at: Optional[datetime] = None


class UserPreferencesUpdate(BaseModel):
    """Request body for updating preferences; omitted fields are left unchanged."""
    keywords: Optional[list[str]] = None
    excluded_keywords: Optional[list[str]] = None
    categories: Optional[list[str]] = None
    sources: Optional[list[str]] = None
    languages: Optional[list[str]] = None


# =============================================================================
# Aggregation
# =============================================================================

class IngestionOptions(BaseModel):
    """Options payload accepted by the orchestrator entry point."""
    model_config = ConfigDict(populate_by_name=True)

    force_update: bool = Field(default=False, alias="forceUpdate")
    single_category: bool = Field(default=True, alias="singleCategory")
    languages: list[str] = Field(default_factory=list)

    @field_validator("languages")
    @classmethod
    def normalize_languages(cls, v: list[str]) -> list[str]:
        return [lang.strip().lower() for lang in v if lang and lang.strip()]


class AggregationRunRecord(BaseModel):
    """One append-only entry in the aggregation log."""
    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    event_type: str
    status: RunStatus
    details: dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None


class SourceRunResult(BaseModel):
    """Per-source outcome inside one aggregation run."""
    source_id: str
    status: RunStatus
    condition: Optional[SourceCondition] = None
    valid: int = 0
    new: int = 0
    inserted: int = 0
    from_cache: bool = False
    retry_after: Optional[datetime] = None
    error: Optional[str] = None
    insert_errors: list[str] = Field(default_factory=list)


class AggregationResult(BaseModel):
    """Structured result returned by the orchestrator; never an exception."""
    status: RunStatus
    started_at: datetime
    finished_at: Optional[datetime] = None
    total_inserted: int = 0
    sources: list[SourceRunResult] = Field(default_factory=list)
    error: Optional[str] = None


class ScheduleUpdate(BaseModel):
    """Request body for changing the aggregation schedule."""
    enabled: Optional[bool] = None
    frequency: Optional[str] = None


# =============================================================================
# Read API
# =============================================================================

class ArticleFilters(BaseModel):
    """Filters for listing stored articles."""
    category: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    search: Optional[str] = None
    from_date: Optional[datetime] = None
    to_date: Optional[datetime] = None
    sort_by: SortKey = SortKey.PUBLISHED_AT
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=9, ge=1, le=100)
    exclude_categories: list[str] = Field(default_factory=list)


class ArticlePage(BaseModel):
    """A page of articles with the unpaginated match count."""
    articles: list[StoredArticle] = Field(default_factory=list)
    total_count: int = 0


class RankedArticlePage(BaseModel):
    articles: list[ScoredArticle] = Field(default_factory=list)
    total_count: int = 0
