"""
FastAPI routes for the Impact News API.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Annotated, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse

from impact_news.config import get_settings
from impact_news.core.taxonomy import CATEGORIES, DEFAULT_CATEGORY
from impact_news.models.domain import (
    ArticleFilters,
    IngestionOptions,
    RunStatus,
    ScheduleUpdate,
    SortKey,
    StoredArticle,
    UserPreferences,
    UserPreferencesUpdate,
)
from impact_news.services.articles import ArticleService
from impact_news.services.data_ingestion.aggregator import AggregationOrchestrator
from impact_news.services.data_ingestion.scheduler import ScheduledAggregation
from impact_news.services.storage import ArticleStore

logger = structlog.get_logger(__name__)
router = APIRouter()

PAGE_SIZE = get_settings().default_page_size
MAX_PAGE_SIZE = get_settings().max_page_size


@dataclass
class Services:
    """Everything the routes need, wired once at startup."""
    store: ArticleStore
    orchestrator: AggregationOrchestrator
    schedule: ScheduledAggregation
    articles: ArticleService


_services: Optional[Services] = None


def set_services(services: Optional[Services]) -> None:
    global _services
    _services = services


def get_services() -> Services:
    if _services is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Service not initialized")
    return _services


ServicesDep = Annotated[Services, Depends(get_services)]


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _split(values: list[str]) -> list[str]:
    """Accept both repeated query params and comma-separated values."""
    items = []
    for value in values:
        items.extend(v.strip() for v in value.split(",") if v.strip())
    return items


# ============================================================================
# Aggregation Routes
# ============================================================================


@router.post("/aggregation/run")
async def run_aggregation(services: ServicesDep, options: Optional[IngestionOptions] = None):
    """
    Trigger one aggregation run and wait for it.

    Recoverable failures (some or all sources failing) still return 200
    with an `error` field; 500 means the run itself could not complete.
    """
    options = options or IngestionOptions()
    logger.info("Manual aggregation triggered", force_update=options.force_update)

    result = await services.orchestrator.run_aggregation(options)
    services.articles.invalidate_cache()

    body = {
        "status": result.status.value,
        "count": result.total_inserted,
        "sources": [s.model_dump(mode="json") for s in result.sources],
        "timestamp": _timestamp(),
    }
    if result.error:
        body["error"] = result.error

    if result.status == RunStatus.ERROR and not result.sources:
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=body)
    return body


@router.get("/aggregation/status")
async def aggregation_status(services: ServicesDep):
    """Last run, breaker and per-source state, plus the schedule."""
    snapshot = await services.orchestrator.status_snapshot()
    snapshot["schedule"] = await services.schedule.get_schedule()
    snapshot["timestamp"] = _timestamp()
    return snapshot


@router.get("/aggregation/logs")
async def aggregation_logs(
    services: ServicesDep,
    limit: int = Query(default=50, ge=1, le=500),
    event_type: Optional[str] = None,
):
    records = await services.store.recent_logs(limit=limit, event_type=event_type)
    return {
        "logs": [r.model_dump(mode="json") for r in records],
        "timestamp": _timestamp(),
    }


@router.put("/aggregation/schedule")
async def update_schedule(update: ScheduleUpdate, services: ServicesDep):
    try:
        schedule = await services.schedule.update_schedule(update)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return {**schedule, "timestamp": _timestamp()}


# ============================================================================
# Article Routes
# ============================================================================


@router.get("/articles")
async def list_articles(
    services: ServicesDep,
    category: Optional[str] = None,
    tags: list[str] = Query(default=[]),
    search: Optional[str] = None,
    from_date: Optional[datetime] = None,
    to_date: Optional[datetime] = None,
    sort_by: SortKey = SortKey.PUBLISHED_AT,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    exclude_categories: list[str] = Query(default=[]),
):
    """
    List stored articles.

    Filters combine with AND; `tags` requires every listed tag.
    """
    filters = ArticleFilters(
        category=category,
        tags=_split(tags),
        search=search,
        from_date=from_date,
        to_date=to_date,
        sort_by=sort_by,
        page=page,
        limit=limit,
        exclude_categories=_split(exclude_categories),
    )
    result = await services.articles.get_articles(filters)
    return {
        "articles": [a.model_dump(mode="json") for a in result.articles],
        "total_count": result.total_count,
        "timestamp": _timestamp(),
    }


@router.get("/articles/{article_id}", response_model=StoredArticle)
async def get_article(article_id: str, services: ServicesDep):
    article = await services.articles.get_article(article_id)
    if article is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Article not found")
    return article


@router.get("/articles/{article_id}/related")
async def get_related_articles(
    article_id: str,
    services: ServicesDep,
    limit: int = Query(default=3, ge=1, le=20),
):
    related = await services.articles.get_related_articles(article_id, limit=limit)
    if related is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Article not found")
    return {"articles": [a.model_dump(mode="json") for a in related], "timestamp": _timestamp()}


@router.get("/categories")
async def list_categories():
    return {"categories": list(CATEGORIES), "default": DEFAULT_CATEGORY}


# ============================================================================
# User Routes
# ============================================================================


@router.get("/users/{user_id}/feed")
async def get_user_feed(
    user_id: str,
    services: ServicesDep,
    category: Optional[str] = None,
    tags: list[str] = Query(default=[]),
    search: Optional[str] = None,
    exclude_categories: list[str] = Query(default=[]),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
):
    """
    Personalized feed.

    The most recent matching articles are ranked for the user, then
    paginated.
    """
    filters = ArticleFilters(
        category=category,
        tags=_split(tags),
        search=search,
        exclude_categories=_split(exclude_categories),
        page=page,
        limit=limit,
    )
    result = await services.articles.rank_articles_for_user(user_id, filters)
    return {
        "articles": [a.model_dump(mode="json") for a in result.articles],
        "total_count": result.total_count,
        "timestamp": _timestamp(),
    }


@router.get("/users/{user_id}/articles/{article_id}/relevance")
async def get_relevance(user_id: str, article_id: str, services: ServicesDep):
    """Explain one article's personalized score signal by signal."""
    found = await services.articles.relevance_breakdown(user_id, article_id)
    if found is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Article not found")
    article, breakdown = found
    return {
        "user_id": user_id,
        "article_id": article.id,
        "score": breakdown.total,
        "label": breakdown.label,
        "breakdown": breakdown.model_dump(),
    }


@router.get("/users/{user_id}/missed")
async def get_missed_articles(
    user_id: str,
    services: ServicesDep,
    viewed: list[str] = Query(default=[]),
    limit: int = Query(default=3, ge=1, le=20),
):
    missed = await services.articles.find_missed(user_id, set(_split(viewed)), limit=limit)
    return {"articles": [a.model_dump(mode="json") for a in missed], "timestamp": _timestamp()}


@router.get("/users/{user_id}/preferences", response_model=UserPreferences)
async def get_user_preferences(user_id: str, services: ServicesDep):
    """Get a user's preferences; unknown users get empty preferences."""
    return await services.articles.get_preferences(user_id)


@router.put("/users/{user_id}/preferences", response_model=UserPreferences)
async def update_user_preferences(user_id: str, update: UserPreferencesUpdate, services: ServicesDep):
    """Update a user's preferences; omitted fields are left unchanged."""
    preferences = await services.articles.update_preferences(user_id, update)
    logger.info("Preferences updated", user_id=user_id)
    return preferences


# ============================================================================
# Health Check
# ============================================================================


@router.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": _timestamp(),
        "version": get_settings().app_version,
    }
