"""
Read-side article operations behind the HTTP API.

Listing goes straight to the store. Personalized endpoints rank a window
of the most recent matching articles (100 by default) and paginate the
ranked window, so a page never depends on articles outside it.
"""
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
import logging

from impact_news.models.domain import (
    ArticleFilters,
    ArticlePage,
    RankedArticlePage,
    RelevanceBreakdown,
    ScoredArticle,
    SortKey,
    StoredArticle,
    UserPreferences,
    UserPreferencesUpdate,
)
from impact_news.services.ranking import (
    PersonalizationScorer,
    find_missed_high_relevance_articles,
    rank_articles,
)
from impact_news.services.storage import ArticleStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ArticleService:
    """Article listing, personalized ranking and preferences."""

    def __init__(
        self,
        store: ArticleStore,
        ranking_window: int = 100,
        cache_ttl: timedelta = timedelta(minutes=5),
        max_cached_windows: int = 64,
        scorer: Optional[PersonalizationScorer] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.ranking_window = ranking_window
        self.cache_ttl = cache_ttl
        self.max_cached_windows = max(1, max_cached_windows)
        self.scorer = scorer or PersonalizationScorer()
        self.clock = clock
        self._window_cache: dict[str, tuple[datetime, list[StoredArticle]]] = {}

    # =========================================================================
    # Listing
    # =========================================================================

    async def get_articles(self, filters: ArticleFilters) -> ArticlePage:
        return await self.store.query_articles(filters)

    async def get_article(self, article_id: str) -> Optional[StoredArticle]:
        return await self.store.get_article(article_id)

    async def get_related_articles(self, article_id: str, limit: int = 3) -> Optional[list[StoredArticle]]:
        """Related articles, or None when the article itself does not exist."""
        article = await self.store.get_article(article_id)
        if article is None:
            return None
        return await self.store.related_articles(article, limit=limit)

    # =========================================================================
    # Preferences
    # =========================================================================

    async def get_preferences(self, user_id: str) -> UserPreferences:
        """Stored preferences, or an empty set for an unknown user."""
        return await self.store.get_preferences(user_id) or UserPreferences(user_id=user_id)

    async def update_preferences(self, user_id: str, update: UserPreferencesUpdate) -> UserPreferences:
        return await self.store.upsert_preferences(user_id, update)

    # =========================================================================
    # Personalized ranking
    # =========================================================================

    async def _window(self, filters: ArticleFilters) -> list[StoredArticle]:
        """Most recent matching articles, cached briefly per filter set."""
        window_filters = filters.model_copy(
            update={"page": 1, "limit": self.ranking_window, "sort_by": SortKey.PUBLISHED_AT}
        )
        key = window_filters.model_dump_json()
        now = self.clock()

        cached = self._window_cache.get(key)
        if cached is not None and now - cached[0] < self.cache_ttl:
            return cached[1]

        page = await self.store.query_articles(window_filters)
        self._store_window(key, now, page.articles)
        return page.articles

    def _store_window(self, key: str, now: datetime, articles: list[StoredArticle]) -> None:
        """Drop expired entries, then the oldest ones beyond max_cached_windows."""
        self._window_cache = {
            k: entry for k, entry in self._window_cache.items()
            if k != key and now - entry[0] < self.cache_ttl
        }
        while len(self._window_cache) >= self.max_cached_windows:
            oldest = min(self._window_cache, key=lambda k: self._window_cache[k][0])
            del self._window_cache[oldest]
        self._window_cache[key] = (now, articles)

    def invalidate_cache(self) -> None:
        self._window_cache.clear()

    async def rank_articles_for_user(self, user_id: str, filters: ArticleFilters) -> RankedArticlePage:
        """
        Ranked page of the recent-article window for one user.

        Users without preferences are ranked too; their scores come from
        freshness alone, so the order is newest first.
        """
        articles = await self._window(filters)
        preferences = await self.get_preferences(user_id)
        ranked = rank_articles(articles, preferences, now=self.clock(), scorer=self.scorer)

        start = (filters.page - 1) * filters.limit
        return RankedArticlePage(articles=ranked[start:start + filters.limit], total_count=len(ranked))

    async def relevance_breakdown(
        self,
        user_id: str,
        article_id: str,
    ) -> Optional[tuple[StoredArticle, RelevanceBreakdown]]:
        article = await self.store.get_article(article_id)
        if article is None:
            return None
        preferences = await self.get_preferences(user_id)
        return article, self.scorer.breakdown(article, preferences, self.clock())

    async def find_missed(self, user_id: str, viewed_ids: set[str], limit: int = 3) -> list[ScoredArticle]:
        """Best-scoring recent articles the user has not viewed."""
        articles = await self._window(ArticleFilters())
        preferences = await self.get_preferences(user_id)
        return find_missed_high_relevance_articles(
            articles,
            viewed_ids,
            preferences,
            limit=limit,
            now=self.clock(),
            scorer=self.scorer,
        )
