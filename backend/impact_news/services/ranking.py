"""
Personalized ranking - scores stored articles against a user's preferences.

The score is a read-time overlay, never written back to the article.
Every signal is kept separately in a RelevanceBreakdown so the UI can
explain a score, not just show it:

    base                          +10
    keyword in title              +15 per keyword
    keyword in content            +10 per keyword
    preferred category            +20
    preferred source              +15
    preferred language            +15  (mismatch -10, only if languages are set)
    tag fuzzy-matching a keyword  +5 per tag
    three or more tags            +5
    excluded keyword in title     -25 per keyword
    excluded keyword in content   -15 per keyword
    freshness                     +20 / +10 / +5 for <6h / <24h / <48h

The total is clamped to [0, 100]. Ties are broken by publish time (newest
first) and then by article id, so the order is fully deterministic.
"""
from datetime import datetime, timezone
from typing import Iterable, Optional

from impact_news.models.domain import (
    RelevanceBreakdown,
    ScoredArticle,
    StoredArticle,
    UserPreferences,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _clean(values: Iterable[str]) -> list[str]:
    return [v.strip().lower() for v in values if v and v.strip()]


class PersonalizationScorer:
    """Pure scoring of one article for one set of preferences."""

    def freshness_points(self, age_hours: float) -> int:
        if age_hours < 6:
            return 20
        if age_hours < 24:
            return 10
        if age_hours < 48:
            return 5
        return 0

    def breakdown(
        self,
        article: StoredArticle,
        preferences: UserPreferences,
        now: Optional[datetime] = None,
    ) -> RelevanceBreakdown:
        now = _aware(now or _utcnow())
        result = RelevanceBreakdown()

        title = article.title.lower()
        content = (article.content or "").lower()
        keywords = _clean(preferences.keywords)
        tags = _clean(article.tags)

        for keyword in keywords:
            matched = False
            if keyword in title:
                result.title_keywords += 15
                matched = True
            if keyword in content:
                result.content_keywords += 10
                matched = True
            if matched:
                result.matched_keywords.append(keyword)

        if article.category in preferences.categories:
            result.category = 20

        preferred_sources = _clean(preferences.sources)
        if preferred_sources and (
            article.source_name.lower() in preferred_sources
            or article.source_id.lower() in preferred_sources
        ):
            result.source = 15

        preferred_languages = _clean(preferences.languages)
        if preferred_languages and article.language:
            if article.language.lower() in preferred_languages:
                result.language = 15
            else:
                result.language = -10

        if tags:
            for tag in tags:
                if any(keyword == tag or keyword in tag or tag in keyword for keyword in keywords):
                    result.tag_matches += 5
            if len(tags) >= 3:
                result.tag_richness = 5

        for keyword in _clean(preferences.excluded_keywords):
            matched = False
            if keyword in title:
                result.excluded_title -= 25
                matched = True
            if keyword in content:
                result.excluded_content -= 15
                matched = True
            if matched:
                result.matched_excluded.append(keyword)

        age_hours = (now - _aware(article.published_at)).total_seconds() / 3600
        result.freshness = self.freshness_points(age_hours)

        return result

    def score(
        self,
        article: StoredArticle,
        preferences: UserPreferences,
        now: Optional[datetime] = None,
    ) -> int:
        return self.breakdown(article, preferences, now).total


def _sort_key(article: ScoredArticle) -> tuple:
    published = _aware(article.published_at).timestamp()
    return (-article.personal_score, -published, article.id)


def rank_articles(
    articles: Iterable[StoredArticle],
    preferences: UserPreferences,
    now: Optional[datetime] = None,
    scorer: Optional[PersonalizationScorer] = None,
) -> list[ScoredArticle]:
    """Score and sort articles, best first."""
    scorer = scorer or PersonalizationScorer()
    now = now or _utcnow()
    scored = []
    for article in articles:
        data = article.model_dump()
        data["personal_score"] = scorer.score(article, preferences, now)
        scored.append(ScoredArticle(**data))
    scored.sort(key=_sort_key)
    return scored


def find_missed_high_relevance_articles(
    articles: Iterable[StoredArticle],
    viewed_ids: set[str],
    preferences: UserPreferences,
    limit: int = 3,
    now: Optional[datetime] = None,
    scorer: Optional[PersonalizationScorer] = None,
) -> list[ScoredArticle]:
    """Top-scoring articles the user has not opened yet."""
    unseen = [a for a in articles if a.id not in viewed_ids]
    return rank_articles(unseen, preferences, now=now, scorer=scorer)[:limit]
