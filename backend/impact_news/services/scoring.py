"""
Ingestion-time quality score.

A user-agnostic score in [10, 90] computed once when an article is
stored. It blends freshness, source reputation and a few title/content
quality signals. Personalized scoring lives in services.ranking.
"""
from datetime import datetime, timezone
from typing import Optional

from impact_news.core.taxonomy import HIGH_VALUE_TERMS, REPUTABLE_SOURCES
from impact_news.sources.base import CandidateArticle

MIN_SCORE = 10
MAX_SCORE = 90


def hours_since(published_at: datetime, now: datetime) -> float:
    if published_at.tzinfo is None:
        published_at = published_at.replace(tzinfo=timezone.utc)
    return (now - published_at).total_seconds() / 3600


class BaseScorer:
    """Additive heuristic scorer used by the orchestrator before insert."""

    def recency_points(self, age_hours: float) -> int:
        if age_hours < 6:
            return 30
        if age_hours < 24:
            return 20
        if age_hours < 72:
            return 10
        return 0

    def title_penalty(self, title: str) -> int:
        penalty = 0
        if len(title) < 30:
            penalty -= 5
        if "..." in title or title == title.upper():
            penalty -= 10
        if title.endswith("?"):
            penalty -= 5
        return penalty

    def score_at_ingestion(self, candidate: CandidateArticle, now: Optional[datetime] = None) -> int:
        """
        Score a candidate.

        Uses the tags already attached to the candidate, so run the
        classifier first if tag richness should count.
        """
        now = now or datetime.now(timezone.utc)
        score = self.recency_points(hours_since(candidate.published_at, now))

        source = (candidate.source_name or "").lower()
        if any(name in source for name in REPUTABLE_SOURCES):
            score += 15

        if candidate.image_url:
            score += 5

        if candidate.content and len(candidate.content) > 500:
            score += 10
        elif candidate.description and len(candidate.description) > 100:
            score += 5

        if candidate.title:
            score += self.title_penalty(candidate.title)

        if len(candidate.tags) >= 3:
            score += 10

        text = candidate.text.lower()
        if any(term in text for term in HIGH_VALUE_TERMS):
            score += 15

        return min(max(score, MIN_SCORE), MAX_SCORE)
