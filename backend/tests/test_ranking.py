"""
Tests for personalized relevance scoring and ranking.
"""

from datetime import datetime, timedelta, timezone

from impact_news.models.domain import StoredArticle, UserPreferences
from impact_news.services.ranking import (
    PersonalizationScorer,
    find_missed_high_relevance_articles,
    rank_articles,
)


NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def make_article(article_id: str = "a1", **overrides) -> StoredArticle:
    fields = dict(
        id=article_id,
        title="AI chips reshape the industry",
        content="New processors ship this quarter.",
        url=f"https://news.test/{article_id}",
        source_name="TechCrunch",
        source_id="newsapi",
        language="en",
        published_at=NOW - timedelta(hours=30),
        category="technology",
        tags=[],
        relevance_score=40,
    )
    fields.update(overrides)
    return StoredArticle(**fields)


class TestPersonalizationScorer:
    """Tests for the per-signal breakdown."""

    def test_reference_scenario(self):
        prefs = UserPreferences(user_id="u1", keywords=["ai"], categories=["technology"])
        article = make_article(tags=["ai"])

        breakdown = PersonalizationScorer().breakdown(article, prefs, NOW)

        assert breakdown.base == 10
        assert breakdown.title_keywords == 15
        assert breakdown.content_keywords == 0
        assert breakdown.category == 20
        assert breakdown.tag_matches == 5
        assert breakdown.freshness == 5
        assert breakdown.total == 55
        assert breakdown.matched_keywords == ["ai"]

    def test_freshness_tiers(self):
        scorer = PersonalizationScorer()
        assert scorer.freshness_points(2) == 20
        assert scorer.freshness_points(12) == 10
        assert scorer.freshness_points(30) == 5
        assert scorer.freshness_points(72) == 0

    def test_source_and_language(self):
        prefs = UserPreferences(user_id="u1", sources=["techcrunch"], languages=["en"])
        breakdown = PersonalizationScorer().breakdown(make_article(), prefs, NOW)
        assert breakdown.source == 15
        assert breakdown.language == 15

    def test_language_mismatch_penalized_only_when_set(self):
        scorer = PersonalizationScorer()
        article = make_article(language="de")
        assert scorer.breakdown(article, UserPreferences(user_id="u1", languages=["en"]), NOW).language == -10
        assert scorer.breakdown(article, UserPreferences(user_id="u1"), NOW).language == 0

    def test_excluded_keywords(self):
        prefs = UserPreferences(user_id="u1", excluded_keywords=["chips", "processors"])
        breakdown = PersonalizationScorer().breakdown(make_article(), prefs, NOW)
        assert breakdown.excluded_title == -25
        assert breakdown.excluded_content == -15
        assert breakdown.matched_excluded == ["chips", "processors"]

    def test_tag_richness(self):
        breakdown = PersonalizationScorer().breakdown(
            make_article(tags=["hardware", "semiconductor", "supply"]),
            UserPreferences(user_id="u1"),
            NOW,
        )
        assert breakdown.tag_richness == 5

    def test_total_clamped_to_zero(self):
        prefs = UserPreferences(
            user_id="u1",
            excluded_keywords=["ai", "chips", "industry", "processors", "quarter"],
        )
        assert PersonalizationScorer().score(make_article(), prefs, NOW) == 0

    def test_total_clamped_to_hundred(self):
        prefs = UserPreferences(
            user_id="u1",
            keywords=["ai", "chips", "processors", "industry"],
            categories=["technology"],
            sources=["techcrunch"],
            languages=["en"],
        )
        article = make_article(published_at=NOW - timedelta(hours=1), tags=["ai", "chips", "industry"])
        breakdown = PersonalizationScorer().breakdown(article, prefs, NOW)
        assert breakdown.raw_total > 100
        assert breakdown.total == 100
        assert breakdown.label == "Very High"

    def test_labels(self):
        scorer = PersonalizationScorer()
        low = scorer.breakdown(make_article(published_at=NOW - timedelta(days=5)), UserPreferences(user_id="u1"), NOW)
        assert low.total == 10
        assert low.label == "Very Low"

    def test_deterministic(self):
        prefs = UserPreferences(user_id="u1", keywords=["ai"], categories=["technology"])
        scorer = PersonalizationScorer()
        article = make_article()
        assert scorer.score(article, prefs, NOW) == scorer.score(article, prefs, NOW)


class TestRankArticles:
    """Tests for ordering."""

    def test_orders_by_score(self):
        prefs = UserPreferences(user_id="u1", categories=["health"])
        articles = [
            make_article("tech"),
            make_article("health", category="health", title="Hospital staffing report out"),
        ]
        ranked = rank_articles(articles, prefs, now=NOW)
        assert [a.id for a in ranked] == ["health", "tech"]
        assert ranked[0].personal_score > ranked[1].personal_score

    def test_ties_broken_by_recency_then_id(self):
        prefs = UserPreferences(user_id="u1")
        published = NOW - timedelta(hours=60)
        articles = [
            make_article("b", published_at=published),
            make_article("a", published_at=published),
            make_article("c", published_at=published + timedelta(minutes=5)),
        ]
        ranked = rank_articles(articles, prefs, now=NOW)
        assert [a.id for a in ranked] == ["c", "a", "b"]

    def test_does_not_mutate_stored_score(self):
        prefs = UserPreferences(user_id="u1", keywords=["ai"])
        article = make_article()
        ranked = rank_articles([article], prefs, now=NOW)
        assert ranked[0].relevance_score == 40
        assert article.relevance_score == 40


class TestFindMissed:
    def test_skips_viewed_and_limits(self):
        prefs = UserPreferences(user_id="u1", keywords=["ai"])
        articles = [make_article(f"a{i}", published_at=NOW - timedelta(hours=i)) for i in range(1, 6)]

        missed = find_missed_high_relevance_articles(articles, {"a1", "a3"}, prefs, limit=2, now=NOW)

        assert [a.id for a in missed] == ["a2", "a4"]
