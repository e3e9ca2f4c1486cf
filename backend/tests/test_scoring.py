"""
Tests for article validation and the ingestion-time quality score.
"""

from datetime import datetime, timedelta, timezone

from impact_news.services.scoring import BaseScorer
from impact_news.sources.base import CandidateArticle, clean_content, is_valid_article, parse_timestamp


NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def make_candidate(**overrides) -> CandidateArticle:
    fields = dict(
        title="Bitcoin Surges Past $100K Amid ETF Inflows",
        url="https://news.test/bitcoin-100k",
        source_name="CoinDesk",
        source_id="coindesk",
        published_at=NOW - timedelta(hours=2),
        content="x" * 600,
        image_url="https://news.test/img.png",
    )
    fields.update(overrides)
    return CandidateArticle(**fields)


class TestIsValidArticle:
    """Tests for the minimum article bar."""

    def test_accepts_complete_article(self):
        assert is_valid_article("A long enough title", "https://x.test", NOW, "body", None)

    def test_description_alone_is_enough(self):
        assert is_valid_article("A long enough title", "https://x.test", NOW, None, "summary")

    def test_rejects_short_title(self):
        assert not is_valid_article("  Short   ", "https://x.test", NOW, "body")

    def test_rejects_missing_url(self):
        assert not is_valid_article("A long enough title", "", NOW, "body")

    def test_rejects_missing_timestamp(self):
        assert not is_valid_article("A long enough title", "https://x.test", None, "body")

    def test_rejects_missing_content_and_description(self):
        assert not is_valid_article("A long enough title", "https://x.test", NOW, "  ", None)


class TestContentHelpers:
    def test_truncation_marker_stripped(self):
        content = "A" * 80 + " [+1234 chars]"
        assert clean_content(content, "desc") == "A" * 80

    def test_short_content_falls_back_to_description(self):
        assert clean_content("tiny [+10 chars]", "The full description") == "The full description"

    def test_parse_timestamp_forms(self):
        assert parse_timestamp("2024-05-01T12:00:00Z") == NOW
        assert parse_timestamp(int(NOW.timestamp())) == NOW
        assert parse_timestamp("not a date") is None
        assert parse_timestamp(None) is None


class TestBaseScorer:
    """Tests for score_at_ingestion."""

    def test_reference_scenario(self):
        # 30 recency + 10 content + 5 image
        assert BaseScorer().score_at_ingestion(make_candidate(), NOW) == 45

    def test_recency_tiers(self):
        scorer = BaseScorer()
        assert scorer.recency_points(1) == 30
        assert scorer.recency_points(12) == 20
        assert scorer.recency_points(48) == 10
        assert scorer.recency_points(100) == 0

    def test_reputable_source_bonus(self):
        candidate = make_candidate(source_name="Reuters Business")
        assert BaseScorer().score_at_ingestion(candidate, NOW) == 60

    def test_description_bonus_when_content_short(self):
        candidate = make_candidate(content="short", description="d" * 150, image_url=None)
        assert BaseScorer().score_at_ingestion(candidate, NOW) == 35

    def test_title_penalties(self):
        scorer = BaseScorer()
        assert scorer.title_penalty("Is this the end?") == -10
        assert scorer.title_penalty("MARKETS CRASH AS RATES JUMP TODAY") == -10
        assert scorer.title_penalty("Something happened and then...") == -10

    def test_tag_richness_and_high_value_term(self):
        candidate = make_candidate(
            title="Regulators Weigh New AI Safety Rules For Labs",
            tags=["ai", "regulation", "policy"],
        )
        # 45 + 10 tags + 15 high-value phrase
        assert BaseScorer().score_at_ingestion(candidate, NOW) == 70

    def test_clamped_to_minimum(self):
        candidate = make_candidate(
            title="WHY?",
            published_at=NOW - timedelta(days=10),
            content="",
            image_url=None,
        )
        assert BaseScorer().score_at_ingestion(candidate, NOW) == 10

    def test_always_in_range(self):
        scorer = BaseScorer()
        for hours in (0, 5, 20, 70, 500):
            for image in (None, "https://img.test/x.png"):
                score = scorer.score_at_ingestion(
                    make_candidate(published_at=NOW - timedelta(hours=hours), image_url=image),
                    NOW,
                )
                assert 10 <= score <= 90

    def test_naive_published_at_is_utc(self):
        candidate = make_candidate(published_at=(NOW - timedelta(hours=2)).replace(tzinfo=None))
        assert BaseScorer().score_at_ingestion(candidate, NOW) == 45
