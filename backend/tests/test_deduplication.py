"""
Tests for candidate deduplication, in memory and against the store.
"""

import asyncio
from datetime import datetime, timezone

from sqlalchemy.exc import OperationalError

from impact_news.services.data_ingestion.deduplication import Deduplicator
from impact_news.services.storage import build_article_row
from impact_news.sources.base import CandidateArticle


def make_candidate(url: str, guid: str | None = None, source_id: str = "crypto_rss", title: str = "Some article title") -> CandidateArticle:
    return CandidateArticle(
        title=title,
        url=url,
        source_name="Feed",
        source_id=source_id,
        published_at=datetime(2024, 5, 1, tzinfo=timezone.utc),
        content="body",
        guid=guid,
    )


class TestFilterNew:
    """Tests for the pure filter."""

    def test_same_url_keeps_first(self):
        first = make_candidate("https://x.test/1", title="First version of the story")
        second = make_candidate("https://x.test/1", title="Second version of the story")

        fresh = Deduplicator().filter_new([first, second], set())

        assert fresh == [first]

    def test_same_url_different_guid_is_duplicate(self):
        first = make_candidate("https://x.test/1", guid="g1")
        second = make_candidate("https://x.test/1", guid="g2")
        assert Deduplicator().filter_new([first, second], set()) == [first]

    def test_same_guid_different_url_is_duplicate(self):
        first = make_candidate("https://x.test/1", guid="g1")
        second = make_candidate("https://x.test/1?utm=feed", guid="g1")
        assert Deduplicator().filter_new([first, second], set()) == [first]

    def test_guid_scoped_to_source(self):
        first = make_candidate("https://x.test/1", guid="42", source_id="coindesk")
        second = make_candidate("https://y.test/1", guid="42", source_id="cryptopanic")
        assert len(Deduplicator().filter_new([first, second], set())) == 2

    def test_existing_keys_dropped_order_preserved(self):
        batch = [make_candidate(f"https://x.test/{i}", guid=f"g{i}") for i in range(5)]
        existing = {("guid", "crypto_rss", "g1"), ("url", "https://x.test/3")}

        fresh = Deduplicator().filter_new(batch, existing)

        assert [c.guid for c in fresh] == ["g0", "g2", "g4"]


class FailingStore:
    """Store whose bulk lookup fails, to exercise the fallback."""

    def __init__(self, recent):
        self.recent = recent
        self.recent_limit = None

    async def existing_keys(self, keys, chunk_size=200):
        raise OperationalError("SELECT", {}, Exception("database is locked"))

    async def recent_keys(self, limit=500):
        self.recent_limit = limit
        return self.recent


class TestStoreLookup:
    """Tests for existing-key lookups."""

    def test_falls_back_to_recent_keys(self):
        store = FailingStore({("url", "https://x.test/1")})
        dedup = Deduplicator(store, fallback_limit=500)
        batch = [make_candidate("https://x.test/1"), make_candidate("https://x.test/2")]

        fresh = asyncio.run(dedup.deduplicate(batch))

        assert [c.url for c in fresh] == ["https://x.test/2"]
        assert store.recent_limit == 500

    def test_lookup_against_stored_articles(self, run_with_store):
        stored = [
            make_candidate("https://x.test/1", guid="g1"),
            make_candidate("https://x.test/2"),
        ]
        incoming = [
            make_candidate("https://x.test/1-moved", guid="g1"),
            make_candidate("https://x.test/2", guid="new-guid"),
            make_candidate("https://x.test/3", guid="g3"),
        ]

        async def body(store):
            await store.insert_articles([build_article_row(c, 50) for c in stored])
            dedup = Deduplicator(store, chunk_size=1)
            return await dedup.deduplicate(incoming)

        fresh = run_with_store(body)
        assert [c.url for c in fresh] == ["https://x.test/3"]

    def test_recent_keys(self, run_with_store):
        async def body(store):
            await store.insert_articles([build_article_row(make_candidate("https://x.test/9", guid="g9"), 50)])
            return await store.recent_keys(10)

        keys = run_with_store(body)
        assert ("guid", "crypto_rss", "g9") in keys
        assert ("url", "https://x.test/9") in keys
