"""
Tests for the cache gate and the provider cache it reads.
"""

from datetime import datetime, timedelta, timezone

from impact_news.services.data_ingestion.cache_gate import CacheGate, cache_key


NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class TestDecide:
    """Tests for the pure gate rule."""

    def test_never_run_fetches_fresh(self):
        gate = CacheGate(store=None)
        assert gate.decide(None, False, NOW) is False

    def test_recent_run_uses_cache(self):
        gate = CacheGate(store=None)
        assert gate.decide(NOW - timedelta(minutes=10), False, NOW) is True

    def test_older_run_fetches_fresh(self):
        gate = CacheGate(store=None)
        assert gate.decide(NOW - timedelta(minutes=20), False, NOW) is False

    def test_rate_limited_within_an_hour_uses_cache(self):
        gate = CacheGate(store=None)
        assert gate.decide(NOW - timedelta(minutes=45), True, NOW) is True
        assert gate.decide(NOW - timedelta(minutes=61), True, NOW) is False

    def test_naive_last_run_treated_as_utc(self):
        gate = CacheGate(store=None)
        naive = (NOW - timedelta(minutes=5)).replace(tzinfo=None)
        assert gate.decide(naive, False, NOW) is True


class TestCacheKey:
    def test_key_depends_on_options(self):
        assert cache_key("newsapi", ["en"], True) != cache_key("newsapi", ["en"], False)
        assert cache_key("newsapi", ["de", "en"], True) == cache_key("newsapi", ["en", "de"], True)
        assert cache_key("coindesk", [], True) == "coindesk:default:single"


class TestCacheGateWithStore:
    """Tests against the persisted source state and payload cache."""

    def test_should_use_cache_follows_source_state(self, run_with_store):
        clock = FakeClock()

        async def body(store):
            gate = CacheGate(store, clock=clock)
            assert await gate.should_use_cache("newsapi") is False

            await gate.mark_run("newsapi")
            clock.now = NOW + timedelta(minutes=10)
            recent = await gate.should_use_cache("newsapi")

            clock.now = NOW + timedelta(minutes=20)
            stale = await gate.should_use_cache("newsapi")
            return recent, stale

        recent, stale = run_with_store(body)
        assert recent is True
        assert stale is False

    def test_rate_limited_source_stays_cached_for_an_hour(self, run_with_store):
        clock = FakeClock()

        async def body(store):
            gate = CacheGate(store, clock=clock)
            await gate.mark_rate_limited("cryptopanic")
            clock.now = NOW + timedelta(minutes=40)
            during = await gate.should_use_cache("cryptopanic")
            clock.now = NOW + timedelta(minutes=70)
            after = await gate.should_use_cache("cryptopanic")
            state = await store.get_source_state("cryptopanic")
            return during, after, state

        during, after, state = run_with_store(body)
        assert during is True
        assert after is False
        assert state[1] is True

    def test_mark_run_clears_rate_limited(self, run_with_store):
        async def body(store):
            gate = CacheGate(store, clock=FakeClock())
            await gate.mark_rate_limited("newsapi")
            await gate.mark_run("newsapi")
            return await store.get_source_state("newsapi")

        last_run, rate_limited = run_with_store(body)
        assert rate_limited is False
        assert last_run == NOW

    def test_cached_payload_expires(self, run_with_store):
        clock = FakeClock()

        async def body(store):
            gate = CacheGate(store, ttl=timedelta(hours=1), clock=clock)
            await gate.set_cached("newsapi:en:single", {"articles": [{"title": "x"}]})

            clock.now = NOW + timedelta(minutes=59)
            fresh = await gate.get_cached("newsapi:en:single")
            clock.now = NOW + timedelta(minutes=61)
            expired = await gate.get_cached("newsapi:en:single")
            missing = await gate.get_cached("other")
            return fresh, expired, missing

        fresh, expired, missing = run_with_store(body)
        assert fresh == {"articles": [{"title": "x"}]}
        assert expired is None
        assert missing is None

    def test_set_cached_overwrites(self, run_with_store):
        async def body(store):
            gate = CacheGate(store, clock=FakeClock())
            await gate.set_cached("k", {"v": 1})
            await gate.set_cached("k", {"v": 2})
            return await gate.get_cached("k")

        assert run_with_store(body) == {"v": 2}
