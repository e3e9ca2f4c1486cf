"""
Tests for the circuit breaker and the shared retry policy.

The breaker runs on a fake clock and the retry loop on a recording sleep,
so nothing here waits for real time.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from impact_news.core.errors import AuthenticationError, RateLimitedError, UpstreamError
from impact_news.services.data_ingestion.rate_limiter import RateGuard, RetryPolicy, request_with_retry


class FakeClock:
    def __init__(self):
        self.now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class RecordingSleep:
    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def make_client(responses: list) -> tuple[httpx.AsyncClient, list[httpx.Request]]:
    """Client answering from a scripted list of status codes or exceptions."""
    seen: list[httpx.Request] = []
    remaining = list(responses)

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        item = remaining.pop(0) if len(remaining) > 1 else remaining[0]
        if isinstance(item, Exception):
            raise item
        return httpx.Response(item, json={"ok": item == 200})

    return httpx.AsyncClient(transport=httpx.MockTransport(handler)), seen


class TestRateGuard:
    """Tests for the per-source circuit breaker."""

    def test_allows_calls_when_closed(self):
        guard = RateGuard(clock=FakeClock())
        assert guard.attempt("newsapi") is True
        assert guard.retry_after("newsapi") is None

    def test_trips_at_threshold(self):
        clock = FakeClock()
        guard = RateGuard(failure_threshold=5, clock=clock)

        for _ in range(4):
            guard.record_failure("newsapi")
        assert guard.attempt("newsapi") is True

        guard.record_failure("newsapi")
        assert guard.attempt("newsapi") is False
        assert guard.is_open("newsapi")
        assert guard.retry_after("newsapi") == clock.now + timedelta(minutes=10)

    def test_denied_before_cooldown_and_reset_after(self):
        clock = FakeClock()
        guard = RateGuard(failure_threshold=5, cooldown=timedelta(minutes=10), clock=clock)
        for _ in range(5):
            guard.record_failure("coindesk")

        clock.advance(minutes=9)
        assert guard.attempt("coindesk") is False

        clock.advance(minutes=2)
        assert guard.attempt("coindesk") is True
        assert guard.failure_count("coindesk") == 0
        assert not guard.is_open("coindesk")

    def test_success_resets_count(self):
        guard = RateGuard(clock=FakeClock())
        for _ in range(3):
            guard.record_failure("cryptopanic")
        guard.record_success("cryptopanic")
        assert guard.failure_count("cryptopanic") == 0

    def test_sources_are_independent(self):
        guard = RateGuard(failure_threshold=2, clock=FakeClock())
        guard.record_failure("newsapi")
        guard.record_failure("newsapi")

        assert guard.attempt("newsapi") is False
        assert guard.attempt("crypto_rss") is True

    def test_status_snapshot(self):
        guard = RateGuard(failure_threshold=1, clock=FakeClock())
        guard.record_failure("firecrawl")
        status = guard.get_all_status()

        assert len(status) == 1
        assert status[0]["source"] == "firecrawl"
        assert status[0]["open"] is True
        assert status[0]["retry_after"] is not None


class TestRetryPolicy:
    """Tests for backoff delays."""

    def test_delays_double_and_cap(self):
        policy = RetryPolicy(base_delay=5, max_delay=15)
        assert policy.delay_for(0) == 5
        assert policy.delay_for(1) == 10
        assert policy.delay_for(2) == 15
        assert policy.delay_for(5) == 15


class TestRequestWithRetry:
    """Tests for the retrying HTTP call."""

    def test_retries_after_429_then_succeeds(self):
        client, seen = make_client([429, 200])
        sleep = RecordingSleep()

        async def run():
            async with client:
                return await request_with_retry(client, "newsapi", "GET", "https://api.test/x", sleep=sleep)

        response = asyncio.run(run())

        assert response.status_code == 200
        assert len(seen) == 2
        assert sleep.calls == [10]

    def test_auth_failure_is_not_retried(self):
        client, seen = make_client([401])
        sleep = RecordingSleep()

        async def run():
            async with client:
                await request_with_retry(client, "newsapi", "GET", "https://api.test/x", sleep=sleep)

        with pytest.raises(AuthenticationError):
            asyncio.run(run())
        assert len(seen) == 1
        assert sleep.calls == []

    def test_rate_limit_exhaustion(self):
        client, seen = make_client([429])
        sleep = RecordingSleep()

        async def run():
            async with client:
                await request_with_retry(client, "newsapi", "GET", "https://api.test/x", sleep=sleep)

        with pytest.raises(RateLimitedError):
            asyncio.run(run())
        # One initial attempt plus three retries
        assert len(seen) == 4
        assert sleep.calls == [10, 15, 15]

    def test_server_errors_exhaust_to_upstream_error(self):
        client, seen = make_client([503])

        async def run():
            async with client:
                await request_with_retry(
                    client, "coindesk", "GET", "https://api.test/x",
                    policy=RetryPolicy(max_retries=1), sleep=RecordingSleep(),
                )

        with pytest.raises(UpstreamError) as exc_info:
            asyncio.run(run())
        assert exc_info.value.status_code == 503
        assert len(seen) == 2

    def test_network_errors_are_wrapped(self):
        client, seen = make_client([httpx.ConnectError("refused"), 200])

        async def run():
            async with client:
                return await request_with_retry(
                    client, "crypto_rss", "GET", "https://feed.test/rss", sleep=RecordingSleep(),
                )

        response = asyncio.run(run())
        assert response.status_code == 200
        assert len(seen) == 2
