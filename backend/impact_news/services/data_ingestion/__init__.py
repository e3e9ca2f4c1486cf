"""
Data ingestion services for Impact News.

- Circuit breaker and retry/backoff for outbound calls (rate_limiter)
- Cache gate in front of every provider (cache_gate)
- Deduplication against the batch and the store (deduplication)
- Orchestrator running one aggregation pass (aggregator)
- Persisted schedule for periodic runs (scheduler)

Only the leaf modules are re-exported; the rest import the source
adapters, which in turn import rate_limiter.
"""

from impact_news.services.data_ingestion.cache_gate import CacheGate, cache_key
from impact_news.services.data_ingestion.rate_limiter import (
    BreakerState,
    RateGuard,
    RetryPolicy,
    request_with_retry,
)

__all__ = [
    "BreakerState",
    "CacheGate",
    "RateGuard",
    "RetryPolicy",
    "cache_key",
    "request_with_retry",
]
