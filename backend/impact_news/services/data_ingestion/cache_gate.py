"""
Cache gate - decides whether a source may be called or must be served from cache.

Each source has a persisted (last_run, rate_limited) pair. A source that
was rate limited recently, or fetched very recently, is served from its
cached payload instead of calling the provider again.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional
import logging

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def cache_key(source_id: str, languages: list[str], single_category: bool) -> str:
    """Stable cache key for one source and one set of fetch options."""
    langs = ",".join(sorted(languages)) or "default"
    mode = "single" if single_category else "multi"
    return f"{source_id}:{langs}:{mode}"


class CacheGate:
    """
    Gate in front of every provider call.

    Rules:
    - rate limited less than `rate_limited_window` ago: use cache
    - last successful run less than `min_refresh` ago: use cache
    - otherwise: call the provider
    """

    def __init__(
        self,
        store,
        ttl: timedelta = timedelta(minutes=60),
        min_refresh: timedelta = timedelta(minutes=15),
        rate_limited_window: timedelta = timedelta(minutes=60),
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.ttl = ttl
        self.min_refresh = min_refresh
        self.rate_limited_window = rate_limited_window
        self.clock = clock

    def decide(self, last_run: Optional[datetime], rate_limited: bool, now: datetime) -> bool:
        """Pure rule: True means serve from cache."""
        if last_run is None:
            return False
        if last_run.tzinfo is None:
            last_run = last_run.replace(tzinfo=timezone.utc)
        elapsed = now - last_run
        if rate_limited and elapsed < self.rate_limited_window:
            return True
        return elapsed < self.min_refresh

    async def should_use_cache(self, source_id: str) -> bool:
        last_run, rate_limited = await self.store.get_source_state(source_id)
        use_cache = self.decide(last_run, rate_limited, self.clock())
        if use_cache:
            logger.info(f"Serving {source_id} from cache (last run {last_run}, rate limited: {rate_limited})")
        return use_cache

    async def get_cached(self, key: str) -> Optional[dict[str, Any]]:
        return await self.store.get_cache(key, self.clock())

    async def set_cached(self, key: str, payload: dict[str, Any]) -> None:
        await self.store.set_cache(key, payload, self.clock() + self.ttl)

    async def mark_run(self, source_id: str) -> None:
        """Record a successful provider call and clear the rate-limited flag."""
        await self.store.upsert_source_state(source_id, last_run=self.clock(), rate_limited=False)

    async def mark_rate_limited(self, source_id: str) -> None:
        # last_run moves too, so the rate-limited window is measured from now
        await self.store.upsert_source_state(source_id, last_run=self.clock(), rate_limited=True)
