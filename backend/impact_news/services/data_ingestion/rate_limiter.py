"""
Rate guarding for upstream API requests.

Two pieces:
- RateGuard: per-source circuit breaker. After N consecutive failures a
  source is refused locally until a cooldown passes.
- request_with_retry: a single outbound call with exponential backoff on
  429/5xx/network errors and no retry on credential errors.
"""

import asyncio
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional
import logging

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
)

from impact_news.core.errors import (
    AuthenticationError,
    RateLimitedError,
    UpstreamError,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
Sleep = Callable[[float], Awaitable[None]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class BreakerState:
    """Consecutive failures and trip time for one source."""
    failure_count: int = 0
    tripped_at: Optional[datetime] = None


class RateGuard:
    """
    Per-source circuit breaker.

    Features:
    - Source-keyed state, so one failing provider never blocks another
    - Injectable clock for deterministic tests
    - Thread-safe counters; the lock is never held across I/O
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        cooldown: timedelta = timedelta(minutes=10),
        clock: Clock = _utcnow,
    ):
        self.failure_threshold = failure_threshold
        self.cooldown = cooldown
        self._clock = clock
        self._states: dict[str, BreakerState] = {}
        self._lock = threading.Lock()

    def _state(self, source_id: str) -> BreakerState:
        state = self._states.get(source_id)
        if state is None:
            state = self._states[source_id] = BreakerState()
        return state

    def attempt(self, source_id: str) -> bool:
        """
        Ask whether a call to this source may go out now.

        An expired trip is cleared here, so the first call after the
        cooldown resets the counter and is allowed.
        """
        with self._lock:
            state = self._state(source_id)
            if state.tripped_at is None:
                return True

            if self._clock() - state.tripped_at >= self.cooldown:
                logger.info(f"Circuit for {source_id} cooled down, closing")
                state.failure_count = 0
                state.tripped_at = None
                return True

            return False

    def record_success(self, source_id: str) -> None:
        with self._lock:
            self._state(source_id).failure_count = 0

    def record_failure(self, source_id: str) -> None:
        with self._lock:
            state = self._state(source_id)
            state.failure_count += 1
            logger.warning(
                f"Failure count for {source_id}: "
                f"{state.failure_count}/{self.failure_threshold}"
            )
            if state.failure_count >= self.failure_threshold and state.tripped_at is None:
                state.tripped_at = self._clock()
                logger.warning(
                    f"Circuit for {source_id} opened for "
                    f"{self.cooldown.total_seconds() / 60:.0f} minutes"
                )

    def is_open(self, source_id: str) -> bool:
        with self._lock:
            state = self._states.get(source_id)
            if state is None or state.tripped_at is None:
                return False
            return self._clock() - state.tripped_at < self.cooldown

    def retry_after(self, source_id: str) -> Optional[datetime]:
        """Estimated time the circuit closes again, or None if closed."""
        with self._lock:
            state = self._states.get(source_id)
            if state is None or state.tripped_at is None:
                return None
            return state.tripped_at + self.cooldown

    def failure_count(self, source_id: str) -> int:
        with self._lock:
            state = self._states.get(source_id)
            return state.failure_count if state else 0

    def get_status(self, source_id: str) -> dict:
        """Get current breaker status for a source."""
        retry_after = self.retry_after(source_id)
        return {
            "source": source_id,
            "failure_count": self.failure_count(source_id),
            "threshold": self.failure_threshold,
            "open": self.is_open(source_id),
            "retry_after": retry_after.isoformat() if retry_after else None,
        }

    def get_all_status(self) -> list[dict]:
        """Get status for all tracked sources."""
        with self._lock:
            sources = sorted(self._states.keys())
        return [self.get_status(s) for s in sources]


@dataclass
class RetryPolicy:
    """Backoff parameters for one outbound call."""
    base_delay: float = 5.0
    max_delay: float = 15.0
    max_retries: int = 3

    def delay_for(self, retry_number: int) -> float:
        """Seconds to wait before retry number `retry_number` (1-based)."""
        return min(self.base_delay * (2 ** retry_number), self.max_delay)

    def wait(self, retry_state: RetryCallState) -> float:
        return self.delay_for(retry_state.attempt_number)


def _raise_for_status(source_id: str, response: httpx.Response) -> None:
    status = response.status_code
    if status in (401, 403):
        raise AuthenticationError(
            source_id,
            f"credentials rejected (HTTP {status}): {response.text[:200]}",
            status_code=status,
        )
    if status == 429:
        raise RateLimitedError(source_id)
    if not response.is_success:
        raise UpstreamError(
            source_id,
            f"HTTP {status}: {response.text[:200]}",
            status_code=status,
        )


async def request_with_retry(
    client: httpx.AsyncClient,
    source_id: str,
    method: str,
    url: str,
    policy: Optional[RetryPolicy] = None,
    sleep: Sleep = asyncio.sleep,
    **kwargs: Any,
) -> httpx.Response:
    """
    Perform one HTTP request with the shared retry policy.

    Raises:
        AuthenticationError: on 401/403, immediately
        RateLimitedError: if the provider still answers 429 after retries
        UpstreamError: on other non-2xx or network errors after retries
    """
    policy = policy or RetryPolicy()

    def _log_retry(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            f"{source_id}: attempt {retry_state.attempt_number}/{policy.max_retries + 1} "
            f"failed ({exc}); retrying in {policy.wait(retry_state):.1f}s"
        )

    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.max_retries + 1),
        wait=policy.wait,
        retry=retry_if_exception_type(UpstreamError),
        sleep=sleep,
        before_sleep=_log_retry,
        reraise=True,
    )

    async for attempt in retrying:
        with attempt:
            try:
                response = await client.request(method, url, **kwargs)
            except httpx.TransportError as e:
                raise UpstreamError(source_id, f"network error: {e!r}") from e
            _raise_for_status(source_id, response)
            return response

    # AsyncRetrying with reraise=True either returns above or raises
    raise UpstreamError(source_id, "retries exhausted")
