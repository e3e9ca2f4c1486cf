"""
Errors raised by source adapters and the rate guard.

The orchestrator maps each class to a distinct run-record condition, so
keep the hierarchy shallow: anything that should trip the circuit breaker
is an UpstreamError or an AuthenticationError.
"""
from datetime import datetime
from typing import Optional


class SourceError(Exception):
    """Base class for all source failures."""

    def __init__(self, source_id: str, message: str):
        self.source_id = source_id
        super().__init__(f"[{source_id}] {message}")


class UpstreamError(SourceError):
    """Network failure, timeout or non-2xx response after retries."""

    def __init__(self, source_id: str, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(source_id, message)


class RateLimitedError(UpstreamError):
    """Provider kept answering 429 until retries ran out."""

    def __init__(self, source_id: str, message: str = "rate limited"):
        super().__init__(source_id, message, status_code=429)


class AuthenticationError(SourceError):
    """Credential rejected (401/403). Never retried."""

    def __init__(self, source_id: str, message: str = "authentication failed", status_code: int = 401):
        self.status_code = status_code
        super().__init__(source_id, message)


class MalformedPayloadError(SourceError):
    """Provider answered, but not in the shape we parse."""


class CircuitOpenError(SourceError):
    """Call rejected locally because the source's circuit is open."""

    def __init__(self, source_id: str, retry_after: Optional[datetime] = None):
        self.retry_after = retry_after
        when = retry_after.isoformat() if retry_after else "unknown"
        super().__init__(source_id, f"circuit open, retry after {when}")
