"""
Deduplication of candidates against each other and against stored articles.

Key per candidate:
- ("guid", source_id, guid) when the provider supplies a GUID
- ("url", url) otherwise

A candidate is also dropped when its URL was already seen in the batch,
even under a different key.
"""

from typing import Iterable
import logging

from sqlalchemy.exc import SQLAlchemyError

from impact_news.sources.base import CandidateArticle

logger = logging.getLogger(__name__)


class Deduplicator:
    """Filters candidates down to the ones not yet seen or stored."""

    def __init__(self, store=None, fallback_limit: int = 500, chunk_size: int = 200):
        self.store = store
        self.fallback_limit = fallback_limit
        self.chunk_size = chunk_size

    def filter_new(
        self,
        candidates: Iterable[CandidateArticle],
        existing_keys: set[tuple[str, ...]],
    ) -> list[CandidateArticle]:
        """First occurrence wins; anything matching an existing key is dropped."""
        seen_keys: set[tuple[str, ...]] = set()
        seen_urls: set[str] = set()
        fresh = []

        for candidate in candidates:
            key = candidate.dedup_key
            url_key = ("url", candidate.url)
            if key in seen_keys or candidate.url in seen_urls:
                continue
            seen_keys.add(key)
            seen_urls.add(candidate.url)

            if key in existing_keys or url_key in existing_keys:
                continue
            fresh.append(candidate)

        return fresh

    async def lookup_existing(self, candidates: list[CandidateArticle]) -> set[tuple[str, ...]]:
        """
        Stored keys relevant to these candidates.

        Looks up both the primary key and the URL of every candidate. On a
        storage error falls back to the keys of the most recent articles.
        """
        if self.store is None or not candidates:
            return set()

        keys: set[tuple[str, ...]] = set()
        for candidate in candidates:
            keys.add(candidate.dedup_key)
            keys.add(("url", candidate.url))

        try:
            return await self.store.existing_keys(keys, chunk_size=self.chunk_size)
        except SQLAlchemyError as e:
            logger.warning(f"Existing-key lookup failed, falling back to recent {self.fallback_limit}: {e}")
            return await self.store.recent_keys(self.fallback_limit)

    async def deduplicate(self, candidates: list[CandidateArticle]) -> list[CandidateArticle]:
        existing = await self.lookup_existing(candidates)
        fresh = self.filter_new(candidates, existing)
        logger.info(f"Deduplicated {len(candidates)} candidates to {len(fresh)} new")
        return fresh
