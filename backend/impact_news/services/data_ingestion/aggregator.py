"""
Aggregation orchestrator - runs one ingestion pass over every provider.

For each registered source, in order:
    cache gate -> circuit breaker -> fetch (with retries) -> candidates
then, over the combined candidate list:
    classify -> base score -> deduplicate -> batched insert -> run records

The entry point never raises: every failure ends up in the returned
AggregationResult and in the aggregation log.
"""

import asyncio
from collections import Counter, defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

import httpx
import structlog
from sqlalchemy.exc import SQLAlchemyError

from impact_news.config import IngestionSettings, Settings
from impact_news.core.errors import (
    AuthenticationError,
    CircuitOpenError,
    MalformedPayloadError,
    RateLimitedError,
    UpstreamError,
)
from impact_news.models.domain import (
    AggregationResult,
    IngestionOptions,
    RunStatus,
    SourceCondition,
    SourceRunResult,
)
from impact_news.services.classification import Classifier
from impact_news.services.data_ingestion.cache_gate import CacheGate, cache_key
from impact_news.services.data_ingestion.deduplication import Deduplicator
from impact_news.services.data_ingestion.rate_limiter import RateGuard, RetryPolicy, Sleep
from impact_news.services.scoring import BaseScorer
from impact_news.services.storage import ArticleStore, build_article_row
from impact_news.sources import (
    CoinDeskAdapter,
    CryptoPanicAdapter,
    FireCrawlAdapter,
    NewsAPIAdapter,
    RSSCrawlerAdapter,
)
from impact_news.sources.base import CandidateArticle, FetchParams, SourceAdapter

logger = structlog.get_logger(__name__)

AGGREGATION_EVENT = "aggregation"
SOURCE_EVENT = "source_fetch"
STATUS_SETTING = "aggregation_status"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def build_adapters(settings: Settings, sleep: Optional[Sleep] = None) -> list[SourceAdapter]:
    """Instantiate every provider adapter from settings, in run order."""
    ingestion = settings.ingestion
    policy = RetryPolicy(
        base_delay=ingestion.retry_base_delay_seconds,
        max_delay=ingestion.retry_max_delay_seconds,
        max_retries=ingestion.max_retries,
    )
    return [
        NewsAPIAdapter(
            api_key=settings.newsapi_key,
            enabled=settings.newsapi_enabled,
            inter_call_delay=ingestion.inter_call_delay_seconds,
            policy=policy,
            sleep=sleep,
        ),
        CoinDeskAdapter(
            api_key=settings.coindesk_api_key,
            enabled=settings.coindesk_enabled,
            limit=settings.coindesk_limit,
            policy=policy,
            sleep=sleep,
        ),
        CryptoPanicAdapter(
            api_key=settings.cryptopanic_api_key,
            enabled=settings.cryptopanic_enabled,
            post_filter=settings.cryptopanic_filter,
            currencies=settings.cryptopanic_currencies,
            regions=settings.cryptopanic_regions,
            kind=settings.cryptopanic_kind,
            policy=policy,
            sleep=sleep,
        ),
        RSSCrawlerAdapter(
            sites=settings.crawl_sites,
            enabled=settings.crypto_rss_enabled,
            items_per_site=settings.crawl_items_per_site,
            policy=policy,
            sleep=sleep,
        ),
        FireCrawlAdapter(
            api_key=settings.firecrawl_api_key,
            enabled=settings.firecrawl_enabled,
            urls=settings.firecrawl_urls,
            prompt=settings.firecrawl_prompt,
            policy=policy,
            sleep=sleep,
        ),
    ]


class AggregationOrchestrator:
    """
    Runs aggregation passes over a list of source adapters.

    Features:
    - Sequential per-source processing with an inter-source delay
    - Per-source circuit breaker and cache gate
    - Distinct run-record conditions per failure class
    - Batched inserts; a failed batch is recorded and the next one proceeds
    - One run at a time; a concurrent trigger is reported as skipped
    """

    def __init__(
        self,
        store: ArticleStore,
        adapters: list[SourceAdapter],
        settings: Optional[IngestionSettings] = None,
        guard: Optional[RateGuard] = None,
        cache_gate: Optional[CacheGate] = None,
        classifier: Optional[Classifier] = None,
        scorer: Optional[BaseScorer] = None,
        deduplicator: Optional[Deduplicator] = None,
        client_factory: Optional[Callable[[], httpx.AsyncClient]] = None,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.adapters = adapters
        self.settings = settings or IngestionSettings()
        self.clock = clock
        self.sleep = sleep

        self.guard = guard or RateGuard(
            failure_threshold=self.settings.breaker_failure_threshold,
            cooldown=timedelta(minutes=self.settings.breaker_cooldown_minutes),
            clock=clock,
        )
        self.cache_gate = cache_gate or CacheGate(
            store,
            ttl=timedelta(minutes=self.settings.cache_ttl_minutes),
            min_refresh=timedelta(minutes=self.settings.min_refresh_minutes),
            rate_limited_window=timedelta(minutes=self.settings.rate_limited_cache_minutes),
            clock=clock,
        )
        self.classifier = classifier or Classifier()
        self.scorer = scorer or BaseScorer()
        self.deduplicator = deduplicator or Deduplicator(
            store,
            fallback_limit=self.settings.dedup_fallback_limit,
            chunk_size=self.settings.dedup_query_chunk,
        )
        self.client_factory = client_factory or (
            lambda: httpx.AsyncClient(timeout=self.settings.http_timeout_seconds)
        )

        self._lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    async def run_aggregation(self, options: Optional[IngestionOptions] = None) -> AggregationResult:
        """Run one aggregation pass. Never raises."""
        options = options or IngestionOptions()

        if self._lock.locked():
            logger.warning("Aggregation already running, skipping trigger")
            return AggregationResult(
                status=RunStatus.SKIPPED,
                started_at=self.clock(),
                finished_at=self.clock(),
                error="an aggregation run is already in progress",
            )

        async with self._lock:
            started_at = self.clock()
            try:
                return await self._run(options, started_at)
            except Exception as e:
                logger.exception("Aggregation failed", error=str(e))
                result = AggregationResult(
                    status=RunStatus.ERROR,
                    started_at=started_at,
                    finished_at=self.clock(),
                    error=str(e),
                )
                await self._record_failure(result)
                return result

    async def _run(self, options: IngestionOptions, started_at: datetime) -> AggregationResult:
        logger.info(
            "Starting aggregation",
            sources=[a.source_id for a in self.adapters],
            force_update=options.force_update,
            single_category=options.single_category,
        )
        await self.store.append_log(
            AGGREGATION_EVENT,
            RunStatus.RUNNING,
            {"started_at": started_at.isoformat(), "options": options.model_dump()},
        )

        params = FetchParams(
            languages=options.languages or ["en"],
            single_category=options.single_category,
        )
        results: list[SourceRunResult] = []
        candidates: list[CandidateArticle] = []

        async with self.client_factory() as client:
            for index, adapter in enumerate(self.adapters):
                if index > 0:
                    await self._pause(self.settings.inter_source_delay_seconds)
                try:
                    result, source_candidates = await self._process_source(client, adapter, params, options)
                except Exception as e:
                    logger.exception("Unexpected source failure", source=adapter.source_id, error=str(e))
                    result = SourceRunResult(
                        source_id=adapter.source_id,
                        status=RunStatus.ERROR,
                        condition=SourceCondition.UPSTREAM_ERROR,
                        error=str(e),
                    )
                    source_candidates = []
                results.append(result)
                candidates.extend(source_candidates)

        by_source = {r.source_id: r for r in results}
        insert_errors = await self._persist(candidates, by_source)

        for result in results:
            if result.insert_errors and result.status == RunStatus.SUCCESS:
                result.status = RunStatus.PARTIAL_SUCCESS
            await self.store.append_log(SOURCE_EVENT, result.status, result.model_dump(mode="json"))

        status, error = self._overall_status(results, insert_errors)
        result = AggregationResult(
            status=status,
            started_at=started_at,
            finished_at=self.clock(),
            total_inserted=sum(r.inserted for r in results),
            sources=results,
            error=error,
        )

        details = result.model_dump(mode="json")
        details["insert_errors"] = insert_errors
        await self.store.append_log(AGGREGATION_EVENT, status, details)
        await self.store.upsert_setting(
            STATUS_SETTING,
            {
                "last_run": result.finished_at.isoformat(),
                "status": status.value,
                "count": result.total_inserted,
                "error": error,
            },
        )

        logger.info(
            "Aggregation completed",
            status=status.value,
            inserted=result.total_inserted,
            elapsed_seconds=(result.finished_at - started_at).total_seconds(),
        )
        return result

    # ------------------------------------------------------------------
    # Per source
    # ------------------------------------------------------------------

    async def _process_source(
        self,
        client: httpx.AsyncClient,
        adapter: SourceAdapter,
        params: FetchParams,
        options: IngestionOptions,
    ) -> tuple[SourceRunResult, list[CandidateArticle]]:
        source_id = adapter.source_id
        log = logger.bind(source=source_id)
        result = SourceRunResult(source_id=source_id, status=RunStatus.SUCCESS)

        if not adapter.is_configured():
            log.info("Source not configured, skipping")
            result.status = RunStatus.SKIPPED
            result.condition = SourceCondition.NOT_CONFIGURED
            return result, []

        key = cache_key(source_id, params.languages, params.single_category)
        payload: Optional[dict[str, Any]] = None

        if not options.force_update and await self.cache_gate.should_use_cache(source_id):
            payload = await self.cache_gate.get_cached(key)
            if payload is not None:
                log.info("Using cached payload")
                result.from_cache = True
                result.condition = SourceCondition.CACHED
            else:
                log.info("Cache gate chose cache but nothing valid is cached, fetching fresh")

        if payload is None:
            if not self.guard.attempt(source_id):
                error = CircuitOpenError(source_id, self.guard.retry_after(source_id))
                log.warning("Circuit open, skipping source", retry_after=str(error.retry_after))
                result.status = RunStatus.ERROR
                result.condition = SourceCondition.CIRCUIT_OPEN
                result.retry_after = error.retry_after
                result.error = str(error)
                return result, []

            try:
                payload = await adapter.fetch_batch(client, params)
            except RateLimitedError as e:
                self.guard.record_failure(source_id)
                await self.cache_gate.mark_rate_limited(source_id)
                payload = await self.cache_gate.get_cached(key)
                result.condition = SourceCondition.RATE_LIMITED
                result.error = str(e)
                if payload is None:
                    log.warning("Rate limited with no cached payload", error=str(e))
                    result.status = RunStatus.ERROR
                    return result, []
                log.warning("Rate limited, falling back to cached payload")
                result.status = RunStatus.PARTIAL_SUCCESS
                result.from_cache = True
            except AuthenticationError as e:
                self.guard.record_failure(source_id)
                log.error("Source rejected credentials", status_code=e.status_code, error=str(e))
                result.status = RunStatus.ERROR
                result.condition = SourceCondition.AUTH_ERROR
                result.error = str(e)
                return result, []
            except MalformedPayloadError as e:
                log.error("Malformed provider payload", error=str(e))
                result.status = RunStatus.ERROR
                result.condition = SourceCondition.MALFORMED_PAYLOAD
                result.error = str(e)
                return result, []
            except UpstreamError as e:
                self.guard.record_failure(source_id)
                log.warning("Upstream failure", status_code=e.status_code, error=str(e))
                result.status = RunStatus.ERROR
                result.condition = SourceCondition.UPSTREAM_ERROR
                result.error = str(e)
                return result, []
            else:
                self.guard.record_success(source_id)
                await self.cache_gate.set_cached(key, payload)
                await self.cache_gate.mark_run(source_id)

        try:
            candidates = adapter.to_candidates(payload)
        except MalformedPayloadError as e:
            log.error("Malformed provider payload", error=str(e))
            result.status = RunStatus.ERROR
            result.condition = SourceCondition.MALFORMED_PAYLOAD
            result.error = str(e)
            return result, []

        result.valid = len(candidates)
        log.info("Source fetched", valid=result.valid, from_cache=result.from_cache)
        return result, candidates

    # ------------------------------------------------------------------
    # Classification, dedup and persistence
    # ------------------------------------------------------------------

    async def _persist(
        self,
        candidates: list[CandidateArticle],
        by_source: dict[str, SourceRunResult],
    ) -> list[dict[str, Any]]:
        """Classify, score, dedup and insert. Returns the batch errors."""
        now = self.clock()
        scores: dict[int, int] = {}
        for candidate in candidates:
            self.classifier.apply(candidate)
            scores[id(candidate)] = self.scorer.score_at_ingestion(candidate, now)

        fresh = await self.deduplicator.deduplicate(candidates)
        for source_id, count in Counter(c.source_id for c in fresh).items():
            if source_id in by_source:
                by_source[source_id].new = count

        rows = [build_article_row(c, scores[id(c)]) for c in fresh]
        batch_size = self.settings.insert_batch_size
        insert_errors: list[dict[str, Any]] = []

        for start in range(0, len(rows), batch_size):
            if start > 0:
                await self._pause(self.settings.insert_batch_delay_seconds)
            batch = rows[start:start + batch_size]
            per_source = Counter(row.source_id for row in batch)
            try:
                await self.store.insert_articles(batch)
            except SQLAlchemyError as e:
                logger.error("Batch insert failed", batch_start=start, size=len(batch), error=str(e))
                insert_errors.append({"batch_start": start, "size": len(batch), "error": str(e)})
                for source_id in per_source:
                    if source_id in by_source:
                        by_source[source_id].insert_errors.append(str(e))
                continue
            for source_id, count in per_source.items():
                if source_id in by_source:
                    by_source[source_id].inserted += count

        self._log_score_seeds(candidates)
        return insert_errors

    def _log_score_seeds(self, candidates: list[CandidateArticle]) -> None:
        seeds: dict[str, list[int]] = defaultdict(list)
        for candidate in candidates:
            if candidate.score_seed is not None:
                seeds[candidate.source_id].append(candidate.score_seed)
        for source_id, values in seeds.items():
            logger.info(
                "Provider score seeds",
                source=source_id,
                avg_score_seed=round(sum(values) / len(values), 1),
            )

    def _overall_status(
        self,
        results: list[SourceRunResult],
        insert_errors: list[dict[str, Any]],
    ) -> tuple[RunStatus, Optional[str]]:
        attempted = [r for r in results if r.condition != SourceCondition.NOT_CONFIGURED]
        failed = [r for r in attempted if r.status == RunStatus.ERROR]

        if not attempted:
            return RunStatus.ERROR, "no sources configured"
        if len(failed) == len(attempted):
            return RunStatus.ERROR, "; ".join(f"{r.source_id}: {r.error}" for r in failed)
        if failed or insert_errors or any(r.status == RunStatus.PARTIAL_SUCCESS for r in attempted):
            error = "; ".join(f"{r.source_id}: {r.error}" for r in failed) or None
            if insert_errors and not error:
                error = f"{len(insert_errors)} insert batch(es) failed"
            return RunStatus.PARTIAL_SUCCESS, error
        return RunStatus.SUCCESS, None

    async def _record_failure(self, result: AggregationResult) -> None:
        try:
            await self.store.append_log(AGGREGATION_EVENT, RunStatus.ERROR, result.model_dump(mode="json"))
            await self.store.upsert_setting(
                STATUS_SETTING,
                {
                    "last_run": result.finished_at.isoformat(),
                    "status": RunStatus.ERROR.value,
                    "count": 0,
                    "error": result.error,
                },
            )
        except SQLAlchemyError as e:
            logger.error("Could not record aggregation failure", error=str(e))

    async def _pause(self, seconds: float) -> None:
        if seconds > 0:
            await self.sleep(seconds)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    async def status_snapshot(self) -> dict[str, Any]:
        """Last run summary, breaker state and per-source gate state."""
        return {
            "running": self.is_running,
            "last_run": await self.store.get_setting(STATUS_SETTING) or {},
            "breakers": self.guard.get_all_status(),
            "sources": await self.store.all_source_states(),
            "article_count": await self.store.count_articles(),
        }
