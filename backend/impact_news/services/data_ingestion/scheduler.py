"""
Scheduled aggregation - decides on each wake-up whether a run is due.

APScheduler wakes `ScheduledAggregation.tick()` on a fixed interval. The
actual cadence lives in the persisted `aggregation_status` setting
(`enabled`, `frequency`, `next_scheduled`), so it can be changed at
runtime without touching the job.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

import structlog

from impact_news.models.domain import IngestionOptions, RunStatus, ScheduleUpdate
from impact_news.services.data_ingestion.aggregator import STATUS_SETTING, AggregationOrchestrator
from impact_news.services.storage import ArticleStore

logger = structlog.get_logger(__name__)

SCHEDULED_EVENT = "scheduled_aggregation"
DEFAULT_FREQUENCY = "15min"

FREQUENCIES: dict[str, timedelta] = {
    "15min": timedelta(minutes=15),
    "30min": timedelta(minutes=30),
    "1hour": timedelta(hours=1),
    "3hours": timedelta(hours=3),
    "6hours": timedelta(hours=6),
    "12hours": timedelta(hours=12),
    "24hours": timedelta(hours=24),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def calculate_next_run(frequency: Optional[str], now: datetime) -> datetime:
    """Next run time; unknown frequencies fall back to 15 minutes."""
    return now + FREQUENCIES.get(frequency or DEFAULT_FREQUENCY, FREQUENCIES[DEFAULT_FREQUENCY])


def _parse(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


class ScheduledAggregation:
    """
    Wraps the orchestrator with the persisted schedule.

    Features:
    - Honors the `enabled` flag (a disabled schedule still advances next_scheduled)
    - Runs when next_scheduled is missing or has passed
    - Logs start and outcome under the scheduled_aggregation event
    """

    def __init__(
        self,
        orchestrator: AggregationOrchestrator,
        store: ArticleStore,
        default_frequency: str = DEFAULT_FREQUENCY,
        clock: Callable[[], datetime] = _utcnow,
        after_run: Optional[Callable[[], None]] = None,
    ):
        self.orchestrator = orchestrator
        self.store = store
        self.default_frequency = default_frequency if default_frequency in FREQUENCIES else DEFAULT_FREQUENCY
        self.clock = clock
        # Called after every completed run, e.g. to drop read caches
        self.after_run = after_run

    async def get_schedule(self) -> dict[str, Any]:
        setting = await self.store.get_setting(STATUS_SETTING) or {}
        return {
            "enabled": setting.get("enabled", True),
            "frequency": setting.get("frequency") or self.default_frequency,
            "next_scheduled": setting.get("next_scheduled"),
        }

    async def update_schedule(self, update: ScheduleUpdate) -> dict[str, Any]:
        """Change enabled/frequency and recompute next_scheduled from now."""
        if update.frequency is not None and update.frequency not in FREQUENCIES:
            raise ValueError(f"Unknown frequency {update.frequency!r}; expected one of {list(FREQUENCIES)}")

        schedule = await self.get_schedule()
        if update.enabled is not None:
            schedule["enabled"] = update.enabled
        if update.frequency is not None:
            schedule["frequency"] = update.frequency
        schedule["next_scheduled"] = calculate_next_run(schedule["frequency"], self.clock()).isoformat()

        await self.store.upsert_setting(STATUS_SETTING, schedule)
        logger.info("Schedule updated", **schedule)
        return schedule

    async def tick(self) -> dict[str, Any]:
        """Run an aggregation if one is due; returns what happened."""
        now = self.clock()
        schedule = await self.get_schedule()
        frequency = schedule["frequency"]

        if not schedule["enabled"]:
            next_run = calculate_next_run(frequency, now).isoformat()
            await self.store.upsert_setting(STATUS_SETTING, {"next_scheduled": next_run})
            logger.info("Scheduled aggregation is disabled", next_scheduled=next_run)
            return {"status": "disabled", "next_scheduled": next_run}

        next_scheduled = _parse(schedule["next_scheduled"])
        if next_scheduled is not None and now < next_scheduled:
            return {
                "status": RunStatus.SKIPPED.value,
                "reason": "not due yet",
                "current_time": now.isoformat(),
                "next_scheduled": next_scheduled.isoformat(),
            }

        logger.info("Running scheduled aggregation", frequency=frequency)
        await self.store.append_log(
            SCHEDULED_EVENT,
            RunStatus.RUNNING,
            {"message": "Starting scheduled aggregation", "timestamp": now.isoformat()},
        )

        result = await self.orchestrator.run_aggregation(IngestionOptions(single_category=True))
        if self.after_run is not None:
            self.after_run()

        errors = [{"source": s.source_id, "error": s.error} for s in result.sources if s.error]
        await self.store.append_log(
            SCHEDULED_EVENT,
            result.status,
            {
                "counts": {s.source_id: s.inserted for s in result.sources},
                "total_count": result.total_inserted,
                "errors": errors or None,
                "timestamp": self.clock().isoformat(),
            },
        )

        next_run = calculate_next_run(frequency, self.clock()).isoformat()
        await self.store.upsert_setting(STATUS_SETTING, {"next_scheduled": next_run})
        return {
            "status": result.status.value,
            "total_count": result.total_inserted,
            "errors": errors or None,
            "next_scheduled": next_run,
        }
