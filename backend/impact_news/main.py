"""
Main FastAPI application for Impact News.
"""
import logging
from contextlib import asynccontextmanager
from datetime import timedelta

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from impact_news.api.routes import Services, router, set_services
from impact_news.config import Settings, get_settings
from impact_news.models.database import Database
from impact_news.services.articles import ArticleService
from impact_news.services.data_ingestion.aggregator import AggregationOrchestrator, build_adapters
from impact_news.services.data_ingestion.scheduler import ScheduledAggregation
from impact_news.services.storage import ArticleStore

# Configure structured logging
logging.basicConfig(level=get_settings().log_level.upper(), format="%(message)s")
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

logger = structlog.get_logger()

# Global instances
database: Database = None
scheduler: AsyncIOScheduler = None
services: Services = None


def create_services(settings: Settings, database: Database) -> Services:
    """Wire the store, orchestrator, schedule and read service together."""
    store = ArticleStore(database)
    orchestrator = AggregationOrchestrator(
        store,
        build_adapters(settings),
        settings=settings.ingestion,
    )
    articles = ArticleService(
        store,
        ranking_window=settings.ranking_window,
        cache_ttl=timedelta(seconds=settings.read_cache_ttl_seconds),
        max_cached_windows=settings.read_cache_max_entries,
    )
    return Services(
        store=store,
        orchestrator=orchestrator,
        schedule=ScheduledAggregation(
            orchestrator,
            store,
            default_frequency=settings.aggregation_default_frequency,
            after_run=articles.invalidate_cache,
        ),
        articles=articles,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager - handles startup and shutdown."""
    global database, scheduler, services

    settings = get_settings()

    # Initialize database
    logger.info("Initializing database", url=settings.database_url)
    database = Database(settings.database_url, echo=settings.debug)
    await database.create_tables()

    services = create_services(settings, database)
    set_services(services)
    logger.info(
        "Source adapters initialized",
        sources=[a.source_id for a in services.orchestrator.adapters if a.is_configured()],
    )

    # The job only wakes up; the persisted schedule decides whether a run is due
    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        run_scheduled_aggregation,
        IntervalTrigger(minutes=settings.aggregation_interval_minutes),
        id="scheduled_aggregation",
        name="Scheduled News Aggregation",
        replace_existing=True,
        max_instances=1,
    )
    scheduler.start()
    logger.info("Scheduler started", interval_minutes=settings.aggregation_interval_minutes)

    yield

    # Shutdown
    logger.info("Shutting down")
    if scheduler:
        scheduler.shutdown()
    set_services(None)
    await database.dispose()


async def run_scheduled_aggregation():
    """Scheduler wake-up: run an aggregation if the schedule says one is due."""
    try:
        outcome = await services.schedule.tick()
        logger.info("Scheduled aggregation check completed", **outcome)
    except Exception as e:
        logger.error("Scheduled aggregation check failed", error=str(e))


settings = get_settings()

# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="Personalized news aggregation and relevance ranking.",
    version=settings.app_version,
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(router, prefix="/api/v1")


# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "impact-news",
        "version": settings.app_version,
    }


# Root endpoint
@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "name": "Impact News API",
        "version": settings.app_version,
        "docs": "/docs",
        "endpoints": {
            "articles": "/api/v1/articles",
            "categories": "/api/v1/categories",
            "feed": "/api/v1/users/{user_id}/feed",
            "relevance": "/api/v1/users/{user_id}/articles/{article_id}/relevance",
            "missed": "/api/v1/users/{user_id}/missed",
            "preferences": "/api/v1/users/{user_id}/preferences",
            "aggregation": "/api/v1/aggregation/run",
        },
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "impact_news.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
