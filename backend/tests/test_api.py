"""
Tests for the HTTP API.

Each test gets an app with the API router and its own lifespan that
wires the services against a seeded in-memory database.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from impact_news.api.routes import Services, router, set_services
from impact_news.config import IngestionSettings, get_settings
from impact_news.models.database import Database
from impact_news.services.articles import ArticleService
from impact_news.services.data_ingestion.aggregator import AggregationOrchestrator
from impact_news.services.data_ingestion.scheduler import ScheduledAggregation
from impact_news.services.storage import ArticleStore, build_article_row
from impact_news.sources.base import CandidateArticle, SourceAdapter

MEMORY_URL = "sqlite+aiosqlite:///:memory:"


def hours_ago(hours: float) -> datetime:
    return datetime.now(timezone.utc) - timedelta(hours=hours)


SEED = {
    "openai": dict(
        title="OpenAI releases a new reasoning model",
        category="llm",
        tags=["ai", "openai"],
        source_id="newsapi",
        source_name="TechCrunch",
        hours=2,
        score=60,
    ),
    "rally": dict(
        title="Bitcoin rallies as ETF inflows grow",
        category="crypto",
        tags=["bitcoin", "etf"],
        source_id="coindesk",
        source_name="CoinDesk",
        hours=3,
        score=55,
    ),
    "outage": dict(
        title="Crypto exchange suffers a brief outage",
        category="crypto",
        tags=["exchange"],
        source_id="coindesk",
        source_name="CoinDesk",
        hours=4,
        score=40,
    ),
    "miners": dict(
        title="Bitcoin miners expand capacity in Texas",
        category="crypto",
        tags=["bitcoin", "mining"],
        source_id="crypto_rss",
        source_name="Decrypt",
        hours=20,
        score=45,
    ),
    "upgrade": dict(
        title="Ethereum upgrade date confirmed by developers",
        category="web3",
        tags=["ethereum"],
        source_id="crypto_rss",
        source_name="Decrypt",
        hours=30,
        score=50,
    ),
}


def seed_candidate(key: str) -> CandidateArticle:
    spec = SEED[key]
    return CandidateArticle(
        title=spec["title"],
        url=f"https://news.test/{key}",
        source_name=spec["source_name"],
        source_id=spec["source_id"],
        published_at=hours_ago(spec["hours"]),
        content=f"Full story text about {spec['title'].lower()}.",
        category=spec["category"],
        tags=spec["tags"],
    )


class StaticAdapter(SourceAdapter):
    """Adapter that always returns the same single article."""

    source_id = "coindesk"
    name = "CoinDesk"

    def is_configured(self) -> bool:
        return True

    async def fetch_batch(self, client, params):
        return {"url": "https://news.test/fresh", "published_at": hours_ago(1).isoformat()}

    def to_candidates(self, payload):
        return [
            CandidateArticle(
                title="Fresh stablecoin rules proposed in Congress",
                url=payload["url"],
                source_name=self.name,
                source_id=self.source_id,
                published_at=datetime.fromisoformat(payload["published_at"]),
                content="Lawmakers introduced a stablecoin bill this week.",
            )
        ]


def offline_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(404)))


def build_app(adapters: list[SourceAdapter]) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        database = Database(MEMORY_URL)
        await database.create_tables()
        store = ArticleStore(database)

        rows = {key: build_article_row(seed_candidate(key), SEED[key]["score"]) for key in SEED}
        await store.insert_articles(list(rows.values()))
        app.state.ids = {key: row.id for key, row in rows.items()}

        orchestrator = AggregationOrchestrator(
            store,
            adapters,
            settings=IngestionSettings(inter_source_delay_seconds=0, insert_batch_delay_seconds=0),
            client_factory=offline_client,
        )
        set_services(
            Services(
                store=store,
                orchestrator=orchestrator,
                schedule=ScheduledAggregation(orchestrator, store),
                articles=ArticleService(store),
            )
        )
        yield
        set_services(None)
        await database.dispose()

    app = FastAPI(lifespan=lifespan)
    app.include_router(router, prefix="/api/v1")
    return app


@pytest.fixture
def client():
    app = build_app([StaticAdapter()])
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def ids(client):
    return client.app.state.ids


def titles(response) -> list[str]:
    return [a["title"] for a in response.json()["articles"]]


class TestArticleRoutes:
    """Tests for listing and single-article routes."""

    def test_list_newest_first(self, client):
        response = client.get("/api/v1/articles")

        assert response.status_code == 200
        data = response.json()
        assert data["total_count"] == 5
        assert "timestamp" in data
        assert titles(response)[0] == SEED["openai"]["title"]
        assert titles(response)[-1] == SEED["upgrade"]["title"]

    def test_filter_by_category(self, client):
        response = client.get("/api/v1/articles", params={"category": "crypto"})
        assert response.json()["total_count"] == 3

    def test_tags_require_every_tag(self, client):
        assert client.get("/api/v1/articles", params={"tags": "bitcoin"}).json()["total_count"] == 2
        assert titles(client.get("/api/v1/articles", params={"tags": "bitcoin,etf"})) == [SEED["rally"]["title"]]
        assert client.get("/api/v1/articles?tags=bitcoin&tags=ai").json()["total_count"] == 0

    def test_search(self, client):
        response = client.get("/api/v1/articles", params={"search": "outage"})
        assert titles(response) == [SEED["outage"]["title"]]

    def test_exclude_categories(self, client):
        response = client.get("/api/v1/articles", params={"exclude_categories": "crypto,web3"})
        assert titles(response) == [SEED["openai"]["title"]]

    def test_pagination(self, client):
        response = client.get("/api/v1/articles", params={"page": 2, "limit": 2})
        data = response.json()
        assert data["total_count"] == 5
        assert titles(response) == [SEED["outage"]["title"], SEED["miners"]["title"]]

    def test_sort_by_relevance(self, client):
        response = client.get("/api/v1/articles", params={"sort_by": "relevance_score"})
        scores = [a["relevance_score"] for a in response.json()["articles"]]
        assert scores == [60, 55, 50, 45, 40]

    def test_limit_bounds(self, client):
        assert client.get("/api/v1/articles", params={"limit": 0}).status_code == 422
        assert client.get("/api/v1/articles", params={"limit": 101}).status_code == 422

    def test_limit_follows_page_size_settings(self, client):
        settings = get_settings()
        for path in ("/api/v1/articles", "/api/v1/users/{user_id}/feed"):
            params = client.get("/openapi.json").json()["paths"][path]["get"]["parameters"]
            limit = next(p for p in params if p["name"] == "limit")["schema"]
            assert limit["default"] == settings.default_page_size
            assert limit["maximum"] == settings.max_page_size

    def test_get_article(self, client, ids):
        response = client.get(f"/api/v1/articles/{ids['rally']}")
        assert response.status_code == 200
        assert response.json()["tags"] == ["bitcoin", "etf"]

    def test_get_missing_article(self, client):
        assert client.get("/api/v1/articles/does-not-exist").status_code == 404

    def test_related_prefers_shared_tags(self, client, ids):
        response = client.get(f"/api/v1/articles/{ids['rally']}/related")

        assert response.status_code == 200
        assert titles(response) == [SEED["miners"]["title"], SEED["outage"]["title"]]

    def test_related_for_missing_article(self, client):
        assert client.get("/api/v1/articles/nope/related").status_code == 404

    def test_categories(self, client):
        data = client.get("/api/v1/categories").json()
        assert "crypto" in data["categories"]
        assert data["default"] == "general"


class TestUserRoutes:
    """Tests for preferences and personalized reads."""

    PREFS = {"keywords": ["bitcoin"], "categories": ["crypto"]}

    def test_unknown_user_has_empty_preferences(self, client):
        data = client.get("/api/v1/users/u1/preferences").json()
        assert data["user_id"] == "u1"
        assert data["keywords"] == []

    def test_partial_update_keeps_other_fields(self, client):
        client.put("/api/v1/users/u1/preferences", json=self.PREFS)
        response = client.put("/api/v1/users/u1/preferences", json={"languages": ["en"]})

        data = response.json()
        assert data["keywords"] == ["bitcoin"]
        assert data["languages"] == ["en"]
        assert client.get("/api/v1/users/u1/preferences").json()["categories"] == ["crypto"]

    def test_feed_ranked_by_preferences(self, client):
        client.put("/api/v1/users/u1/preferences", json=self.PREFS)

        response = client.get("/api/v1/users/u1/feed")

        data = response.json()
        scores = [a["personal_score"] for a in data["articles"]]
        assert data["total_count"] == 5
        assert titles(response)[0] == SEED["rally"]["title"]
        assert scores == sorted(scores, reverse=True)

    def test_feed_without_preferences_is_newest_first(self, client):
        response = client.get("/api/v1/users/nobody/feed", params={"limit": 3})

        scores = [a["personal_score"] for a in response.json()["articles"]]
        assert titles(response) == [SEED["openai"]["title"], SEED["rally"]["title"], SEED["outage"]["title"]]
        assert scores == sorted(scores, reverse=True)

    def test_feed_with_only_excluded_keywords_demotes_matches(self, client):
        client.put("/api/v1/users/u2/preferences", json={"excluded_keywords": ["openai"]})

        response = client.get("/api/v1/users/u2/feed")

        articles = response.json()["articles"]
        scores = [a["personal_score"] for a in articles]
        assert titles(response)[0] == SEED["rally"]["title"]
        assert titles(response)[-1] == SEED["openai"]["title"]
        assert articles[-1]["personal_score"] == 0
        assert scores == sorted(scores, reverse=True)

    def test_articles_expose_provider_score(self, client, ids):
        assert client.get(f"/api/v1/articles/{ids['rally']}").json()["provider_score"] is None

    def test_relevance_breakdown(self, client, ids):
        client.put("/api/v1/users/u1/preferences", json=self.PREFS)

        response = client.get(f"/api/v1/users/u1/articles/{ids['rally']}/relevance")

        data = response.json()
        assert data["article_id"] == ids["rally"]
        assert data["breakdown"]["category"] == 20
        assert data["breakdown"]["matched_keywords"] == ["bitcoin"]
        assert 0 <= data["score"] <= 100
        assert data["label"] in {"Very Low", "Low", "Medium", "High", "Very High"}

    def test_relevance_for_missing_article(self, client):
        assert client.get("/api/v1/users/u1/articles/nope/relevance").status_code == 404

    def test_missed_skips_viewed(self, client, ids):
        client.put("/api/v1/users/u1/preferences", json=self.PREFS)

        response = client.get("/api/v1/users/u1/missed", params={"viewed": ids["rally"], "limit": 2})

        missed = [a["id"] for a in response.json()["articles"]]
        assert ids["rally"] not in missed
        assert len(missed) == 2


class TestAggregationRoutes:
    """Tests for the aggregation trigger, status and schedule."""

    def test_run_inserts_and_reports(self, client):
        response = client.post("/api/v1/aggregation/run", json={"forceUpdate": True})

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "success"
        assert data["count"] == 1
        assert data["sources"][0]["source_id"] == "coindesk"
        assert "error" not in data
        assert client.get("/api/v1/articles").json()["total_count"] == 6

    def test_run_without_body(self, client):
        assert client.post("/api/v1/aggregation/run").json()["status"] == "success"

    def test_status_and_logs(self, client):
        client.post("/api/v1/aggregation/run")

        status = client.get("/api/v1/aggregation/status").json()
        assert status["last_run"]["status"] == "success"
        assert status["article_count"] == 6
        assert status["schedule"]["frequency"] == "15min"

        logs = client.get("/api/v1/aggregation/logs", params={"event_type": "aggregation"}).json()["logs"]
        assert [log["status"] for log in logs] == ["success", "running"]

    def test_update_schedule(self, client):
        response = client.put("/api/v1/aggregation/schedule", json={"frequency": "6hours", "enabled": False})
        assert response.status_code == 200
        assert response.json()["frequency"] == "6hours"
        assert client.get("/api/v1/aggregation/status").json()["schedule"]["enabled"] is False

    def test_update_schedule_rejects_unknown_frequency(self, client):
        response = client.put("/api/v1/aggregation/schedule", json={"frequency": "5min"})
        assert response.status_code == 400

    def test_no_sources_is_server_error(self):
        with TestClient(build_app([])) as client:
            response = client.post("/api/v1/aggregation/run")
        assert response.status_code == 500
        assert response.json()["error"] == "no sources configured"


class TestServiceWiring:
    def test_unwired_app_is_unavailable(self):
        app = FastAPI()
        app.include_router(router, prefix="/api/v1")
        with TestClient(app) as client:
            assert client.get("/api/v1/articles").status_code == 503
            assert client.get("/api/v1/health").status_code == 200
