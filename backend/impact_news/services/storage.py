"""
Article store - the narrow persistence interface used by ingestion and the read API.

All datetimes are written as naive UTC (SQLite has no timezone support)
and handed back as aware UTC.
"""
import uuid
from datetime import datetime, timezone
from typing import Any, Iterable, Optional
import logging

from sqlalchemy import and_, func, or_, select

from impact_news.models.database import (
    Database,
    DBAggregationLog,
    DBArticle,
    DBProviderCache,
    DBSourceState,
    DBSystemSetting,
    DBUserPreferences,
)
from impact_news.models.domain import (
    AggregationRunRecord,
    ArticleFilters,
    ArticlePage,
    RunStatus,
    SortKey,
    StoredArticle,
    UserPreferences,
    UserPreferencesUpdate,
)
from impact_news.sources.base import CandidateArticle

logger = logging.getLogger(__name__)

DedupKey = tuple[str, ...]


def to_db_time(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def from_db_time(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def tags_index(tags: Iterable[str]) -> str:
    return "|" + "".join(f"{tag}|" for tag in tags)


def build_article_row(candidate: CandidateArticle, relevance_score: Optional[int]) -> DBArticle:
    """Map a classified, scored candidate onto a new article row."""
    tags = sorted({t.strip().lower() for t in candidate.tags if t and t.strip()})
    return DBArticle(
        id=str(uuid.uuid4()),
        source_id=candidate.source_id,
        source_guid=candidate.storage_guid,
        title=candidate.title,
        content=candidate.content or "",
        description=candidate.description,
        url=candidate.url,
        image_url=candidate.image_url,
        source_name=candidate.source_name,
        language=candidate.language or "en",
        published_at=to_db_time(candidate.published_at),
        category=candidate.category or "general",
        tags=tags,
        tags_index=tags_index(tags),
        relevance_score=relevance_score,
        provider_score=candidate.score_seed,
        created_at=to_db_time(datetime.now(timezone.utc)),
    )


def _to_domain(row: DBArticle) -> StoredArticle:
    return StoredArticle(
        id=row.id,
        title=row.title,
        content=row.content or "",
        description=row.description,
        url=row.url,
        image_url=row.image_url,
        source_name=row.source_name,
        source_id=row.source_id,
        source_guid=row.source_guid,
        language=row.language or "en",
        published_at=from_db_time(row.published_at),
        category=row.category or "general",
        tags=list(row.tags or []),
        relevance_score=row.relevance_score,
        provider_score=row.provider_score,
        created_at=from_db_time(row.created_at),
    )


class ArticleStore:
    """Async persistence operations over the SQLAlchemy models."""

    def __init__(self, database: Database):
        self.db = database

    # ------------------------------------------------------------------
    # Articles: writes and dedup lookups
    # ------------------------------------------------------------------

    async def insert_articles(self, rows: list[DBArticle]) -> int:
        """Insert one batch in a single transaction. Raises on failure."""
        if not rows:
            return 0
        async with self.db.async_session() as session:
            session.add_all(rows)
            await session.commit()
        return len(rows)

    async def existing_keys(self, keys: Iterable[DedupKey], chunk_size: int = 200) -> set[DedupKey]:
        """
        Which of the given dedup keys are already stored.

        Runs bounded IN queries, chunk_size keys at a time.
        """
        guids_by_source: dict[str, list[str]] = {}
        for key in keys:
            if key[0] == "guid":
                guids_by_source.setdefault(key[1], []).append(key[2])
        urls = sorted({k[1] for k in keys if k[0] == "url"})
        found: set[DedupKey] = set()

        async with self.db.async_session() as session:
            for source_id, guids in guids_by_source.items():
                guids = sorted(set(guids))
                for start in range(0, len(guids), chunk_size):
                    chunk = guids[start:start + chunk_size]
                    result = await session.execute(
                        select(DBArticle.source_guid).where(
                            DBArticle.source_id == source_id,
                            DBArticle.source_guid.in_(chunk),
                        )
                    )
                    found.update(("guid", source_id, guid) for (guid,) in result.all())

            for start in range(0, len(urls), chunk_size):
                chunk = urls[start:start + chunk_size]
                result = await session.execute(select(DBArticle.url).where(DBArticle.url.in_(chunk)))
                found.update(("url", url) for (url,) in result.all())

        return found

    async def recent_keys(self, limit: int = 500) -> set[DedupKey]:
        """Dedup keys of the most recently stored articles."""
        async with self.db.async_session() as session:
            result = await session.execute(
                select(DBArticle.source_id, DBArticle.source_guid, DBArticle.url)
                .order_by(DBArticle.created_at.desc())
                .limit(limit)
            )
            keys: set[DedupKey] = set()
            for sid, guid, url in result.all():
                keys.add(("guid", sid, guid))
                keys.add(("url", url))
            return keys

    # ------------------------------------------------------------------
    # Articles: reads
    # ------------------------------------------------------------------

    def _filtered(self, filters: ArticleFilters):
        conditions = []
        if filters.category:
            conditions.append(DBArticle.category == filters.category)
        if filters.exclude_categories:
            conditions.append(DBArticle.category.not_in(filters.exclude_categories))
        for tag in filters.tags:
            tag = tag.strip().lower()
            if tag:
                conditions.append(DBArticle.tags_index.contains(f"|{tag}|"))
        if filters.search:
            pattern = f"%{filters.search.strip()}%"
            conditions.append(or_(DBArticle.title.ilike(pattern), DBArticle.content.ilike(pattern)))
        if filters.from_date:
            conditions.append(DBArticle.published_at >= to_db_time(filters.from_date))
        if filters.to_date:
            conditions.append(DBArticle.published_at <= to_db_time(filters.to_date))
        return and_(*conditions) if conditions else None

    def _ordering(self, sort_by: SortKey):
        if sort_by == SortKey.RELEVANCE_SCORE:
            return [DBArticle.relevance_score.desc().nulls_last(), DBArticle.published_at.desc()]
        if sort_by == SortKey.RANDOM:
            # Placeholder ordering, not actually random
            return [DBArticle.id.desc()]
        return [DBArticle.published_at.desc(), DBArticle.id]

    async def query_articles(self, filters: ArticleFilters) -> ArticlePage:
        where = self._filtered(filters)
        query = select(DBArticle)
        count_query = select(func.count(DBArticle.id))
        if where is not None:
            query = query.where(where)
            count_query = count_query.where(where)

        query = (
            query.order_by(*self._ordering(filters.sort_by))
            .offset((filters.page - 1) * filters.limit)
            .limit(filters.limit)
        )

        async with self.db.async_session() as session:
            total = (await session.execute(count_query)).scalar() or 0
            rows = (await session.execute(query)).scalars().all()

        return ArticlePage(articles=[_to_domain(r) for r in rows], total_count=total)

    async def get_article(self, article_id: str) -> Optional[StoredArticle]:
        async with self.db.async_session() as session:
            row = await session.get(DBArticle, article_id)
            return _to_domain(row) if row else None

    async def related_articles(self, article: StoredArticle, limit: int = 3) -> list[StoredArticle]:
        """Same-category articles, those sharing tags first."""
        async with self.db.async_session() as session:
            related: list[DBArticle] = []
            seen = {article.id}

            if article.tags:
                tag_match = or_(*[DBArticle.tags_index.contains(f"|{t}|") for t in article.tags])
                result = await session.execute(
                    select(DBArticle)
                    .where(DBArticle.category == article.category, DBArticle.id != article.id, tag_match)
                    .order_by(DBArticle.published_at.desc())
                    .limit(limit)
                )
                for row in result.scalars().all():
                    related.append(row)
                    seen.add(row.id)

            if len(related) < limit:
                result = await session.execute(
                    select(DBArticle)
                    .where(DBArticle.category == article.category, DBArticle.id.not_in(seen))
                    .order_by(DBArticle.published_at.desc())
                    .limit(limit - len(related))
                )
                related.extend(result.scalars().all())

        return [_to_domain(r) for r in related]

    async def count_articles(self) -> int:
        async with self.db.async_session() as session:
            return (await session.execute(select(func.count(DBArticle.id)))).scalar() or 0

    # ------------------------------------------------------------------
    # Settings, provider cache, source state
    # ------------------------------------------------------------------

    async def get_setting(self, key: str) -> Optional[dict[str, Any]]:
        async with self.db.async_session() as session:
            row = await session.get(DBSystemSetting, key)
            return dict(row.value) if row else None

    async def upsert_setting(self, key: str, value: dict[str, Any], merge: bool = True) -> dict[str, Any]:
        async with self.db.async_session() as session:
            row = await session.get(DBSystemSetting, key)
            if row is None:
                row = DBSystemSetting(key=key, value=dict(value))
                session.add(row)
            else:
                # Reassign so the JSON column is flagged dirty
                row.value = {**row.value, **value} if merge else dict(value)
            await session.commit()
            return dict(row.value)

    async def get_cache(self, key: str, now: datetime) -> Optional[dict[str, Any]]:
        """Cached payload for key, or None if missing or expired."""
        async with self.db.async_session() as session:
            row = await session.get(DBProviderCache, key)
            if row is None or from_db_time(row.expires_at) <= now:
                return None
            return row.payload

    async def set_cache(self, key: str, payload: dict[str, Any], expires_at: datetime) -> None:
        async with self.db.async_session() as session:
            row = await session.get(DBProviderCache, key)
            if row is None:
                session.add(DBProviderCache(key=key, payload=payload, expires_at=to_db_time(expires_at)))
            else:
                row.payload = payload
                row.expires_at = to_db_time(expires_at)
            await session.commit()

    async def get_source_state(self, source_id: str) -> tuple[Optional[datetime], bool]:
        """(last_run, rate_limited) for a source."""
        async with self.db.async_session() as session:
            row = await session.get(DBSourceState, source_id)
            if row is None:
                return None, False
            return from_db_time(row.last_run), bool(row.rate_limited)

    async def upsert_source_state(
        self,
        source_id: str,
        last_run: Optional[datetime] = None,
        rate_limited: Optional[bool] = None,
    ) -> None:
        async with self.db.async_session() as session:
            row = await session.get(DBSourceState, source_id)
            if row is None:
                row = DBSourceState(source_id=source_id, rate_limited=False)
                session.add(row)
            if last_run is not None:
                row.last_run = to_db_time(last_run)
            if rate_limited is not None:
                row.rate_limited = rate_limited
            await session.commit()

    async def all_source_states(self) -> list[dict[str, Any]]:
        async with self.db.async_session() as session:
            rows = (await session.execute(select(DBSourceState).order_by(DBSourceState.source_id))).scalars().all()
            return [
                {
                    "source_id": r.source_id,
                    "last_run": from_db_time(r.last_run).isoformat() if r.last_run else None,
                    "rate_limited": bool(r.rate_limited),
                }
                for r in rows
            ]

    # ------------------------------------------------------------------
    # Aggregation log
    # ------------------------------------------------------------------

    async def append_log(self, event_type: str, status: RunStatus, details: dict[str, Any]) -> AggregationRunRecord:
        async with self.db.async_session() as session:
            row = DBAggregationLog(
                event_type=event_type,
                status=status.value,
                details=details,
                created_at=to_db_time(datetime.now(timezone.utc)),
            )
            session.add(row)
            await session.commit()
            return self._log_to_domain(row)

    async def recent_logs(self, limit: int = 50, event_type: Optional[str] = None) -> list[AggregationRunRecord]:
        query = select(DBAggregationLog).order_by(DBAggregationLog.id.desc()).limit(limit)
        if event_type:
            query = query.where(DBAggregationLog.event_type == event_type)
        async with self.db.async_session() as session:
            rows = (await session.execute(query)).scalars().all()
            return [self._log_to_domain(r) for r in rows]

    @staticmethod
    def _log_to_domain(row: DBAggregationLog) -> AggregationRunRecord:
        return AggregationRunRecord(
            id=row.id,
            event_type=row.event_type,
            status=RunStatus(row.status),
            details=row.details or {},
            created_at=from_db_time(row.created_at),
        )

    # ------------------------------------------------------------------
    # User preferences
    # ------------------------------------------------------------------

    async def get_preferences(self, user_id: str) -> Optional[UserPreferences]:
        async with self.db.async_session() as session:
            row = await session.get(DBUserPreferences, user_id)
            if row is None:
                return None
            return self._prefs_to_domain(row)

    async def upsert_preferences(self, user_id: str, update: UserPreferencesUpdate) -> UserPreferences:
        async with self.db.async_session() as session:
            row = await session.get(DBUserPreferences, user_id)
            if row is None:
                row = DBUserPreferences(
                    user_id=user_id,
                    keywords=[],
                    excluded_keywords=[],
                    categories=[],
                    sources=[],
                    languages=[],
                )
                session.add(row)
            for name, value in update.model_dump(exclude_none=True).items():
                setattr(row, name, list(value))
            row.updated_at = to_db_time(datetime.now(timezone.utc))
            await session.commit()
            return self._prefs_to_domain(row)

    @staticmethod
    def _prefs_to_domain(row: DBUserPreferences) -> UserPreferences:
        return UserPreferences(
            user_id=row.user_id,
            keywords=list(row.keywords or []),
            excluded_keywords=list(row.excluded_keywords or []),
            categories=list(row.categories or []),
            sources=list(row.sources or []),
            languages=list(row.languages or []),
            updated_at=from_db_time(row.updated_at),
        )
