"""
SQLAlchemy database models for Impact News.
Uses SQLAlchemy 2.0 async patterns.
"""
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.ext.asyncio import AsyncAttrs, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.pool import StaticPool


# =============================================================================
# Base
# =============================================================================

class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all database models."""
    pass


# =============================================================================
# Articles
# =============================================================================

class DBArticle(Base):
    """Stored article. Written once at ingestion, never updated."""
    __tablename__ = "articles"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    source_id: Mapped[str] = mapped_column(String(50), nullable=False)
    # Dedup key: provider GUID when available, otherwise the URL
    source_guid: Mapped[str] = mapped_column(Text, nullable=False)

    title: Mapped[str] = mapped_column(Text, nullable=False)
    content: Mapped[str] = mapped_column(Text, default="")
    description: Mapped[Optional[str]] = mapped_column(Text)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    image_url: Mapped[Optional[str]] = mapped_column(Text)
    source_name: Mapped[str] = mapped_column(String(255), nullable=False)
    language: Mapped[str] = mapped_column(String(10), default="en")
    published_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    category: Mapped[str] = mapped_column(String(50), default="general")
    tags: Mapped[list[str]] = mapped_column(JSON, default=list)
    # "|tag1|tag2|" so tag filters can use LIKE on any backend
    tags_index: Mapped[str] = mapped_column(Text, default="|")
    relevance_score: Mapped[Optional[int]] = mapped_column(Integer)
    # Score suggested by the provider (votes, sentiment); informational only
    provider_score: Mapped[Optional[int]] = mapped_column(Integer)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now())

    __table_args__ = (
        UniqueConstraint("source_id", "source_guid", name="uq_articles_source_guid"),
        Index("ix_articles_url", "url"),
        Index("ix_articles_published_at", "published_at"),
        Index("ix_articles_category_published", "category", "published_at"),
        Index("ix_articles_relevance", "relevance_score"),
    )


# =============================================================================
# Users
# =============================================================================

class DBUserPreferences(Base):
    """User's personalization preferences."""
    __tablename__ = "user_preferences"

    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)

    keywords: Mapped[list[str]] = mapped_column(JSON, default=list)
    excluded_keywords: Mapped[list[str]] = mapped_column(JSON, default=list)
    categories: Mapped[list[str]] = mapped_column(JSON, default=list)
    sources: Mapped[list[str]] = mapped_column(JSON, default=list)
    languages: Mapped[list[str]] = mapped_column(JSON, default=list)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), onupdate=func.now())


# =============================================================================
# Aggregation bookkeeping
# =============================================================================

class DBAggregationLog(Base):
    """Append-only aggregation run record."""
    __tablename__ = "aggregation_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now())

    __table_args__ = (
        Index("ix_aggregation_logs_created", "created_at"),
        Index("ix_aggregation_logs_event", "event_type", "created_at"),
    )


class DBSystemSetting(Base):
    """Small keyed JSON settings (aggregation status, schedule)."""
    __tablename__ = "system_settings"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), onupdate=func.now())


class DBSourceState(Base):
    """Per-source freshness state read by the cache gate."""
    __tablename__ = "source_state"

    source_id: Mapped[str] = mapped_column(String(50), primary_key=True)
    last_run: Mapped[Optional[datetime]] = mapped_column(DateTime)
    rate_limited: Mapped[bool] = mapped_column(Boolean, default=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), onupdate=func.now())


class DBProviderCache(Base):
    """Last good provider payload, with expiry."""
    __tablename__ = "provider_cache"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now())


# =============================================================================
# Database Connection
# =============================================================================

class Database:
    """Database connection manager."""

    def __init__(self, database_url: str, echo: bool = False):
        engine_kwargs: dict[str, Any] = {"echo": echo, "future": True}
        if ":memory:" in database_url:
            # One shared connection, otherwise every session sees an empty database
            engine_kwargs["poolclass"] = StaticPool
            engine_kwargs["connect_args"] = {"check_same_thread": False}
        self.engine = create_async_engine(database_url, **engine_kwargs)
        self.async_session = async_sessionmaker(
            self.engine,
            expire_on_commit=False,
        )

    async def create_tables(self):
        """Create all tables."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def drop_tables(self):
        """Drop all tables (use with caution!)."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    async def get_session(self):
        """Get a database session."""
        async with self.async_session() as session:
            yield session

    async def dispose(self):
        await self.engine.dispose()
