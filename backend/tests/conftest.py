"""
Shared fixtures.

Async code is driven with asyncio.run; the store lives on an in-memory
SQLite database created inside the same event loop as the test body.
"""

import asyncio

import pytest

from impact_news.models.database import Database
from impact_news.services.storage import ArticleStore

MEMORY_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
def run_with_store():
    """Run `body(store)` against a fresh in-memory database."""

    def runner(body):
        async def main():
            database = Database(MEMORY_URL)
            await database.create_tables()
            try:
                return await body(ArticleStore(database))
            finally:
                await database.dispose()

        return asyncio.run(main())

    return runner
