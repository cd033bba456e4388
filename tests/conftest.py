"""Pytest configuration and fixtures."""

import os

import pytest
import pytest_asyncio
from sqlalchemy.pool import StaticPool


@pytest_asyncio.fixture
async def sqlite_engine():
    """Create an in-memory SQLite engine shared by every connection."""
    from schemakit import create_engine

    engine = create_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def postgres_engine():
    """Create a PostgreSQL engine.

    Set DATABASE_URL environment variable to use a real PostgreSQL database.
    Otherwise, this fixture is skipped.
    """
    from schemakit import create_engine

    url = os.environ.get("DATABASE_URL")
    if not url:
        pytest.skip("DATABASE_URL not set")

    engine = create_engine(url)
    yield engine
    await engine.dispose()
