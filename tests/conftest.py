"""Pytest configuration and shared fixtures for the records engine tests."""

from __future__ import annotations

from collections.abc import AsyncIterator
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from records_engine.db.models import Base
from records_engine.settings import AppSettings
from tests import _ensure_repo_on_path
from tests.support.in_memory import InMemoryDocumentStore, InMemoryEventSource


def pytest_configure(config: pytest.Config) -> None:
    """Hook executed by pytest prior to running any tests."""

    _ensure_repo_on_path()


@pytest.fixture
def source() -> InMemoryEventSource:
    return InMemoryEventSource()


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def engine_settings(monkeypatch: pytest.MonkeyPatch) -> AppSettings:
    """Settings with small pages and batches so paging paths are exercised."""

    monkeypatch.delenv("BASELINE_START_YEAR", raising=False)
    return AppSettings(
        read_page_size=2,
        write_batch_size=3,
        fetch_concurrency=2,
        run_lock_ttl_seconds=60,
    )


@pytest_asyncio.fixture
async def session_factory(
    tmp_path: Path,
) -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    """Provide a throwaway SQLite session factory for the SQL repositories."""
    pytest.importorskip("aiosqlite")
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'records.db'}", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()
