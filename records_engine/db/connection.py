from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from records_engine.settings import AppSettings, get_settings

logger = logging.getLogger(__name__)


def create_engine(active_settings: AppSettings | None = None) -> AsyncEngine:
    """Create the async SQLAlchemy engine for the configured backend.

    PostgreSQL gets a warm connection pool sized for the concurrent per-event
    result fetches. SQLite runs through ``aiosqlite`` with default pooling.
    """

    resolved = active_settings or get_settings()
    url = resolved.resolved_database_url

    if resolved.database_type == "postgresql":
        engine = create_async_engine(
            url,
            future=True,
            echo=False,
            pool_size=max(5, resolved.fetch_concurrency),
            max_overflow=10,
            pool_pre_ping=True,  # Validate connections before use
            pool_recycle=1800,  # Recycle connections every 30 min
            pool_timeout=30,
        )
    else:
        engine = create_async_engine(url, future=True, echo=False)

    try:
        from records_engine.monitoring import setup_query_monitoring

        setup_query_monitoring(
            engine,
            slow_query_threshold=resolved.slow_query_threshold,
        )
    except Exception as exc:  # pragma: no cover - monitoring is optional at runtime
        logger.warning(f"Failed to enable query monitoring: {exc}")

    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


# Process-wide engine/session factory shared by scripts and the controller
_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    """Get or create the global engine instance."""
    global _engine
    if _engine is None:
        _engine = create_engine()
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Lazily create a session factory bound to the shared engine."""
    global _session_factory
    if _session_factory is None:
        _session_factory = create_session_factory(get_engine())
    return _session_factory


async def dispose_engine() -> None:
    """Dispose the shared engine so scripts exit without dangling connections."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None
