"""Centralized configuration management for the records engine."""

from __future__ import annotations

import logging
import os
from functools import lru_cache

from dotenv import load_dotenv
from pydantic import Field, PrivateAttr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables defined in a local .env file before instantiating the
# settings singleton so scripts and library callers observe the same values.
load_dotenv()

# -- Application-wide constants -------------------------------------------------

DEFAULT_SQLITE_DATABASE_URL = "sqlite+aiosqlite:///./data/records.db"
POSTGRES_ASYNC_PREFIX = "postgresql+psycopg://"
POSTGRES_SYNC_PREFIXES = ("postgres://", "postgresql://")
DEFAULT_REDIS_URL = "redis://localhost:6379/0"
DEFAULT_LOG_LEVEL = "INFO"

DEFAULT_READ_PAGE_SIZE = 500
DEFAULT_WRITE_BATCH_SIZE = 400
# Per-transaction write ceiling of the destination store.
MAX_WRITE_BATCH_SIZE = 500
DEFAULT_FETCH_CONCURRENCY = 8
DEFAULT_CLUB_ID_MAX_LENGTH = 256
DEFAULT_RUN_LOCK_TTL_SECONDS = 3600


class AppSettings(BaseSettings):
    """Typed configuration surface built on top of ``pydantic-settings``.

    The class gathers the handful of environment variables the engine reads and
    exposes derived helpers (normalized database URL, numeric log level) so the
    rest of the package never parses raw environment strings itself.
    """

    _explicit_redis_url: bool = PrivateAttr(default=False)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    def __init__(self, **values: object) -> None:
        """Capture explicit overrides prior to delegating to ``BaseSettings``."""

        normalized_keys = {str(key).lower() for key in values}
        super().__init__(**values)
        self._explicit_redis_url = "redis_url" in normalized_keys
        redis_env = os.getenv("REDIS_URL")
        if redis_env is not None and redis_env.strip():
            self._explicit_redis_url = True

    database_url: str | None = Field(
        default=None,
        alias="DATABASE_URL",
        description=(
            "SQLAlchemy-compatible URL of the database holding both the upstream"
            " event tables and the aggregate document store. Postgres URLs in"
            " sync format are coerced into the async psycopg driver string."
        ),
    )
    use_sqlite: bool = Field(
        default=False,
        alias="USE_SQLITE",
        description="Force SQLite usage regardless of DATABASE_URL.",
    )
    redis_url: str = Field(
        default=DEFAULT_REDIS_URL,
        alias="REDIS_URL",
        description="Redis connection string backing the advisory run lock.",
    )
    log_level: str = Field(
        default=DEFAULT_LOG_LEVEL,
        alias="LOG_LEVEL",
        description="Root logging level (e.g. INFO, DEBUG, WARNING).",
    )
    read_page_size: int = Field(
        default=DEFAULT_READ_PAGE_SIZE,
        alias="READ_PAGE_SIZE",
        ge=1,
        description="Number of events requested per page from the event source.",
    )
    write_batch_size: int = Field(
        default=DEFAULT_WRITE_BATCH_SIZE,
        alias="WRITE_BATCH_SIZE",
        ge=1,
        description=(
            "Maximum number of documents committed in one atomic batch. Capped at"
            f" {MAX_WRITE_BATCH_SIZE} by the destination store."
        ),
    )
    fetch_concurrency: int = Field(
        default=DEFAULT_FETCH_CONCURRENCY,
        alias="FETCH_CONCURRENCY",
        ge=1,
        description="Concurrent per-event result fetches within one page.",
    )
    club_id_max_length: int = Field(
        default=DEFAULT_CLUB_ID_MAX_LENGTH,
        alias="CLUB_ID_MAX_LENGTH",
        ge=1,
        description="Longest normalized club identifier accepted by the club aggregator.",
    )
    run_lock_ttl_seconds: int = Field(
        default=DEFAULT_RUN_LOCK_TTL_SECONDS,
        alias="RUN_LOCK_TTL_SECONDS",
        ge=1,
        description="Expiry applied to the advisory run lock so crashed runs release it.",
    )
    baseline_start_year: int | None = Field(
        default=None,
        alias="BASELINE_START_YEAR",
        description=(
            "First year folded into the baseline. Defaults to the year of the"
            " earliest event exposed by the event source."
        ),
    )
    slow_query_threshold: float = Field(
        default=0.1,
        alias="SLOW_QUERY_THRESHOLD",
        description="Seconds after which queries are logged as slow.",
    )

    @field_validator("write_batch_size")
    @classmethod
    def _cap_write_batch_size(cls, value: int) -> int:
        if value > MAX_WRITE_BATCH_SIZE:
            raise ValueError(
                f"WRITE_BATCH_SIZE must not exceed {MAX_WRITE_BATCH_SIZE}, received {value}"
            )
        return value

    @property
    def resolved_database_url(self) -> str:
        """Return the async-compatible database URL after applying fallbacks."""

        if self.use_sqlite or not self.database_url:
            return DEFAULT_SQLITE_DATABASE_URL

        url = self.database_url

        for prefix in POSTGRES_SYNC_PREFIXES:
            if url.startswith(prefix):
                return url.replace(prefix, POSTGRES_ASYNC_PREFIX, 1)

        if url.startswith(POSTGRES_ASYNC_PREFIX) or url.startswith("sqlite+aiosqlite"):
            return url

        raise RuntimeError(
            f"Expected a PostgreSQL or SQLite connection string, received: {url}"
        )

    @property
    def database_type(self) -> str:
        """Return ``sqlite`` when using SQLite otherwise ``postgresql``."""

        if self.resolved_database_url.startswith("sqlite"):
            return "sqlite"
        return "postgresql"

    @property
    def log_level_numeric(self) -> int:
        """Translate ``log_level`` into the numeric constant expected by logging."""

        candidate = logging.getLevelName(self.log_level.upper())
        if isinstance(candidate, int):
            return candidate
        return logging.INFO

    def optional_config_warnings(self) -> list[str]:
        """Return human-readable warnings for unset optional configuration."""

        warnings: list[str] = []

        if not self._explicit_redis_url and self.redis_url == DEFAULT_REDIS_URL:
            warnings.append(
                "REDIS_URL is not set - the run lock will fall back to an in-process "
                "lock (concurrent runs from other processes are not detected)"
            )

        if not self.database_url and not self.use_sqlite:
            warnings.append(
                "DATABASE_URL is not set - using the local SQLite database at "
                f"{DEFAULT_SQLITE_DATABASE_URL}"
            )

        return warnings


def configure_logging(active_settings: AppSettings | None = None) -> None:
    """Apply the configured log level and the shared log format."""

    resolved = active_settings or get_settings()
    logging.basicConfig(
        level=resolved.log_level_numeric,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    """Return a cached instance of :class:`AppSettings`."""

    return AppSettings()


__all__ = [
    "AppSettings",
    "DEFAULT_CLUB_ID_MAX_LENGTH",
    "DEFAULT_FETCH_CONCURRENCY",
    "DEFAULT_LOG_LEVEL",
    "DEFAULT_READ_PAGE_SIZE",
    "DEFAULT_REDIS_URL",
    "DEFAULT_RUN_LOCK_TTL_SECONDS",
    "DEFAULT_SQLITE_DATABASE_URL",
    "DEFAULT_WRITE_BATCH_SIZE",
    "MAX_WRITE_BATCH_SIZE",
    "POSTGRES_ASYNC_PREFIX",
    "POSTGRES_SYNC_PREFIXES",
    "configure_logging",
    "get_settings",
]
