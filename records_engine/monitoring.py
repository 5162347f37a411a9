"""Query timing for the aggregate store and the upstream event tables.

Aggregation runs issue thousands of small reads (one per event result set) and a
handful of large batched writes, so both the slow statements and the overall
statement count are worth reporting at the end of a run.
"""

import logging
import time
import weakref
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)

_engine_stats: "weakref.WeakKeyDictionary[Any, QueryStats]" = weakref.WeakKeyDictionary()


@dataclass(slots=True)
class QueryStats:
    """Running totals collected by the engine event listeners."""

    statements: int = 0
    slow_statements: int = 0
    total_seconds: float = 0.0
    slowest_seconds: float = 0.0
    slowest_statement: str | None = field(default=None, repr=False)

    def observe(self, statement: str, duration: float, threshold: float) -> bool:
        self.statements += 1
        self.total_seconds += duration
        if duration > self.slowest_seconds:
            self.slowest_seconds = duration
            self.slowest_statement = statement
        if duration > threshold:
            self.slow_statements += 1
            return True
        return False


def setup_query_monitoring(
    engine: AsyncEngine,
    slow_query_threshold: float = 0.1,
) -> QueryStats | None:
    """Attach timing listeners to ``engine`` and return the shared tally.

    Statements slower than ``slow_query_threshold`` seconds are logged as
    warnings with the first 500 characters of the SQL.
    """
    if not hasattr(engine, "sync_engine"):
        logger.warning("Engine does not have sync_engine attribute, skipping query monitoring")
        return None

    stats = QueryStats()
    _engine_stats[engine.sync_engine] = stats

    @event.listens_for(engine.sync_engine, "before_cursor_execute")
    def receive_before_cursor_execute(
        conn: Any,
        cursor: Any,
        statement: str,
        parameters: Any,
        context: Any,
        executemany: bool,
    ) -> None:
        conn.info.setdefault("query_start_time", []).append(time.perf_counter())

    @event.listens_for(engine.sync_engine, "after_cursor_execute")
    def receive_after_cursor_execute(
        conn: Any,
        cursor: Any,
        statement: str,
        parameters: Any,
        context: Any,
        executemany: bool,
    ) -> None:
        duration = time.perf_counter() - conn.info["query_start_time"].pop()
        if stats.observe(statement, duration, slow_query_threshold):
            truncated_statement = statement[:500]
            if len(statement) > 500:
                truncated_statement += "..."
            logger.warning(
                f"Slow query detected ({duration:.3f}s): {truncated_statement}",
                extra={
                    "duration_seconds": duration,
                    "executemany": executemany,
                    "threshold_seconds": slow_query_threshold,
                },
            )

    logger.info(
        f"Query performance monitoring enabled (slow query threshold: {slow_query_threshold}s)"
    )
    return stats


def get_query_stats(engine: AsyncEngine) -> QueryStats | None:
    """Return the tally attached by :func:`setup_query_monitoring`, if any."""
    sync_engine = getattr(engine, "sync_engine", None)
    if sync_engine is None:
        return None
    return _engine_stats.get(sync_engine)
