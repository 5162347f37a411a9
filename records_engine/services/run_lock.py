"""Advisory lock preventing two aggregation runs against the same target."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Protocol
from uuid import uuid4

from redis.asyncio import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from records_engine.errors import ConcurrentRunConflict
from records_engine.settings import AppSettings, get_settings

logger = logging.getLogger(__name__)

_LOCK_PREFIX = "records_engine:run_lock"

# Delete the key only while it still holds our token.
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class RunLock(Protocol):
    async def acquire(self, name: str, token: str, ttl_seconds: int) -> bool: ...

    async def release(self, name: str, token: str) -> bool: ...


def lock_key(name: str) -> str:
    return f"{_LOCK_PREFIX}:{name}"


class RedisRunLock:
    """Cross-process lock using ``SET NX PX`` and a compare-and-delete script."""

    def __init__(self, client: Redis) -> None:
        self._client = client

    async def acquire(self, name: str, token: str, ttl_seconds: int) -> bool:
        acquired = await self._client.set(
            lock_key(name), token, nx=True, px=ttl_seconds * 1000
        )
        return bool(acquired)

    async def release(self, name: str, token: str) -> bool:
        released = await self._client.eval(_RELEASE_SCRIPT, 1, lock_key(name), token)
        return bool(released)


class InMemoryRunLock:
    """Single-process lock with the same expiry semantics as :class:`RedisRunLock`."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._holders: dict[str, tuple[str, float]] = {}
        self._guard = asyncio.Lock()
        self._clock = clock

    async def acquire(self, name: str, token: str, ttl_seconds: int) -> bool:
        async with self._guard:
            holder = self._holders.get(name)
            now = self._clock()
            if holder is not None and holder[1] > now:
                return False
            self._holders[name] = (token, now + ttl_seconds)
            return True

    async def release(self, name: str, token: str) -> bool:
        async with self._guard:
            holder = self._holders.get(name)
            if holder is None or holder[0] != token:
                return False
            del self._holders[name]
            return True


@asynccontextmanager
async def hold_run_lock(
    lock: RunLock, target: str, *, ttl_seconds: int
) -> AsyncIterator[str]:
    """Hold ``lock`` for ``target`` for the duration of the block.

    Raises:
        ConcurrentRunConflict: when another run already holds the lock.
    """
    token = uuid4().hex
    if not await lock.acquire(target, token, ttl_seconds):
        raise ConcurrentRunConflict(target)
    try:
        yield token
    finally:
        if not await lock.release(target, token):
            logger.warning(
                f"Run lock for '{target}' expired before the run finished; "
                "consider raising RUN_LOCK_TTL_SECONDS"
            )


_redis_client: Redis | None = None
_client_lock = asyncio.Lock()
_redis_disabled = False


async def get_redis(active_settings: AppSettings | None = None) -> Redis | None:
    """Get the shared Redis client, returning ``None`` if Redis is unreachable."""
    global _redis_client, _redis_disabled

    if _redis_disabled:
        logger.debug("Redis connection disabled after previous failure; skipping attempt.")
        return None

    async with _client_lock:
        if _redis_client is not None:
            return _redis_client
        if _redis_disabled:
            return None

        resolved = active_settings or get_settings()
        client = Redis.from_url(resolved.redis_url, decode_responses=True, encoding="utf-8")
        try:
            await client.ping()
        except (RedisConnectionError, RedisTimeoutError, OSError) as exc:
            logger.warning(f"Redis connection failed: {exc}. Run lock falls back to in-process.")
            await client.aclose()
            _redis_disabled = True
            return None

        _redis_client = client
        logger.info("Redis connection established successfully")
        return _redis_client


async def close_redis() -> None:
    """Close the global Redis connection gracefully."""
    global _redis_client, _redis_disabled
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
    _redis_disabled = False


_local_lock: InMemoryRunLock | None = None


async def get_run_lock(active_settings: AppSettings | None = None) -> RunLock:
    """Return a Redis-backed lock when Redis answers, else the in-process lock."""
    global _local_lock
    client = await get_redis(active_settings)
    if client is not None:
        return RedisRunLock(client)
    if _local_lock is None:
        _local_lock = InMemoryRunLock()
    return _local_lock


__all__ = [
    "InMemoryRunLock",
    "RedisRunLock",
    "RunLock",
    "close_redis",
    "get_redis",
    "get_run_lock",
    "hold_run_lock",
    "lock_key",
]
