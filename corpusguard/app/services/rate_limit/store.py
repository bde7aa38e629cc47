"""Shared counter store backends for the sliding window limiter.

All limiter state lives in the store so that any number of stateless
handler processes observe one consistent view. The Redis backend is the
production backend; the in-memory backend gives the same semantics to a
single process for local development and tests.
"""

import asyncio
import bisect
import fnmatch
import heapq
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from corpusguard.app.core.config import Settings
from corpusguard.app.core.logging import get_logger
from corpusguard.app.exceptions import BackendUnavailableError, ConfigurationError
from corpusguard.app.services.rate_limit.models import LimitOutcome
from corpusguard.app.services.rate_limit.redis_lua import SLIDING_WINDOW_SCRIPT

logger = get_logger(__name__)

# Errors that mean "the store could not answer", as opposed to a bug here.
# TimeoutError and ConnectionError raised by the socket layer are OSErrors.
STORE_EXCEPTIONS = (RedisError, OSError)


class SlidingWindowStore(ABC):
    """Abstract base class for shared counter store backends."""

    # Reported by the health endpoint
    backend_name = "unknown"

    @abstractmethod
    async def check_and_record(
        self, key: str, now_ms: int, window_ms: int, limit: int
    ) -> LimitOutcome:
        """Atomically prune, count and (if under the limit) record one entry.

        Entries scored at or before ``now_ms - window_ms`` are expired first.
        A denied check records nothing and reports when the oldest surviving
        entry leaves the window.

        Args:
            key: Namespaced store key (``<prefix>:<identifier>``)
            now_ms: Arrival time in epoch milliseconds
            window_ms: Window duration in milliseconds
            limit: Maximum entries allowed inside the window

        Returns:
            LimitOutcome for this window

        Raises:
            BackendUnavailableError: If the store cannot be reached
        """

    @abstractmethod
    async def ping(self) -> bool:
        """Check store connectivity."""

    @abstractmethod
    async def clear(self, pattern: str) -> int:
        """Delete every key matching a glob pattern. Returns the count."""

    async def close(self) -> None:
        """Release connections held by the backend."""


def _new_member(now_ms: int) -> str:
    # Same-millisecond arrivals must not collapse into one sorted-set member
    return f"{now_ms}-{uuid.uuid4().hex}"


class RedisSlidingWindowStore(SlidingWindowStore):
    """Redis-based distributed sliding window store.

    Each window is a sorted set of admitted requests scored by arrival
    time. The whole check runs server side as one Lua script, so two
    concurrent callers at the limit boundary cannot both be admitted.
    """

    backend_name = "redis"
    CLEAR_BATCH_SIZE = 500

    def __init__(self, redis_client: Any) -> None:
        """Initialize the store.

        Args:
            redis_client: A ``redis.asyncio.Redis`` (or compatible) client
        """
        self._redis = redis_client

    async def check_and_record(
        self, key: str, now_ms: int, window_ms: int, limit: int
    ) -> LimitOutcome:
        try:
            result = await self._redis.eval(
                SLIDING_WINDOW_SCRIPT,
                1,  # Number of keys
                key,  # KEYS[1]
                now_ms,  # ARGV[1]
                window_ms,  # ARGV[2]
                limit,  # ARGV[3]
                _new_member(now_ms),  # ARGV[4]
                now_ms - window_ms,  # ARGV[5]
            )
        except STORE_EXCEPTIONS as e:
            raise BackendUnavailableError("check_and_record", str(e)) from e

        allowed = bool(int(result[0]))
        count = int(result[1])
        reset_at_ms = int(result[2])
        return LimitOutcome(
            allowed=allowed,
            limit=limit,
            remaining=max(0, limit - count) if allowed else 0,
            reset_at_ms=reset_at_ms,
        )

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except STORE_EXCEPTIONS as e:
            raise BackendUnavailableError("ping", str(e)) from e

    async def clear(self, pattern: str) -> int:
        """Delete matching keys using SCAN so large keyspaces are not blocked."""
        deleted = 0
        batch: List[Any] = []
        try:
            async for key in self._redis.scan_iter(match=pattern, count=self.CLEAR_BATCH_SIZE):
                batch.append(key)
                if len(batch) >= self.CLEAR_BATCH_SIZE:
                    deleted += await self._redis.delete(*batch)
                    batch = []
            if batch:
                deleted += await self._redis.delete(*batch)
        except STORE_EXCEPTIONS as e:
            raise BackendUnavailableError("clear", str(e)) from e
        return deleted

    async def close(self) -> None:
        try:
            await self._redis.aclose()
        except STORE_EXCEPTIONS as e:
            logger.warning(f"Error closing Redis connection: {e}")


class InMemorySlidingWindowStore(SlidingWindowStore):
    """In-memory sliding window store.

    Same semantics as the Redis backend behind an ``asyncio.Lock``.
    Suitable for single-process deployments and tests only; state is not
    shared between processes.

    Keys expire like ``PEXPIRE``: every check first drops all keys whose
    expiry has passed, so clients that stop sending requests do not keep
    their state around.
    """

    backend_name = "memory"

    def __init__(self) -> None:
        # key -> sorted arrival timestamps
        self._windows: Dict[str, List[int]] = {}
        # key -> expiry instant in epoch milliseconds
        self._expires_at: Dict[str, int] = {}
        # (expiry, key) min-heap; entries superseded by a later expiry are skipped
        self._expiry_heap: List[Tuple[int, str]] = []
        self._lock = asyncio.Lock()

    def _collect_expired(self, now_ms: int) -> None:
        while self._expiry_heap and self._expiry_heap[0][0] <= now_ms:
            expires_at, key = heapq.heappop(self._expiry_heap)
            if self._expires_at.get(key) == expires_at:
                self._windows.pop(key, None)
                del self._expires_at[key]

    async def check_and_record(
        self, key: str, now_ms: int, window_ms: int, limit: int
    ) -> LimitOutcome:
        async with self._lock:
            self._collect_expired(now_ms)

            entries = self._windows.setdefault(key, [])
            cutoff = now_ms - window_ms
            # Drop everything scored at or before the cutoff
            del entries[: bisect.bisect_right(entries, cutoff)]

            count = len(entries)
            if count >= limit:
                return LimitOutcome(
                    allowed=False,
                    limit=limit,
                    remaining=0,
                    reset_at_ms=entries[0] + window_ms,
                )

            bisect.insort(entries, now_ms)
            self._expires_at[key] = now_ms + window_ms
            heapq.heappush(self._expiry_heap, (now_ms + window_ms, key))
            return LimitOutcome(
                allowed=True,
                limit=limit,
                remaining=limit - count - 1,
                reset_at_ms=now_ms + window_ms,
            )

    async def ping(self) -> bool:
        return True

    async def clear(self, pattern: str) -> int:
        async with self._lock:
            keys = [key for key in self._windows if fnmatch.fnmatchcase(key, pattern)]
            for key in keys:
                self._windows.pop(key, None)
                self._expires_at.pop(key, None)
            return len(keys)

    def size(self, key: str) -> int:
        """Number of entries currently stored under ``key``."""
        return len(self._windows.get(key, []))

    def key_count(self) -> int:
        """Number of keys currently held."""
        return len(self._windows)


def create_redis_client(config: Settings) -> Any:
    """Build the async Redis client from settings.

    Raises:
        ConfigurationError: If KV_REDIS_URL is missing or malformed
    """
    url = config.require_redis_url()
    try:
        return aioredis.from_url(
            url,
            socket_timeout=config.redis_socket_timeout,
            socket_connect_timeout=config.redis_connect_timeout,
            max_connections=config.redis_max_connections,
        )
    except ValueError as e:
        raise ConfigurationError(f"Invalid KV_REDIS_URL: {e}") from e


def create_store(config: Settings, redis_client: Optional[Any] = None) -> RedisSlidingWindowStore:
    """Build the production store, creating a Redis client unless one is injected."""
    client = redis_client if redis_client is not None else create_redis_client(config)
    logger.info("Using Redis sliding window store")
    return RedisSlidingWindowStore(client)
