"""Shared fixtures for corpusguard tests."""

import fnmatch
from unittest.mock import AsyncMock, MagicMock

import pytest
from fakeredis import FakeServer
from fakeredis.aioredis import FakeRedis as FakeAsyncRedis

from corpusguard.app.api.metrics import reset_metrics_collector
from corpusguard.app.core.config import Settings
from corpusguard.app.services.rate_limit.store import InMemorySlidingWindowStore

START_MS = 1_700_000_000_000


class FakeClock:
    """Manually advanced epoch-millisecond clock."""

    def __init__(self, start: int = START_MS):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


@pytest.fixture(autouse=True)
def reset_metrics():
    """Reset the process-wide metrics collector around each test."""
    reset_metrics_collector()
    yield
    reset_metrics_collector()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_store():
    return InMemorySlidingWindowStore()


@pytest.fixture
def test_settings():
    """Settings isolated from the developer's environment and .env file."""
    return Settings(_env_file=None, redis_url="redis://localhost:6379/0")


@pytest.fixture
def fake_redis():
    """In-process Redis server that runs the Lua script itself.

    Each test gets its own server, so no state leaks between tests.
    """
    return FakeAsyncRedis(server=FakeServer())


@pytest.fixture
def mock_redis():
    """Create a mock Redis client for testing.

    ``eval`` reproduces the sliding window script against in-process sorted
    sets. It never awaits, so like a real Lua script it cannot interleave
    with another call.
    """
    redis = MagicMock()
    redis.zsets = {}
    redis.pexpire = {}

    async def mock_eval(script, num_keys, *args):
        key = args[0]
        now, window, limit = int(args[1]), int(args[2]), int(args[3])
        member = str(args[4])
        cutoff = int(args[5])

        zset = redis.zsets.setdefault(key, {})
        for stale in [m for m, score in zset.items() if score <= cutoff]:
            del zset[stale]

        count = len(zset)
        if count >= limit:
            oldest = min(zset.values())
            return [0, count, oldest + window]

        zset[member] = now
        redis.pexpire[key] = window
        return [1, count + 1, now + window]

    async def mock_scan_iter(match=None, count=None):
        for key in list(redis.zsets):
            if match is None or fnmatch.fnmatchcase(key, match):
                yield key

    async def mock_delete(*keys):
        removed = 0
        for key in keys:
            if redis.zsets.pop(key, None) is not None:
                removed += 1
            redis.pexpire.pop(key, None)
        return removed

    redis.eval = AsyncMock(side_effect=mock_eval)
    redis.scan_iter = mock_scan_iter
    redis.delete = AsyncMock(side_effect=mock_delete)
    redis.ping = AsyncMock(return_value=True)
    redis.aclose = AsyncMock()
    return redis
