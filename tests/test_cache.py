"""In-memory cache backend: TTL expiry and eviction."""

import time
from types import SimpleNamespace

import pytest

from core import cache as cache_module
from core.cache import CacheService
from core.config import Settings


@pytest.fixture
def clock(monkeypatch):
    now = SimpleNamespace(value=time.time())
    monkeypatch.setattr(cache_module, "time", SimpleNamespace(time=lambda: now.value))
    return now


@pytest.fixture
def cache():
    return CacheService(Settings(redis_enabled=False))


async def test_expired_entries_are_evicted_on_write(cache, clock):
    for index in range(1000):
        await cache.set(f"flowstep:exec-1:{index}:m", {"variables": {}}, ttl=1)
    assert len(cache.memory_cache) == 1000

    clock.value += 1.1
    await cache.set("flowstep:exec-1:1000:m", {"variables": {}}, ttl=1)

    assert list(cache.memory_cache) == ["flowstep:exec-1:1000:m"]
    assert len(cache.memory_expiry) == 1


async def test_rewritten_key_keeps_its_new_ttl(cache, clock):
    await cache.set("key", "old", ttl=1)
    clock.value += 0.5
    await cache.set("key", "new", ttl=10)

    clock.value += 1
    await cache.set("other", "value", ttl=10)

    assert await cache.get("key") == "new"


async def test_expired_entry_is_not_returned(cache, clock):
    await cache.set("key", "value", ttl=1)
    assert await cache.exists("key")

    clock.value += 2

    assert await cache.get("key") is None
    assert not await cache.exists("key")
    assert await cache.delete("key") is False
