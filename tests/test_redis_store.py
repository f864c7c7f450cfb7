from unittest.mock import patch

import pytest

from agentbridge.infra.cache.redis_store import RedisStore


@pytest.mark.asyncio
async def test_memory_fallback_set_get_delete():
    store = RedisStore()
    assert not store.uses_redis
    await store.set("k", "v")
    assert await store.get("k") == "v"
    assert await store.delete("k") == 1
    assert await store.get("k") is None


@pytest.mark.asyncio
async def test_memory_fallback_expires():
    store = RedisStore(default_ttl_sec=10)
    with patch("agentbridge.infra.cache.redis_store.time.time", return_value=1000.0):
        await store.set("k", "v")
        assert await store.get("k") == "v"
    with patch("agentbridge.infra.cache.redis_store.time.time", return_value=1010.5):
        assert await store.get("k") is None
