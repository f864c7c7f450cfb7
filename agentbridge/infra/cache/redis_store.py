from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Dict, Optional

import redis.asyncio as aioredis


@dataclass
class _Slot:
    value: str
    expires_at: Optional[float] = None

    def expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class RedisStore:
    """String key/value store on Redis, or an in-process TTL dict without REDIS_URL."""

    def __init__(self, redis_url: Optional[str] = None, default_ttl_sec: int = 0) -> None:
        self.redis_url = redis_url
        self.default_ttl_sec = default_ttl_sec
        self._slots: Dict[str, _Slot] = {}
        self._slots_lock = asyncio.Lock()
        self._client: Optional[aioredis.Redis] = None

    @property
    def uses_redis(self) -> bool:
        return bool(self.redis_url)

    def _redis(self) -> Optional[aioredis.Redis]:
        if self.redis_url and self._client is None:
            self._client = aioredis.from_url(
                self.redis_url,
                decode_responses=True,
                socket_timeout=5,
                socket_connect_timeout=5,
            )
        return self._client

    async def get(self, key: str) -> Optional[str]:
        client = self._redis()
        if client is not None:
            return await client.get(key)
        async with self._slots_lock:
            slot = self._slots.get(key)
            if slot is None:
                return None
            if slot.expired(time.time()):
                del self._slots[key]
                return None
            return slot.value

    async def set(self, key: str, value: str, ttl_sec: Optional[int] = None) -> None:
        ttl = ttl_sec if ttl_sec is not None else self.default_ttl_sec
        client = self._redis()
        if client is not None:
            await client.set(key, value, ex=ttl if ttl > 0 else None)
            return
        expires_at = time.time() + ttl if ttl > 0 else None
        async with self._slots_lock:
            self._slots[key] = _Slot(value, expires_at)

    async def delete(self, key: str) -> int:
        client = self._redis()
        if client is not None:
            return int(await client.delete(key))
        async with self._slots_lock:
            return int(self._slots.pop(key, None) is not None)

    async def close(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            await client.aclose()
