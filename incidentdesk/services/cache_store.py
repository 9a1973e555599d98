"""Key/value stores backing the unread cache: in-process by default, Redis when configured."""

from __future__ import annotations

import json
import logging
import time
from threading import Lock
from typing import Any, Optional, Protocol

import redis.asyncio as aioredis

from incidentdesk.config import settings

logger = logging.getLogger("incidentdesk.unread")


class CacheStore(Protocol):
    async def get(self, key: str) -> Any | None: ...

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None: ...

    async def delete(self, *keys: str) -> None: ...


class InMemoryCacheStore:
    """Process-local TTL store. Values are JSON-shaped and never ``None``."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._entries: dict[str, tuple[float, Any]] = {}

    async def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at <= time.monotonic():
                del self._entries[key]
                return None
            return value

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        with self._lock:
            self._entries[key] = (time.monotonic() + ttl_seconds, value)

    async def delete(self, *keys: str) -> None:
        with self._lock:
            for key in keys:
                self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class RedisCacheStore:
    def __init__(self, url: str) -> None:
        self._client: aioredis.Redis = aioredis.from_url(url, decode_responses=True)

    async def get(self, key: str) -> Any | None:
        raw: Optional[str] = await self._client.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        await self._client.set(key, json.dumps(value), ex=ttl_seconds)

    async def delete(self, *keys: str) -> None:
        if keys:
            await self._client.delete(*keys)


def build_cache_store() -> CacheStore:
    if settings.redis_url:
        logger.info("Unread cache backed by Redis")
        return RedisCacheStore(settings.redis_url)
    return InMemoryCacheStore()
