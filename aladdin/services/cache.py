from __future__ import annotations

import json
import time
from collections import OrderedDict
from typing import Any, Callable, Protocol

from redis.asyncio import Redis
from redis.exceptions import RedisError

from ..core import metrics
from ..core.config import CacheSettings
from ..core.logging import get_logger

logger = get_logger(name=__name__)


class CacheBackend(Protocol):
    async def get(self, key: str) -> Any | None:
        ...

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> bool:
        ...

    async def delete(self, key: str) -> bool:
        ...

    async def clear_by_prefix(self, prefix: str) -> int:
        ...

    async def keys(self, prefix: str = "") -> list[str]:
        ...

    async def aclose(self) -> None:
        ...


class RedisCache:
    """JSON key-value cache on Redis; every failure degrades to a miss or a no-op."""

    backend = "redis"

    def __init__(self, client: Any, *, namespace: str = "aladdin", default_ttl: int = 3600) -> None:
        self._client = client
        self._namespace = namespace
        self._default_ttl = default_ttl

    @classmethod
    def from_url(cls, url: str, *, namespace: str = "aladdin", default_ttl: int = 3600) -> "RedisCache":
        return cls(Redis.from_url(url, decode_responses=True), namespace=namespace, default_ttl=default_ttl)

    def _key(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    def _strip(self, key: str | bytes) -> str:
        text = key.decode("utf-8") if isinstance(key, bytes) else key
        return text[len(self._namespace) + 1 :]

    def _failed(self, operation: str, key: str, exc: Exception) -> None:
        metrics.increment_cache_error(backend=self.backend, operation=operation)
        logger.warning("cache_operation_failed", backend=self.backend, operation=operation, key=key, error=str(exc))

    async def get(self, key: str) -> Any | None:
        try:
            raw = await self._client.get(self._key(key))
        except (RedisError, OSError) as exc:
            self._failed("get", key, exc)
            return None
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            self._failed("decode", key, exc)
            return None

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> bool:
        try:
            await self._client.set(self._key(key), json.dumps(value, default=str), ex=ttl_seconds or self._default_ttl)
        except (RedisError, OSError, TypeError) as exc:
            self._failed("set", key, exc)
            return False
        return True

    async def delete(self, key: str) -> bool:
        try:
            removed = await self._client.delete(self._key(key))
        except (RedisError, OSError) as exc:
            self._failed("delete", key, exc)
            return False
        return bool(removed)

    async def keys(self, prefix: str = "") -> list[str]:
        found: list[str] = []
        try:
            async for key in self._client.scan_iter(match=f"{self._key(prefix)}*"):
                found.append(self._strip(key))
        except (RedisError, OSError) as exc:
            self._failed("scan", prefix, exc)
            return []
        return found

    async def clear_by_prefix(self, prefix: str) -> int:
        matched = await self.keys(prefix)
        if not matched:
            return 0
        try:
            return int(await self._client.delete(*(self._key(key) for key in matched)))
        except (RedisError, OSError) as exc:
            self._failed("delete_pattern", prefix, exc)
            return 0

    async def aclose(self) -> None:
        try:
            await self._client.aclose()
        except (RedisError, OSError) as exc:
            self._failed("close", "", exc)


class InMemoryCache:
    """Process-local cache with per-key expiry, evicting least recently used entries."""

    backend = "memory"

    def __init__(
        self,
        *,
        max_entries: int = 1000,
        default_ttl: int = 300,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._entries: OrderedDict[str, tuple[float, str]] = OrderedDict()
        self._max_entries = max_entries
        self._default_ttl = default_ttl
        self._clock = clock

    def _live(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, raw = entry
        if expires_at <= self._clock():
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return raw

    async def get(self, key: str) -> Any | None:
        raw = self._live(key)
        return json.loads(raw) if raw is not None else None

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> bool:
        expires_at = self._clock() + (ttl_seconds or self._default_ttl)
        self._entries[key] = (expires_at, json.dumps(value, default=str))
        self._entries.move_to_end(key)
        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)
        return True

    async def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    async def keys(self, prefix: str = "") -> list[str]:
        return [key for key in list(self._entries) if key.startswith(prefix) and self._live(key) is not None]

    async def clear_by_prefix(self, prefix: str) -> int:
        matched = [key for key in self._entries if key.startswith(prefix)]
        for key in matched:
            del self._entries[key]
        return len(matched)

    async def aclose(self) -> None:
        self._entries.clear()


def build_cache(settings: CacheSettings) -> CacheBackend | None:
    if not settings.enabled or settings.backend == "none":
        logger.info("cache_disabled")
        return None
    if settings.backend == "memory":
        return InMemoryCache(max_entries=settings.memory_max_entries, default_ttl=settings.default_ttl_seconds)
    return RedisCache.from_url(
        settings.redis_url,
        namespace=settings.namespace,
        default_ttl=settings.default_ttl_seconds,
    )
