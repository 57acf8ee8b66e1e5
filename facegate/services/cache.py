import json
import logging
import time
from typing import Any, Callable, Dict, Optional, Protocol, Set, Tuple

import redis.asyncio as aioredis
from redis.exceptions import RedisError

log = logging.getLogger("facegate.cache")

INDEX_PREFIX = "cache-index:"


class CacheStore(Protocol):
    async def get(self, key: str) -> Optional[Any]: ...

    async def set(self, key: str, value: Any, ttl: Optional[int] = None, prefix: Optional[str] = None) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def delete_prefix(self, prefix: str) -> int: ...

    async def ping(self) -> bool: ...


class MemoryCacheStore:
    """In-process cache with TTL and an explicit prefix index.

    Expired entries are swept on write, at most once per ``sweep_interval``
    seconds, so keys that are never read again do not accumulate.
    """

    def __init__(
        self,
        default_ttl: int = 300,
        clock: Callable[[], float] = time.monotonic,
        sweep_interval: float = 60.0,
    ):
        self.default_ttl = default_ttl
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._data: Dict[str, Tuple[float, str]] = {}
        self._index: Dict[str, Set[str]] = {}
        self._next_sweep = 0.0

    def _unlink(self, key: str) -> None:
        for prefix in [p for p, keys in self._index.items() if key in keys]:
            keys = self._index[prefix]
            keys.discard(key)
            if not keys:
                del self._index[prefix]

    def _sweep(self, now: float) -> None:
        expired = [k for k, (expires_at, _) in self._data.items() if expires_at <= now]
        for key in expired:
            del self._data[key]
        if expired:
            gone = set(expired)
            for prefix in list(self._index):
                self._index[prefix] -= gone
                if not self._index[prefix]:
                    del self._index[prefix]
            log.debug("Swept %d expired cache entries", len(expired))
        self._next_sweep = now + self.sweep_interval

    async def get(self, key: str) -> Optional[Any]:
        entry = self._data.get(key)
        if entry is None:
            return None
        expires_at, raw = entry
        if expires_at <= self._clock():
            self._data.pop(key, None)
            self._unlink(key)
            return None
        return json.loads(raw)

    async def set(self, key: str, value: Any, ttl: Optional[int] = None, prefix: Optional[str] = None) -> None:
        try:
            raw = json.dumps(value, default=str)
        except (TypeError, ValueError) as exc:
            log.warning("Cache value for %s is not serializable: %s", key, exc)
            return
        now = self._clock()
        if now >= self._next_sweep:
            self._sweep(now)
        self._data[key] = (now + (ttl or self.default_ttl), raw)
        if prefix:
            self._index.setdefault(prefix, set()).add(key)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)
        self._unlink(key)

    async def delete_prefix(self, prefix: str) -> int:
        count = 0
        for key in self._index.pop(prefix, set()):
            if self._data.pop(key, None) is not None:
                count += 1
        return count

    async def ping(self) -> bool:
        return True

    async def aclose(self) -> None:
        self._data.clear()
        self._index.clear()


class RedisCacheStore:
    """
    Redis-backed cache. Keys written under a prefix are also added to a Redis
    set so a prefix can be invalidated without SCAN/KEYS pattern matching.
    Failures are logged and swallowed: callers fall back to the store.
    """

    def __init__(self, url: str = "redis://127.0.0.1:6379/0", default_ttl: int = 300, client=None):
        self.default_ttl = default_ttl
        self._client = client if client is not None else aioredis.from_url(url)

    @staticmethod
    def _index_key(prefix: str) -> str:
        return f"{INDEX_PREFIX}{prefix}"

    async def get(self, key: str) -> Optional[Any]:
        try:
            raw = await self._client.get(key)
            return json.loads(raw) if raw else None
        except (RedisError, OSError, ValueError) as exc:
            log.warning("Cache get failed for %s: %s", key, exc)
            return None

    async def set(self, key: str, value: Any, ttl: Optional[int] = None, prefix: Optional[str] = None) -> None:
        ttl = ttl or self.default_ttl
        try:
            raw = json.dumps(value, default=str)
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.setex(key, ttl, raw)
                if prefix:
                    pipe.sadd(self._index_key(prefix), key)
                    pipe.expire(self._index_key(prefix), ttl)
                await pipe.execute()
        except (RedisError, OSError, TypeError, ValueError) as exc:
            log.warning("Cache set failed for %s: %s", key, exc)

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete(key)
        except (RedisError, OSError) as exc:
            log.warning("Cache delete failed for %s: %s", key, exc)

    async def delete_prefix(self, prefix: str) -> int:
        index = self._index_key(prefix)
        try:
            keys = await self._client.smembers(index)
            count = 0
            if keys:
                count = await self._client.delete(*keys)
            await self._client.delete(index)
            return int(count or 0)
        except (RedisError, OSError) as exc:
            log.warning("Cache prefix invalidation failed for %s: %s", prefix, exc)
            return 0

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except (RedisError, OSError) as exc:
            log.warning("Cache ping failed: %s", exc)
            return False

    async def aclose(self) -> None:
        try:
            await self._client.aclose()
        except (RedisError, OSError) as exc:
            log.warning("Closing cache connection failed: %s", exc)


def build_cache(settings) -> CacheStore:
    backend = (settings.CACHE_BACKEND or "memory").strip().lower()
    if backend == "redis":
        log.info("Cache backend: redis")
        return RedisCacheStore(settings.REDIS_URL, default_ttl=settings.CACHE_TTL_SECONDS)
    log.info("Cache backend: memory")
    return MemoryCacheStore(default_ttl=settings.CACHE_TTL_SECONDS)
