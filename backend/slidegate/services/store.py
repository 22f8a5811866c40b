"""TTL key-value stores backing challenge records and redemption markers.

Every store exposes the same narrow async surface: ``set``/``get``/``delete``
plus ``delete_if_equals``, the compare-and-delete primitive that makes
"read, check, consume" race-free for a single key.
"""

import threading
import time
from typing import Callable, Dict, Optional, Protocol, Tuple

import redis.asyncio as redis_async
from redis.exceptions import RedisError

from ..config import Settings
from ..errors import CaptchaStorageError
from ..context import logger


class TTLStore(Protocol):
    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def get(self, key: str) -> Optional[str]: ...

    async def delete(self, key: str) -> None: ...

    async def delete_if_equals(self, key: str, expected: str) -> bool: ...

    async def close(self) -> None: ...


class MemoryTTLStore:
    """Single-process store; expiry timestamps are checked on every access."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._items: Dict[str, Tuple[str, float]] = {}
        self._lock = threading.Lock()

    def _live_value_locked(self, key: str, now: float) -> Optional[str]:
        item = self._items.get(key)
        if item is None:
            return None
        value, expires_at = item
        if expires_at <= now:
            self._items.pop(key, None)
            return None
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            raise CaptchaStorageError(f"非法的TTL: {ttl_seconds}")
        now = self._clock()
        with self._lock:
            self._items[key] = (value, now + ttl_seconds)

    async def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._live_value_locked(key, self._clock())

    async def delete(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)

    async def delete_if_equals(self, key: str, expected: str) -> bool:
        with self._lock:
            current = self._live_value_locked(key, self._clock())
            if current is None or current != expected:
                return False
            self._items.pop(key, None)
            return True

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [key for key, (_, expires_at) in self._items.items() if expires_at <= now]
            for key in expired:
                self._items.pop(key, None)
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    async def close(self) -> None:
        with self._lock:
            self._items.clear()


# KEYS[1] = key, ARGV[1] = expected value
_COMPARE_AND_DELETE_LUA = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
end
return 0
"""


class RedisTTLStore:
    """Shared store for multi-instance deployments."""

    def __init__(self, client):
        self._client = client
        self._compare_and_delete = client.register_script(_COMPARE_AND_DELETE_LUA)

    @classmethod
    def from_url(cls, url: str) -> "RedisTTLStore":
        return cls(redis_async.from_url(url, decode_responses=True))

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            await self._client.setex(key, ttl_seconds, value)
        except RedisError as exc:
            logger.error(f"Redis write failed for {key}: {exc}")
            raise CaptchaStorageError(f"验证码存储失败: {exc}") from exc

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self._client.get(key)
        except RedisError as exc:
            logger.error(f"Redis read failed for {key}: {exc}")
            raise CaptchaStorageError(f"验证码读取失败: {exc}") from exc

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete(key)
        except RedisError as exc:
            logger.error(f"Redis delete failed for {key}: {exc}")
            raise CaptchaStorageError(f"验证码删除失败: {exc}") from exc

    async def delete_if_equals(self, key: str, expected: str) -> bool:
        try:
            removed = await self._compare_and_delete(keys=[key], args=[expected])
        except RedisError as exc:
            logger.error(f"Redis compare-and-delete failed for {key}: {exc}")
            raise CaptchaStorageError(f"验证码删除失败: {exc}") from exc
        return int(removed or 0) == 1

    async def close(self) -> None:
        await self._client.aclose()


def build_store(settings: Settings) -> TTLStore:
    if settings.store_backend == "redis":
        logger.info("Captcha store: redis")
        return RedisTTLStore.from_url(settings.redis_url)
    logger.info("Captcha store: in-process memory")
    return MemoryTTLStore()


__all__ = ["MemoryTTLStore", "RedisTTLStore", "TTLStore", "build_store"]
