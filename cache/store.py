"""
cache/store.py -- Ephemeral key-value cache for OTP codes and revoked tokens.

Two interchangeable backends expose the same async interface:

  RedisCache   -- redis.asyncio client. Used whenever REDIS_URL is set.
  MemoryCache  -- in-process dict with TTL bookkeeping. Used for local dev
                  without Redis, and by the test suite (its clock is
                  injectable so expiry can be tested without sleeping).

AuthService receives one of these as a constructor argument and never builds
its own, so tests substitute a MemoryCache freely.

Usage:
    cache = build_cache(get_settings())
    await cache.set("42:otp", "123456", 300)
    await cache.get("42:otp")            # "123456" or None once expired
    await cache.sadd("revokedToken", jti)
    await cache.sismember("revokedToken", jti)
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Optional, Protocol

import redis.asyncio as aioredis

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("billing.cache")


class EphemeralCache(Protocol):
    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def exists(self, key: str) -> bool: ...

    async def sadd(self, name: str, member: str) -> None: ...

    async def sismember(self, name: str, member: str) -> bool: ...

    async def close(self) -> None: ...


class RedisCache:
    def __init__(self, redis_url: str, *, socket_timeout: float = 5.0) -> None:
        self.redis_url = redis_url
        self.client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    async def get(self, key: str) -> Optional[str]:
        return await self.client.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        # Redis rejects EX <= 0
        await self.client.set(key, value, ex=max(1, int(ttl_seconds)))

    async def delete(self, key: str) -> None:
        await self.client.delete(key)

    async def exists(self, key: str) -> bool:
        return bool(await self.client.exists(key))

    async def sadd(self, name: str, member: str) -> None:
        await self.client.sadd(name, member)

    async def sismember(self, name: str, member: str) -> bool:
        return bool(await self.client.sismember(name, member))

    async def close(self) -> None:
        await self.client.aclose()


class MemoryCache:
    """Process-local cache with per-key expiry.

    Expired keys are dropped lazily on access; purge_expired() trims the rest.
    Sets never expire, matching a Redis set without EXPIRE.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._values: dict[str, tuple[str, float]] = {}
        self._sets: dict[str, set[str]] = {}

    async def get(self, key: str) -> Optional[str]:
        entry = self._values.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._values[key]
            return None
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._values[key] = (value, self._clock() + ttl_seconds)

    async def delete(self, key: str) -> None:
        self._values.pop(key, None)

    async def exists(self, key: str) -> bool:
        return await self.get(key) is not None

    async def sadd(self, name: str, member: str) -> None:
        self._sets.setdefault(name, set()).add(member)

    async def sismember(self, name: str, member: str) -> bool:
        return member in self._sets.get(name, ())

    def purge_expired(self) -> int:
        """Delete all expired keys. Returns number of keys removed."""
        now = self._clock()
        expired = [k for k, (_, expires_at) in self._values.items() if now >= expires_at]
        for key in expired:
            del self._values[key]
        return len(expired)

    async def close(self) -> None:
        self._values.clear()
        self._sets.clear()


def build_cache(settings: Settings) -> RedisCache | MemoryCache:
    """Return a RedisCache when REDIS_URL is configured, else a MemoryCache."""
    if settings.redis_url:
        logger.info("Using Redis cache")
        return RedisCache(settings.redis_url)
    logger.warning("REDIS_URL not set -- using in-process cache (OTPs and revocations are lost on restart)")
    return MemoryCache()
