"""
Durable key-value storage for the local cart and the product cache.

Every record is one key holding one JSON string, so single-key get/set are
the only atomicity the cart layer relies on.
"""

import logging
from typing import Protocol

from redis.asyncio import Redis
from redis.exceptions import RedisError

import config
from exceptions.storage import StorageUnavailableException

logger = logging.getLogger(__name__)


class KeyValueStorage(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> None: ...

    async def delete(self, key: str) -> None: ...


class RedisStorage:
    """Redis-backed storage. Any transport error surfaces as StorageUnavailableException."""

    def __init__(self, redis: Redis):
        self.redis = redis

    async def get(self, key: str) -> str | None:
        try:
            value = await self.redis.get(key)
        except (RedisError, OSError) as e:
            raise StorageUnavailableException("get", key, str(e)) from e
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        return value

    async def set(self, key: str, value: str) -> None:
        try:
            await self.redis.set(key, value)
        except (RedisError, OSError) as e:
            raise StorageUnavailableException("set", key, str(e)) from e

    async def delete(self, key: str) -> None:
        try:
            await self.redis.delete(key)
        except (RedisError, OSError) as e:
            raise StorageUnavailableException("delete", key, str(e)) from e


class MemoryStorage:
    """Session-only storage, used as the degraded fallback and in tests."""

    def __init__(self):
        self._data: dict[str, str] = {}

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)


class ResilientStorage:
    """
    Wraps a durable backend and degrades to memory for the rest of the session.

    The first StorageUnavailableException is logged once and flips the wrapper
    into memory-only mode; callers never see the exception.
    """

    def __init__(self, primary: KeyValueStorage, fallback: MemoryStorage | None = None):
        self.primary = primary
        self.fallback = fallback or MemoryStorage()
        self._degraded = False

    @property
    def is_degraded(self) -> bool:
        return self._degraded

    def _degrade(self, e: StorageUnavailableException):
        if not self._degraded:
            logger.warning(f"[Storage] ⚠️ {e.message}. Continuing with in-memory storage for this session")
        self._degraded = True

    async def get(self, key: str) -> str | None:
        if not self._degraded:
            try:
                return await self.primary.get(key)
            except StorageUnavailableException as e:
                self._degrade(e)
        return await self.fallback.get(key)

    async def set(self, key: str, value: str) -> None:
        if not self._degraded:
            try:
                await self.primary.set(key, value)
                return
            except StorageUnavailableException as e:
                self._degrade(e)
        await self.fallback.set(key, value)

    async def delete(self, key: str) -> None:
        if not self._degraded:
            try:
                await self.primary.delete(key)
                return
            except StorageUnavailableException as e:
                self._degrade(e)
        await self.fallback.delete(key)


def create_redis_client() -> Redis:
    return Redis(
        host=config.REDIS_HOST,
        port=config.REDIS_PORT,
        password=config.REDIS_PASSWORD,
        db=config.REDIS_DB,
        decode_responses=True
    )


def create_storage(redis: Redis | None = None) -> ResilientStorage:
    return ResilientStorage(RedisStorage(redis or create_redis_client()))
