"""
Unit Tests: storage backends

Tests for storage.py covering:
- RedisStorage error translation
- ResilientStorage degradation to memory for the rest of the session
"""

from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from exceptions.storage import StorageUnavailableException
from repositories.cart import CartRepository
from storage import MemoryStorage, RedisStorage, ResilientStorage


@pytest.fixture
def broken_redis():
    redis = AsyncMock()
    redis.get = AsyncMock(side_effect=RedisConnectionError("Connection refused"))
    redis.set = AsyncMock(side_effect=RedisConnectionError("Connection refused"))
    redis.delete = AsyncMock(side_effect=RedisConnectionError("Connection refused"))
    return redis


class TestRedisStorage:

    @pytest.mark.asyncio
    async def test_transport_error_becomes_storage_unavailable(self, broken_redis):
        storage = RedisStorage(broken_redis)

        with pytest.raises(StorageUnavailableException) as exc_info:
            await storage.get("vendure_local_cart")

        assert exc_info.value.operation == "get"
        assert exc_info.value.key == "vendure_local_cart"
        assert "Connection refused" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_bytes_are_decoded(self):
        redis = AsyncMock()
        redis.get = AsyncMock(return_value=b'{"a": 1}')

        assert await RedisStorage(redis).get("key") == '{"a": 1}'


class TestMemoryStorage:

    @pytest.mark.asyncio
    async def test_get_set_delete(self):
        storage = MemoryStorage()

        await storage.set("key", "value")
        assert await storage.get("key") == "value"

        await storage.delete("key")
        await storage.delete("key")
        assert await storage.get("key") is None


class TestResilientStorage:

    @pytest.mark.asyncio
    async def test_degrades_once_and_stays_in_memory(self, broken_redis, caplog):
        storage = ResilientStorage(RedisStorage(broken_redis))

        await storage.set("key", "value")
        assert storage.is_degraded is True
        assert await storage.get("key") == "value"
        await storage.delete("key")
        assert await storage.get("key") is None

        broken_redis.set.assert_awaited_once()
        broken_redis.get.assert_not_awaited()
        assert caplog.text.count("Continuing with in-memory storage") == 1

    @pytest.mark.asyncio
    async def test_healthy_primary_is_used(self):
        primary = MemoryStorage()
        storage = ResilientStorage(primary)

        await storage.set("key", "value")

        assert storage.is_degraded is False
        assert await primary.get("key") == "value"

    @pytest.mark.asyncio
    async def test_cart_keeps_working_when_storage_is_down(self, broken_redis, make_item, clock):
        repository = CartRepository(ResilientStorage(RedisStorage(broken_redis)), clock=clock)

        assert (await repository.load()).is_empty
        cart = (await repository.load())
        cart.items.append(make_item("1", quantity=2))
        await repository.save(cart)

        assert (await repository.load()).total_quantity == 2
