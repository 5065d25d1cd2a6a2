"""
Integration Tests: Redis-backed storage and cart notifications

Runs against fakeredis, so no Redis server is needed.
"""

from unittest.mock import AsyncMock

import pytest

from cart_events import RedisCartSyncChannel
from models.cart import LocalCartDTO
from models.cart_event import CartChangedEvent
from repositories.cart import CartRepository
from storage import RedisStorage, create_storage


class TestRedisStorage:

    @pytest.mark.asyncio
    async def test_round_trip(self, redis_client):
        storage = RedisStorage(redis_client)

        await storage.set("key", "value")
        assert await storage.get("key") == "value"
        await storage.delete("key")
        assert await storage.get("key") is None

    @pytest.mark.asyncio
    async def test_cart_repository_on_redis(self, redis_client, make_item, clock):
        repository = CartRepository(create_storage(redis_client), clock=clock)
        cart = LocalCartDTO(items=[make_item("1", quantity=3)])

        await repository.save(cart)

        assert (await repository.load()).total_quantity == 3
        assert await redis_client.exists("vendure_local_cart") == 1

    @pytest.mark.asyncio
    async def test_corrupted_record_is_deleted(self, redis_client, clock):
        await redis_client.set("vendure_local_cart", "]]]")
        repository = CartRepository(RedisStorage(redis_client), clock=clock)

        assert (await repository.load()).is_empty
        assert await redis_client.exists("vendure_local_cart") == 0


class TestRedisCartSyncChannel:

    @pytest.mark.asyncio
    async def test_poll_delivers_published_event(self, redis_client):
        channel = RedisCartSyncChannel(redis_client, "test:cart-events")
        listener = AsyncMock()
        channel.subscribe("tab-b", listener)
        await channel.connect()

        await channel.publish(CartChangedEvent(tab_id="tab-a", key="vendure_local_cart", last_update=1,
                                               total_quantity=4))
        delivered = 0
        for _ in range(5):
            delivered = await channel.poll(timeout=0.1)
            if delivered:
                break

        assert delivered == 1
        assert listener.await_args.args[0].total_quantity == 4
        await channel.close()

    @pytest.mark.asyncio
    async def test_malformed_notification_is_ignored(self, redis_client):
        channel = RedisCartSyncChannel(redis_client, "test:cart-events")
        listener = AsyncMock()
        channel.subscribe("tab-b", listener)
        await channel.connect()

        await redis_client.publish("test:cart-events", "not an event")
        results = [await channel.poll(timeout=0.1) for _ in range(3)]

        assert results == [0, 0, 0]
        listener.assert_not_awaited()
        await channel.close()
