"""
Cross-tab cart notifications.

Every tab that writes the durable cart publishes a CartChangedEvent. Other
tabs of the same origin receive it through their subscription; a tab never
receives its own events, so same-tab writes cannot loop back into a reload.
"""

import itertools
import logging
from typing import Awaitable, Callable, Protocol

from pydantic import ValidationError
from redis.asyncio import Redis
from redis.exceptions import RedisError

import config
from models.cart_event import CartChangedEvent

logger = logging.getLogger(__name__)

CartChangeListener = Callable[[CartChangedEvent], Awaitable[None]]
Unsubscribe = Callable[[], None]


class CartSyncChannel(Protocol):
    def subscribe(self, tab_id: str, listener: CartChangeListener) -> Unsubscribe: ...

    async def publish(self, event: CartChangedEvent) -> None: ...


class InProcessCartSyncChannel:
    """
    Channel shared by reference between the tabs of one process.

    Tests use it to simulate foreign writes without a real backend.
    """

    def __init__(self):
        self._subscribers: dict[int, tuple[str, CartChangeListener]] = {}
        self._tokens = itertools.count()

    def subscribe(self, tab_id: str, listener: CartChangeListener) -> Unsubscribe:
        token = next(self._tokens)
        self._subscribers[token] = (tab_id, listener)

        def unsubscribe():
            self._subscribers.pop(token, None)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def publish(self, event: CartChangedEvent) -> None:
        await self.dispatch(event)

    async def dispatch(self, event: CartChangedEvent) -> int:
        delivered = 0
        for tab_id, listener in list(self._subscribers.values()):
            if tab_id == event.tab_id:
                continue
            try:
                await listener(event)
                delivered += 1
            except Exception as e:
                # One broken tab must not stop delivery to the others
                logger.error(f"[CartSync] Listener for tab {tab_id} failed: {e}", exc_info=True)
        return delivered


class RedisCartSyncChannel:
    """
    Channel backed by Redis pub/sub, for tabs served by different processes.

    Local subscribers are dispatched in-process; events published by any
    process arrive through poll() or the listen() loop.
    """

    def __init__(self, redis: Redis, channel_name: str = config.CART_SYNC_CHANNEL):
        self.redis = redis
        self.channel_name = channel_name
        self._local = InProcessCartSyncChannel()
        self._pubsub = None

    def subscribe(self, tab_id: str, listener: CartChangeListener) -> Unsubscribe:
        return self._local.subscribe(tab_id, listener)

    async def connect(self):
        if self._pubsub is None:
            self._pubsub = self.redis.pubsub()
            await self._pubsub.subscribe(self.channel_name)
            logger.info(f"[CartSync] Subscribed to {self.channel_name}")

    async def publish(self, event: CartChangedEvent) -> None:
        try:
            await self.redis.publish(self.channel_name, event.model_dump_json())
        except (RedisError, OSError) as e:
            # Other tabs converge on their next reconciliation pass
            logger.warning(f"[CartSync] ⚠️ Could not publish cart change: {e}")

    async def poll(self, timeout: float = 1.0) -> int:
        """
        Deliver at most one pending notification.

        Returns:
            Number of local listeners the event reached (0 if nothing was pending)
        """
        await self.connect()
        message = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=timeout)
        if message is None or message.get("type") != "message":
            return 0
        try:
            event = CartChangedEvent.model_validate_json(message["data"])
        except ValidationError as e:
            logger.warning(f"[CartSync] Ignoring malformed cart notification: {e}")
            return 0
        return await self._local.dispatch(event)

    async def listen(self):
        await self.connect()
        while True:
            await self.poll(timeout=1.0)

    async def close(self):
        if self._pubsub is not None:
            await self._pubsub.unsubscribe(self.channel_name)
            await self._pubsub.aclose()
            self._pubsub = None
