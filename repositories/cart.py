import json
import logging

from pydantic import ValidationError

import config
from exceptions.order import ConversionInProgressException
from exceptions.storage import CacheCorruptedException
from models.cart import CartEnvelopeDTO, LocalCartDTO
from storage import KeyValueStorage
from utils.clock import Clock, now_ms

logger = logging.getLogger(__name__)


class CartRepository:
    """
    Reads and writes the durable cart envelope.

    A record that fails parsing, validation or the version check is deleted
    as a whole and replaced by an empty cart. It is never patched.
    """

    def __init__(self,
                 storage: KeyValueStorage,
                 key: str = config.CART_STORAGE_KEY,
                 version: str = config.CART_CACHE_VERSION,
                 currency_code: str = config.CURRENCY.value,
                 lock_key: str = config.CART_CONVERSION_LOCK_KEY,
                 lock_timeout_seconds: int = config.CART_CONVERSION_LOCK_TIMEOUT_SECONDS,
                 clock: Clock = now_ms):
        self.storage = storage
        self.key = key
        self.version = version
        self.currency_code = currency_code
        self.lock_key = lock_key
        self.lock_timeout_ms = lock_timeout_seconds * 1000
        self.clock = clock

    def empty_cart(self) -> LocalCartDTO:
        return LocalCartDTO.empty(self.currency_code)

    def parse(self, raw: str) -> CartEnvelopeDTO:
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, TypeError) as e:
            raise CacheCorruptedException(self.key, f"invalid JSON ({e})") from e
        if not isinstance(data, dict):
            raise CacheCorruptedException(self.key, "record is not an object")
        if data.get("version") != self.version:
            raise CacheCorruptedException(
                self.key, f"version mismatch (stored {data.get('version')}, expected {self.version})"
            )
        try:
            envelope = CartEnvelopeDTO.model_validate(data)
        except ValidationError as e:
            raise CacheCorruptedException(self.key, f"structure check failed ({e.error_count()} errors)") from e
        envelope.cart.recalculate_totals()
        return envelope

    async def load_envelope(self) -> CartEnvelopeDTO | None:
        raw = await self.storage.get(self.key)
        if raw is None:
            return None
        try:
            return self.parse(raw)
        except CacheCorruptedException as e:
            logger.warning(f"[Cart] ⚠️ {e.message}. Resetting stored cart")
            await self.storage.delete(self.key)
            return None

    async def load(self) -> LocalCartDTO:
        envelope = await self.load_envelope()
        if envelope is None:
            return self.empty_cart()
        return envelope.cart

    async def save(self, cart: LocalCartDTO) -> CartEnvelopeDTO:
        cart.recalculate_totals()
        envelope = CartEnvelopeDTO(version=self.version, last_update=self.clock(), cart=cart)
        await self.storage.set(self.key, envelope.model_dump_json())
        return envelope

    async def delete(self):
        await self.storage.delete(self.key)

    async def acquire_conversion_lock(self) -> int:
        """
        Mark a conversion as running.

        A lock older than the timeout is treated as left behind by a crashed
        conversion and taken over.

        Raises:
            ConversionInProgressException: If a live lock is held
        """
        now = self.clock()
        raw = await self.storage.get(self.lock_key)
        if raw is not None:
            try:
                started_at = int(raw)
            except ValueError:
                started_at = 0
            if now - started_at < self.lock_timeout_ms:
                raise ConversionInProgressException(started_at)
            logger.warning(f"[Cart] ⚠️ Clearing stale conversion lock from {started_at}")
        await self.storage.set(self.lock_key, str(now))
        return now

    async def release_conversion_lock(self):
        await self.storage.delete(self.lock_key)
