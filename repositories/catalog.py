import json
import logging

from pydantic import ValidationError

import config
from exceptions.storage import CacheCorruptedException
from models.catalog import ProductCacheEnvelopeDTO
from storage import KeyValueStorage

logger = logging.getLogger(__name__)


class CatalogRepository:
    """Reads and writes the durable product cache envelope."""

    def __init__(self,
                 storage: KeyValueStorage,
                 key: str = config.PRODUCT_CACHE_KEY,
                 version: str = config.PRODUCT_CACHE_VERSION):
        self.storage = storage
        self.key = key
        self.version = version

    def parse(self, raw: str) -> ProductCacheEnvelopeDTO:
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
            return ProductCacheEnvelopeDTO.model_validate(data)
        except ValidationError as e:
            raise CacheCorruptedException(self.key, f"structure check failed ({e.error_count()} errors)") from e

    async def load(self) -> ProductCacheEnvelopeDTO | None:
        """
        Load the stored envelope.

        Raises:
            CacheCorruptedException: If the stored record cannot be trusted
        """
        raw = await self.storage.get(self.key)
        if raw is None:
            return None
        return self.parse(raw)

    async def save(self, envelope: ProductCacheEnvelopeDTO):
        await self.storage.set(self.key, envelope.model_dump_json())

    async def delete(self):
        await self.storage.delete(self.key)
