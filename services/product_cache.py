import logging

import config
from exceptions.storage import CacheCorruptedException
from models.catalog import (
    CachedProductDTO,
    CachedVariantDTO,
    CacheStatsDTO,
    PriceChangeDTO,
    ProductCacheEnvelopeDTO,
    StockChangeDTO,
    VariantChangesDTO,
)
from repositories.catalog import CatalogRepository
from utils.clock import Clock, now_ms

logger = logging.getLogger(__name__)


class ProductCacheService:
    """
    Durable product/variant cache with per-variant stock freshness.

    The envelope is loaded once and kept in memory; every write persists the
    whole envelope. Version mismatch, structural or integrity failure and
    age beyond the maximum all invalidate the entire record.
    """

    def __init__(self,
                 repository: CatalogRepository,
                 variant_ttl_seconds: int = config.VARIANT_CACHE_TTL_SECONDS,
                 max_age_days: int = config.PRODUCT_CACHE_MAX_AGE_DAYS,
                 clock: Clock = now_ms):
        self.repository = repository
        self.variant_ttl_ms = variant_ttl_seconds * 1000
        self.max_age_ms = max_age_days * 24 * 60 * 60 * 1000
        self.clock = clock
        self._envelope: ProductCacheEnvelopeDTO | None = None
        self._loaded = False
        self._stats = CacheStatsDTO()

    @property
    def stats(self) -> CacheStatsDTO:
        return self._stats

    @staticmethod
    def validate_cache_integrity(envelope: ProductCacheEnvelopeDTO) -> list[str]:
        errors = []
        if not envelope.version:
            errors.append("Invalid cache version")
        if envelope.last_cache_update <= 0:
            errors.append("Invalid last cache update timestamp")
        for key, product in envelope.products.items():
            if not product.product_id or not product.product_name or not product.slug:
                errors.append(f"Product {key} missing required fields")
            elif product.product_id != key:
                errors.append(f"Product {key} stored under the wrong key")
            for variant in product.variants:
                if not variant.id or not variant.name:
                    errors.append(f"Product {key} has invalid variant data")
                    break
        return errors

    def _record_error(self, message: str):
        self._stats.errors += 1
        self._stats.last_error = message
        self._stats.last_error_time = self.clock()

    async def _reset(self, reason: str):
        logger.warning(f"[ProductCache] ⚠️ Full cache reset: {reason}")
        self._record_error(reason)
        self._envelope = None
        await self.repository.delete()

    async def _load(self) -> ProductCacheEnvelopeDTO | None:
        if self._loaded:
            return self._envelope
        self._loaded = True
        try:
            envelope = await self.repository.load()
        except CacheCorruptedException as e:
            await self._reset(e.message)
            return None
        if envelope is None:
            return None

        self._stats = envelope.stats
        if self.clock() - envelope.last_cache_update > self.max_age_ms:
            logger.info("[ProductCache] Cache expired due to age")
            self._envelope = None
            await self.repository.delete()
            return None

        errors = self.validate_cache_integrity(envelope)
        if errors:
            await self._reset(f"integrity validation failed: {', '.join(errors)}")
            return None

        self._envelope = envelope
        return envelope

    async def _persist(self):
        self._envelope.stats = self._stats
        self._envelope.last_cache_update = self.clock()
        await self.repository.save(self._envelope)

    def _new_envelope(self) -> ProductCacheEnvelopeDTO:
        return ProductCacheEnvelopeDTO(
            version=self.repository.version,
            last_cache_update=self.clock(),
            products={},
            stats=self._stats
        )

    async def get_cached_products(self) -> ProductCacheEnvelopeDTO | None:
        envelope = await self._load()
        if envelope is None:
            self._stats.misses += 1
            return None
        self._stats.hits += 1
        return envelope

    async def save_products_to_cache(self, products: list[CachedProductDTO]):
        """Replace the cached product set; stats survive the replacement."""
        await self._load()
        now = self.clock()
        self._envelope = self._new_envelope()
        for product in products:
            product.last_updated = now
            self._envelope.products[product.product_id] = product
        await self._persist()
        logger.info(f"[ProductCache] Saved {len(products)} products to cache")

    async def update_product_cache_with_variants(self, product_id: str, variants: list[CachedVariantDTO],
                                                 product_name: str | None = None, slug: str | None = None):
        """
        Replace the full variant list of one product and mark it fresh.

        A product not yet cached is created from the given name and slug.
        """
        envelope = await self._load() or self._new_envelope()
        self._envelope = envelope
        now = self.clock()
        product = envelope.products.get(product_id)
        if product is None:
            product = CachedProductDTO(
                product_id=product_id,
                product_name=product_name or product_id,
                slug=slug or product_id,
                last_updated=now
            )
            envelope.products[product_id] = product
        for variant in variants:
            variant.last_updated = now
        product.variants = variants
        product.variant_data_last_updated = now
        await self._persist()
        logger.debug(f"[ProductCache] Updated {len(variants)} variants for product {product_id}")

    async def merge_variants(self, product_id: str, variants: list[CachedVariantDTO]):
        """
        Upsert individual variants, leaving the product's other variants and
        their freshness untouched.
        """
        if not variants:
            return
        envelope = await self._load() or self._new_envelope()
        self._envelope = envelope
        now = self.clock()
        product = envelope.products.get(product_id)
        if product is None:
            product = CachedProductDTO(product_id=product_id, product_name=product_id, slug=product_id,
                                       last_updated=now)
            envelope.products[product_id] = product
        by_id = {variant.id: index for index, variant in enumerate(product.variants)}
        for variant in variants:
            variant.last_updated = now
            if variant.id in by_id:
                product.variants[by_id[variant.id]] = variant
            else:
                product.variants.append(variant)
        await self._persist()

    def _variant_is_fresh(self, product: CachedProductDTO, variant: CachedVariantDTO) -> bool:
        stamp = variant.last_updated or product.variant_data_last_updated
        return stamp is not None and self.clock() - stamp <= self.variant_ttl_ms

    async def get_cached_product_variants(self, product_id: str) -> list[CachedVariantDTO] | None:
        """Variants of a product, or None unless the product's variant data is fresh."""
        if await self.is_variant_data_fresh(product_id):
            self._stats.variant_hits += 1
            return list(self._envelope.products[product_id].variants)
        self._stats.variant_misses += 1
        return None

    async def is_variant_data_fresh(self, product_id: str) -> bool:
        envelope = await self._load()
        if envelope is None or product_id not in envelope.products:
            return False
        stamp = envelope.products[product_id].variant_data_last_updated
        return stamp is not None and self.clock() - stamp <= self.variant_ttl_ms

    async def get_cached_variant(self, variant_id: str,
                                 allow_stale: bool = False) -> tuple[str, CachedVariantDTO] | None:
        """
        Find one variant across all cached products.

        Returns:
            (product_id, variant), or None when the variant is not cached or
            is past the TTL and allow_stale is False
        """
        envelope = await self._load()
        if envelope is not None:
            for product in envelope.products.values():
                for variant in product.variants:
                    if variant.id != variant_id:
                        continue
                    if allow_stale or self._variant_is_fresh(product, variant):
                        self._stats.variant_hits += 1
                        return product.product_id, variant
        self._stats.variant_misses += 1
        return None

    async def record_network_failure(self, error: Exception):
        self._record_error(f"Network failure: {error}")
        if self._envelope is not None:
            await self._persist()

    async def clear_cache(self):
        self._envelope = None
        self._loaded = True
        await self.repository.delete()
        logger.info("[ProductCache] Cache cleared")

    async def get_cache_stats(self) -> dict:
        envelope = await self._load()
        return {
            "product_count": len(envelope.products) if envelope else 0,
            "last_update": envelope.last_cache_update if envelope else None,
            "stats": self._stats.model_dump(),
        }

    @staticmethod
    def compare_variant_data(cached: list[CachedVariantDTO], fresh: list[CachedVariantDTO]) -> VariantChangesDTO:
        changes = VariantChangesDTO()
        cached_by_id = {variant.id: variant for variant in cached}
        fresh_ids = {variant.id for variant in fresh}

        for variant in fresh:
            previous = cached_by_id.get(variant.id)
            if previous is None:
                changes.new_variants.append(variant.id)
                continue
            if previous.stock_level != variant.stock_level:
                changes.stock_changes.append(StockChangeDTO(
                    variant_id=variant.id, old_stock=previous.stock_level, new_stock=variant.stock_level
                ))
            if previous.price_with_tax != variant.price_with_tax:
                changes.price_changes.append(PriceChangeDTO(
                    variant_id=variant.id, old_price=previous.price_with_tax, new_price=variant.price_with_tax
                ))

        changes.missing_variants = [variant.id for variant in cached if variant.id not in fresh_ids]
        return changes
