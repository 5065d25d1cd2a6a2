import asyncio
import json
import logging
from pathlib import Path

import config
from models.catalog import (
    CachedVariantDTO,
    CatalogProductDTO,
    CatalogStatsDTO,
    CatalogVariantDTO,
    StaticProductDTO,
)
from services.product_cache import ProductCacheService
from utils.clock import Clock, now_ms
from utils.stock_level import parse_stock_level
from vendure_api.protocols import CatalogStockSource

logger = logging.getLogger(__name__)


def load_static_products(path: str | Path = config.CATALOG_STATIC_DATA_PATH) -> dict[str, StaticProductDTO]:
    """Read the static product descriptors, keyed by product type."""
    with open(path, encoding="utf-8") as f:
        raw = json.load(f)
    return {product_type: StaticProductDTO.model_validate(data) for product_type, data in raw.items()}


class ProductCatalog:
    """
    Read-through catalog: static descriptors merged with live stock.

    Reads are pure lookups against the merged view. update_stock() is
    single-flight: concurrent callers await the same in-flight refresh.
    """

    def __init__(self,
                 static_products: dict[str, StaticProductDTO],
                 stock_source: CatalogStockSource,
                 product_cache: ProductCacheService | None = None,
                 stock_ttl_seconds: int = config.CATALOG_STOCK_TTL_SECONDS,
                 clock: Clock = now_ms):
        self.static_products = static_products
        self.stock_source = stock_source
        self.product_cache = product_cache
        self.stock_ttl_ms = stock_ttl_seconds * 1000
        self.clock = clock
        self.last_stock_update = 0
        self._update_task: asyncio.Task | None = None
        self._products: dict[str, CatalogProductDTO] = {
            product_type: self.merge_product_data(static, {})
            for product_type, static in static_products.items()
        }

    @staticmethod
    def merge_product_data(static: StaticProductDTO, stock_levels: dict[str, str]) -> CatalogProductDTO:
        """Merge live stock into a static descriptor; variants without stock data count as zero."""
        variants = []
        for static_variant in static.variants:
            stock_level = stock_levels.get(static_variant.variant_id, "0")
            variants.append(CatalogVariantDTO(
                id=static_variant.variant_id,
                variant_id=static_variant.variant_id,
                size=static_variant.size,
                size_code=static_variant.size_code,
                color=static_variant.color,
                color_code=static_variant.color_code,
                sku=static_variant.sku,
                stock_level=stock_level,
                price_with_tax=static.base_price,
                currency_code=static.currency_code,
                in_stock=parse_stock_level(stock_level) > 0
            ))

        in_stock = [variant for variant in variants if variant.in_stock]
        return CatalogProductDTO(
            id=static.id,
            name=static.name,
            slug=static.slug,
            base_price=static.base_price,
            currency_code=static.currency_code,
            has_any_stock=bool(in_stock),
            in_stock_sizes=list(dict.fromkeys(variant.size_code for variant in in_stock)),
            in_stock_colors=list(dict.fromkeys(variant.color_code for variant in in_stock)),
            variants=variants
        )

    async def initialize(self):
        logger.info("[Catalog] Initializing catalog...")
        await self.update_stock()
        logger.info("[Catalog] ✅ Catalog initialized")

    async def initialize_from_server(self, stock_data: dict[str, dict[str, str]]):
        """
        Seed stock from data the server already fetched, keyed by product type
        and then variant ID. Product types missing from stock_data keep their
        current view.
        """
        for product_type, static in self.static_products.items():
            if product_type in stock_data:
                self._products[product_type] = self.merge_product_data(static, stock_data[product_type])
        self.last_stock_update = self.clock()
        await self._write_to_cache()
        logger.info(f"[Catalog] ✅ Catalog initialized from server data ({self._in_stock_summary()})")

    async def update_stock(self):
        """Concurrent callers share one in-flight update; cancelling a caller leaves it running."""
        if self._update_task is None:
            self._update_task = asyncio.ensure_future(self._perform_stock_update())
            self._update_task.add_done_callback(self._clear_update_task)
        await asyncio.shield(self._update_task)

    def _clear_update_task(self, task: asyncio.Future):
        if self._update_task is task:
            self._update_task = None

    async def _perform_stock_update(self):
        started = self.clock()
        logger.info("[Catalog] Updating stock levels...")
        slugs = {product_type: static.slug for product_type, static in self.static_products.items()}
        stock_by_slug = await self.stock_source.fetch_product_stock(list(slugs.values()))

        for product_type, slug in slugs.items():
            self._products[product_type] = self.merge_product_data(
                self.static_products[product_type], stock_by_slug.get(slug, {})
            )
        self.last_stock_update = self.clock()
        await self._write_to_cache()
        logger.info(f"[Catalog] ✅ Stock updated in {self.clock() - started}ms ({self._in_stock_summary()})")

    async def _write_to_cache(self):
        if self.product_cache is None:
            return
        for product in self._products.values():
            await self.product_cache.update_product_cache_with_variants(
                product.id,
                [
                    CachedVariantDTO(
                        id=variant.variant_id,
                        name=f"{product.name} {variant.size} {variant.color}",
                        stock_level=variant.stock_level,
                        price_with_tax=variant.price_with_tax,
                        currency_code=variant.currency_code
                    )
                    for variant in product.variants
                ],
                product_name=product.name,
                slug=product.slug
            )

    def _in_stock_summary(self) -> str:
        return ", ".join(f"{product_type} in stock: {product.has_any_stock}"
                         for product_type, product in self._products.items())

    def get_product(self, product_type: str) -> CatalogProductDTO | None:
        return self._products.get(product_type)

    def get_in_stock_products(self) -> dict[str, CatalogProductDTO | None]:
        return {
            product_type: product if product.has_any_stock else None
            for product_type, product in self._products.items()
        }

    def get_in_stock_sizes(self, product_type: str) -> list[str]:
        product = self._products.get(product_type)
        return list(product.in_stock_sizes) if product else []

    def get_in_stock_colors(self, product_type: str, size_code: str | None = None) -> list[str]:
        product = self._products.get(product_type)
        if product is None:
            return []
        if size_code is None:
            return list(product.in_stock_colors)
        return list(dict.fromkeys(
            variant.color_code for variant in product.variants
            if variant.in_stock and variant.size_code == size_code
        ))

    def get_variant(self, product_type: str, variant_id: str) -> CatalogVariantDTO | None:
        product = self._products.get(product_type)
        if product is None:
            return None
        return next((variant for variant in product.variants if variant.id == variant_id), None)

    def needs_stock_refresh(self) -> bool:
        return self.clock() - self.last_stock_update > self.stock_ttl_ms

    def get_stats(self) -> CatalogStatsDTO:
        return CatalogStatsDTO(
            last_stock_update=self.last_stock_update,
            products={product_type: product.has_any_stock for product_type, product in self._products.items()},
            variant_counts={product_type: len(product.variants) for product_type, product in self._products.items()}
        )
