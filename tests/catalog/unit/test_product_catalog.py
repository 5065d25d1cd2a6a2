"""
Unit Tests: ProductCatalog

Tests for services/product_catalog.py covering:
- static descriptors merged with live stock
- in-stock size/color derivation
- single-flight update_stock()
- write-through into the product cache
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from services.product_catalog import ProductCatalog, load_static_products

SHORT_SLEEVE_STOCK = {"1": "3", "2": "0", "3": "0", "4": "2", "5": "0", "6": "0"}


@pytest.fixture
def static_products(products_json_path):
    return load_static_products(products_json_path)


@pytest.fixture
def catalog_source():
    source = AsyncMock()
    source.fetch_product_stock = AsyncMock(return_value={
        "shortsleeveshirt": SHORT_SLEEVE_STOCK,
        "longsleeveshirt": {"7": "0", "8": "0", "9": "0", "10": "0"},
    })
    return source


@pytest.fixture
def catalog(static_products, catalog_source, product_cache, clock):
    return ProductCatalog(static_products, catalog_source, product_cache=product_cache, clock=clock)


class TestStaticData:

    def test_load_static_products(self, static_products):
        assert set(static_products) == {"short_sleeve", "long_sleeve"}
        assert static_products["short_sleeve"].slug == "shortsleeveshirt"
        assert len(static_products["short_sleeve"].variants) == 6

    def test_catalog_without_stock_has_nothing_in_stock(self, catalog):
        assert catalog.get_in_stock_products() == {"short_sleeve": None, "long_sleeve": None}
        assert catalog.get_in_stock_sizes("short_sleeve") == []


class TestMergeProductData:

    def test_merge_derives_availability(self, static_products):
        product = ProductCatalog.merge_product_data(static_products["short_sleeve"], SHORT_SLEEVE_STOCK)

        assert product.has_any_stock is True
        assert [variant.in_stock for variant in product.variants] == [True, False, False, True, False, False]
        assert all(variant.price_with_tax == product.base_price for variant in product.variants)

    def test_non_numeric_stock_is_out_of_stock(self, static_products):
        product = ProductCatalog.merge_product_data(static_products["long_sleeve"], {"7": "IN_STOCK"})

        assert product.has_any_stock is False


class TestStockUpdate:

    @pytest.mark.asyncio
    async def test_initialize_fetches_all_slugs(self, catalog, catalog_source, clock):
        await catalog.initialize()

        catalog_source.fetch_product_stock.assert_awaited_once_with(["shortsleeveshirt", "longsleeveshirt"])
        assert catalog.last_stock_update == clock.now
        assert catalog.get_in_stock_products()["long_sleeve"] is None
        assert catalog.get_in_stock_products()["short_sleeve"].name

    @pytest.mark.asyncio
    async def test_sizes_and_colors(self, catalog, static_products):
        await catalog.update_stock()
        variants = static_products["short_sleeve"].variants
        expected_sizes = list(dict.fromkeys(v.size_code for v in variants if SHORT_SLEEVE_STOCK[v.variant_id] != "0"))
        expected_colors = list(dict.fromkeys(v.color_code for v in variants if SHORT_SLEEVE_STOCK[v.variant_id] != "0"))
        first_in_stock = next(v for v in variants if SHORT_SLEEVE_STOCK[v.variant_id] != "0")

        assert catalog.get_in_stock_sizes("short_sleeve") == expected_sizes
        assert catalog.get_in_stock_colors("short_sleeve") == expected_colors
        assert first_in_stock.color_code in catalog.get_in_stock_colors("short_sleeve", first_in_stock.size_code)
        assert catalog.get_in_stock_colors("short_sleeve", "XXL") == []
        assert catalog.get_in_stock_colors("unknown") == []

    @pytest.mark.asyncio
    async def test_get_variant(self, catalog):
        await catalog.update_stock()

        variant = catalog.get_variant("short_sleeve", "1")

        assert variant.stock_level == "3"
        assert variant.in_stock is True
        assert catalog.get_variant("short_sleeve", "99") is None
        assert catalog.get_variant("hoodie", "1") is None

    @pytest.mark.asyncio
    async def test_concurrent_updates_share_one_fetch(self, catalog, catalog_source):
        release = asyncio.Event()
        original = catalog_source.fetch_product_stock.return_value

        async def slow_fetch(slugs):
            await release.wait()
            return original

        catalog_source.fetch_product_stock.side_effect = slow_fetch

        first = asyncio.ensure_future(catalog.update_stock())
        second = asyncio.ensure_future(catalog.update_stock())
        await asyncio.sleep(0)
        release.set()
        await asyncio.gather(first, second)

        assert catalog_source.fetch_product_stock.await_count == 1

        await catalog.update_stock()
        assert catalog_source.fetch_product_stock.await_count == 2

    @pytest.mark.asyncio
    async def test_cancelled_caller_leaves_shared_update_running(self, catalog, catalog_source):
        started = asyncio.Event()
        release = asyncio.Event()
        original = catalog_source.fetch_product_stock.return_value

        async def slow_fetch(slugs):
            started.set()
            await release.wait()
            return original

        catalog_source.fetch_product_stock.side_effect = slow_fetch

        first = asyncio.ensure_future(catalog.update_stock())
        second = asyncio.ensure_future(catalog.update_stock())
        await started.wait()
        first.cancel()
        await asyncio.gather(first, return_exceptions=True)
        release.set()
        await second

        assert first.cancelled()
        assert catalog_source.fetch_product_stock.await_count == 1
        assert catalog.needs_stock_refresh() is False

    @pytest.mark.asyncio
    async def test_needs_stock_refresh(self, catalog, clock):
        assert catalog.needs_stock_refresh() is True

        await catalog.update_stock()
        assert catalog.needs_stock_refresh() is False

        clock.advance(31_000)
        assert catalog.needs_stock_refresh() is True

    @pytest.mark.asyncio
    async def test_initialize_from_server_data(self, catalog, catalog_source, clock):
        await catalog.initialize_from_server({"long_sleeve": {"8": "4"}})

        catalog_source.fetch_product_stock.assert_not_awaited()
        assert catalog.get_in_stock_products()["long_sleeve"] is not None
        assert catalog.get_in_stock_products()["short_sleeve"] is None
        assert catalog.last_stock_update == clock.now

    @pytest.mark.asyncio
    async def test_update_writes_through_to_product_cache(self, catalog, product_cache):
        await catalog.update_stock()

        cached = await product_cache.get_cached_product_variants("1")

        assert {variant.id: variant.stock_level for variant in cached} == SHORT_SLEEVE_STOCK

    @pytest.mark.asyncio
    async def test_stats(self, catalog, clock):
        await catalog.update_stock()

        stats = catalog.get_stats()

        assert stats.last_stock_update == clock.now
        assert stats.products == {"short_sleeve": True, "long_sleeve": False}
        assert stats.variant_counts == {"short_sleeve": 6, "long_sleeve": 4}
