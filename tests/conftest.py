"""
Pytest configuration and fixtures for tests.

This file is automatically loaded by pytest and provides shared fixtures
and configuration for all tests.
"""

import os
import sys
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from fakeredis import FakeAsyncRedis

# Add parent directory to Python path so tests can import modules
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

# config reads the environment at import time
os.environ.setdefault("RUNTIME_ENVIRONMENT", "TEST")
os.environ.setdefault("CURRENCY", "USD")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

from cart_events import InProcessCartSyncChannel  # noqa: E402
from models.cart import CartItemDTO, ProductRefDTO, ProductVariantDTO, VariantStockDTO  # noqa: E402
from repositories.cart import CartRepository  # noqa: E402
from repositories.catalog import CatalogRepository  # noqa: E402
from services.local_cart import LocalCartService  # noqa: E402
from services.product_cache import ProductCacheService  # noqa: E402
from services.stock import StockReconciliationService  # noqa: E402
from storage import MemoryStorage  # noqa: E402

PRODUCTS_JSON = os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'data', 'products.json'))


class FakeClock:
    """Deterministic epoch-ms clock; call advance() to move time forward."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int):
        self.now += ms

    def advance_minutes(self, minutes: float):
        self.advance(int(minutes * 60 * 1000))


# ============================================================================
# Redis / Storage Fixtures
# ============================================================================

@pytest_asyncio.fixture
async def redis_client():
    """Create fake Redis client for testing (no real Redis server needed)."""
    client = FakeAsyncRedis(decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def products_json_path():
    return PRODUCTS_JSON


# ============================================================================
# Cart Data Factories
# ============================================================================

@pytest.fixture
def make_item():
    """Factory for cart lines; price in cents."""

    def _make(variant_id: str = "1", quantity: int = 1, price: int = 2900,
              name: str | None = None, stock_level: str | None = None) -> CartItemDTO:
        return CartItemDTO(
            product_variant_id=variant_id,
            quantity=quantity,
            product_variant=ProductVariantDTO(
                id=variant_id,
                name=name or f"Shirt {variant_id}",
                price=price,
                stock_level=stock_level,
                product=ProductRefDTO(id="1", name="Short Sleeve Shirt", slug="shortsleeveshirt")
            )
        )

    return _make


# ============================================================================
# Stock Source Fixtures
# ============================================================================

@pytest.fixture
def stock_levels() -> dict[str, int]:
    """Backend stock per variant ID. Variants missing here are unknown to the backend."""
    return {}


@pytest.fixture
def variant_prices() -> dict[str, int]:
    """Backend unit price per variant ID; defaults to 2900."""
    return {}


@pytest.fixture
def stock_source(stock_levels, variant_prices):
    async def fetch_variant_stock(variant_ids):
        return [
            VariantStockDTO(
                variant_id=variant_id,
                stock_level=stock_levels[variant_id],
                price=variant_prices.get(variant_id, 2900),
                currency_code="USD",
                product_id="1",
                name=f"Shirt {variant_id}"
            )
            for variant_id in variant_ids if variant_id in stock_levels
        ]

    source = AsyncMock()
    source.fetch_variant_stock = AsyncMock(side_effect=fetch_variant_stock)
    return source


# ============================================================================
# Service Fixtures
# ============================================================================

@pytest.fixture
def product_cache(storage, clock):
    return ProductCacheService(CatalogRepository(storage), clock=clock)


@pytest.fixture
def stock_service(stock_source, product_cache, clock):
    return StockReconciliationService(stock_source, product_cache, clock=clock)


@pytest.fixture
def cart_repository(storage, clock):
    return CartRepository(storage, currency_code="USD", clock=clock)


@pytest.fixture
def sync_channel():
    return InProcessCartSyncChannel()


@pytest.fixture
def cart_service(cart_repository, stock_service, sync_channel, clock):
    return LocalCartService(cart_repository, stock_service, channel=sync_channel, tab_id="tab-a", clock=clock)


@pytest.fixture
def order_creator():
    creator = AsyncMock()
    creator.create_order = AsyncMock()
    return creator
