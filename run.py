import asyncio
import logging

from redis.asyncio import Redis

import config
from cart_events import RedisCartSyncChannel
from models.cart_state import CartStateDTO
from repositories.cart import CartRepository
from repositories.catalog import CatalogRepository
from services.cart_context import CartContext
from services.checkout import CheckoutService
from services.coupon import CouponValidationService
from services.local_cart import LocalCartService
from services.product_cache import ProductCacheService
from services.product_catalog import ProductCatalog, load_static_products
from services.stock import StockReconciliationService
from storage import RedisStorage, ResilientStorage
from utils.clock import Clock, now_ms
from utils.logging_config import setup_logging
from vendure_api.VendureApiWrapper import VendureApiWrapper

logger = logging.getLogger(__name__)


class Storefront:
    """
    The cart core of one shopper session, wired over Redis and the backend API.

    Each service is constructed once here and handed to its consumers.
    """

    def __init__(self,
                 redis: Redis,
                 api: VendureApiWrapper,
                 tab_id: str | None = None,
                 static_data_path: str = config.CATALOG_STATIC_DATA_PATH,
                 clock: Clock = now_ms):
        self.api = api
        storage = ResilientStorage(RedisStorage(redis))
        self.channel = RedisCartSyncChannel(redis)
        self.product_cache = ProductCacheService(CatalogRepository(storage), clock=clock)
        self.stock_service = StockReconciliationService(api, self.product_cache, clock=clock)
        self.cart_service = LocalCartService(
            CartRepository(storage, clock=clock), self.stock_service, channel=self.channel, tab_id=tab_id, clock=clock
        )
        self.coupon_service = CouponValidationService(api, api)
        self.cart_context = CartContext(self.cart_service, self.stock_service, self.coupon_service, api, clock=clock)
        self.catalog = ProductCatalog(
            load_static_products(static_data_path), api, product_cache=self.product_cache, clock=clock
        )
        self.checkout_service = CheckoutService(self.cart_context, api)

    async def start(self) -> CartStateDTO:
        state = await self.cart_context.load()
        logger.info(f"[Storefront] Cart loaded for tab {self.cart_service.tab_id} "
                    f"({state.local_cart.total_quantity} items)")
        return state

    async def close(self):
        self.cart_context.close()
        await self.channel.close()
        await self.api.close()
        logger.info("[Storefront] Session closed")


async def main():
    redis = Redis(
        host=config.REDIS_HOST,
        port=config.REDIS_PORT,
        password=config.REDIS_PASSWORD,
        db=config.REDIS_DB,
        decode_responses=True
    )
    storefront = Storefront(redis, VendureApiWrapper())
    try:
        await storefront.start()
        # Foreign cart writes arrive here until the process is stopped
        await storefront.channel.listen()
    finally:
        await storefront.close()
        await redis.aclose()


if __name__ == "__main__":
    setup_logging()
    asyncio.run(main())
