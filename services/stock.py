import logging

import config
from enums.stock_action import StockAction
from enums.stock_status import StockStatus
from exceptions.network import NetworkFailureException
from models.cart import CartItemDTO, LocalCartDTO, StockValidationErrorsDTO, StockValidationResultDTO, VariantStockDTO
from models.catalog import CachedVariantDTO
from services.product_cache import ProductCacheService
from utils.clock import Clock, now_ms
from utils.stock_level import parse_stock_level
from vendure_api.protocols import StockPriceSource

logger = logging.getLogger(__name__)


class StockReconciliationService:
    """
    Answers "is quantity Q of variant V sellable, and at what price?".

    Lookups go through three tiers: the product cache while fresh, a batched
    network fetch, and finally the last-known cached value flagged STALE.
    """

    def __init__(self,
                 source: StockPriceSource,
                 product_cache: ProductCacheService,
                 batch_size: int = config.STOCK_BATCH_SIZE,
                 clock: Clock = now_ms):
        self.source = source
        self.product_cache = product_cache
        self.batch_size = max(batch_size, 1)
        self.clock = clock

    @staticmethod
    def _from_cache(product_id: str, variant: CachedVariantDTO, status: StockStatus) -> VariantStockDTO:
        return VariantStockDTO(
            variant_id=variant.id,
            name=variant.name,
            stock_level=parse_stock_level(variant.stock_level),
            price=variant.price_with_tax,
            currency_code=variant.currency_code,
            product_id=product_id,
            status=status
        )

    async def _write_back(self, fetched: list[VariantStockDTO]):
        by_product: dict[str, list[CachedVariantDTO]] = {}
        for stock in fetched:
            by_product.setdefault(stock.product_id or f"variant-{stock.variant_id}", []).append(CachedVariantDTO(
                id=stock.variant_id,
                name=stock.name or stock.variant_id,
                stock_level=str(stock.stock_level),
                price_with_tax=stock.price,
                currency_code=stock.currency_code
            ))
        for product_id, variants in by_product.items():
            await self.product_cache.merge_variants(product_id, variants)

    async def lookup_variants(self, variant_ids: list[str], force_fresh: bool = False) -> dict[str, VariantStockDTO]:
        """
        Best available stock and price per variant.

        A failing batch is logged and skipped; its variants fall back to the
        last-known cached value (STALE) or are left out. Variants the source
        does not know are left out. Absent keys mean unknown, never unlimited.
        """
        ids = list(dict.fromkeys(variant_ids))
        result: dict[str, VariantStockDTO] = {}
        pending = []

        for variant_id in ids:
            if not force_fresh:
                cached = await self.product_cache.get_cached_variant(variant_id)
                if cached is not None:
                    result[variant_id] = self._from_cache(*cached, StockStatus.FRESH)
                    continue
            pending.append(variant_id)

        failed = []
        for start in range(0, len(pending), self.batch_size):
            batch = pending[start:start + self.batch_size]
            try:
                fetched = await self.source.fetch_variant_stock(batch)
            except NetworkFailureException as e:
                logger.warning(f"[Stock] ⚠️ Batch of {len(batch)} variants failed: {e.reason}")
                await self.product_cache.record_network_failure(e)
                failed.extend(batch)
                continue
            requested = set(batch)
            fetched = [stock for stock in fetched if stock.variant_id in requested]
            for stock in fetched:
                stock.status = StockStatus.FETCHED
                result[stock.variant_id] = stock
            await self._write_back(fetched)

        for variant_id in failed:
            cached = await self.product_cache.get_cached_variant(variant_id, allow_stale=True)
            if cached is not None:
                result[variant_id] = self._from_cache(*cached, StockStatus.STALE)
                logger.info(f"[Stock] Using last-known stock for variant {variant_id}")

        return result

    async def check_variant_stock(self, variant_ids: list[str]) -> dict[str, int]:
        stock = await self.lookup_variants(variant_ids)
        return {variant_id: value.stock_level for variant_id, value in stock.items()}

    @staticmethod
    def validate_stock_level(name: str, requested: int, stock: VariantStockDTO | None) -> StockValidationResultDTO:
        """
        Apply the clamp policy to one requested quantity.

        - requested fits: success
        - no stock left: failure, only removal is offered
        - partial stock: failure, quantity clamped to what is available
        - stock unknown: failure, nothing is clamped
        """
        if stock is None:
            return StockValidationResultDTO(
                success=False,
                error=f"Unable to verify stock for {name}. Please try again."
            )
        available = stock.stock_level
        if requested <= available:
            return StockValidationResultDTO(success=True, available_stock=available, adjusted_quantity=requested)
        if available <= 0:
            return StockValidationResultDTO(
                success=False,
                available_stock=0,
                adjusted_quantity=0,
                error=f"{name}: Out of stock. Please remove from cart.",
                action=StockAction.REMOVE
            )
        return StockValidationResultDTO(
            success=False,
            available_stock=available,
            adjusted_quantity=available,
            error=f"{name}: Only {available} available (you requested {requested})",
            action=StockAction.ADJUST
        )

    async def validate_stock(self, cart: LocalCartDTO) -> StockValidationErrorsDTO:
        """
        Re-confirm every line against forced-fresh stock before checkout.

        Any shortfall, or stock that could not be confirmed, fails the whole
        validation; nothing is truncated.
        """
        if cart.is_empty:
            return StockValidationErrorsDTO(valid=True)

        stock = await self.lookup_variants([item.product_variant_id for item in cart.items], force_fresh=True)
        report = StockValidationErrorsDTO(valid=True)

        for item in cart.items:
            variant_id = item.product_variant_id
            name = item.product_variant.name
            current = stock.get(variant_id)
            if current is not None and current.price is not None:
                report.prices[variant_id] = current.price

            if current is None or not current.is_confirmed:
                message = f"Unable to verify stock for {name}. Please try again."
                report.retryable = True
            elif current.stock_level <= 0:
                message = f"{name}: Out of stock. Please remove from cart."
            elif item.quantity > current.stock_level:
                message = f"{name}: Only {current.stock_level} available (you have {item.quantity})"
            else:
                continue
            report.errors.append(message)
            report.line_errors[variant_id] = message

        report.valid = not report.errors
        if report.valid:
            logger.info(f"[Stock] ✅ All {len(cart.items)} cart lines confirmed")
        else:
            logger.info(f"[Stock] ❌ Stock validation failed for {len(report.errors)} lines")
        return report

    @staticmethod
    def last_known(item: CartItemDTO) -> VariantStockDTO | None:
        """STALE stock from the snapshot a cart line was last written with, if any."""
        if item.product_variant.stock_level is None:
            return None
        return VariantStockDTO(
            variant_id=item.product_variant_id,
            stock_level=parse_stock_level(item.product_variant.stock_level),
            name=item.product_variant.name,
            status=StockStatus.STALE
        )

    def apply_reconciliation(self, item: CartItemDTO, stock: VariantStockDTO):
        """Copy fresh stock and price knowledge onto a cart line."""
        item.product_variant.stock_level = str(stock.stock_level)
        if stock.price is not None:
            item.product_variant.price = stock.price
        if stock.is_confirmed:
            item.last_stock_check = self.clock()

    @staticmethod
    def apply_prices(cart: LocalCartDTO, prices: dict[str, int]) -> LocalCartDTO:
        """Copy of the cart with authoritative unit prices and recomputed totals."""
        priced = cart.model_copy(deep=True)
        for item in priced.items:
            if item.product_variant_id in prices:
                item.product_variant.price = prices[item.product_variant_id]
        return priced.recalculate_totals()
