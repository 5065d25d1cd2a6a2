import asyncio
import logging
import uuid
from typing import Awaitable, Callable

import config
from cart_events import CartSyncChannel, Unsubscribe
from models.cart import CartItemDTO, LocalCartDTO, StockValidationResultDTO
from models.cart_event import CartChangedEvent
from repositories.cart import CartRepository
from services.stock import StockReconciliationService
from utils.clock import Clock, now_ms

logger = logging.getLogger(__name__)

CartUpdateCallback = Callable[[LocalCartDTO], Awaitable[None]]

STOCK_CHECK_INTERVAL_MS = 5 * 60 * 1000


class LocalCartService:
    """
    Persistent cart store for one tab.

    Every read-modify-write runs under one lock, so two mutations of the same
    tab never interleave. Writes are published to the sync channel; changes
    made by other tabs arrive through on_cart_update subscribers.
    """

    def __init__(self,
                 repository: CartRepository,
                 stock_service: StockReconciliationService,
                 channel: CartSyncChannel | None = None,
                 tab_id: str | None = None,
                 memory_cache_ms: int = config.CART_MEMORY_CACHE_MS,
                 clock: Clock = now_ms):
        self.repository = repository
        self.stock_service = stock_service
        self.channel = channel
        self.tab_id = tab_id or uuid.uuid4().hex
        self.memory_cache_ms = memory_cache_ms
        self.clock = clock
        self._lock = asyncio.Lock()
        self._cached_cart: LocalCartDTO | None = None
        self._cached_at = 0
        self._callbacks: list[CartUpdateCallback] = []
        self._channel_unsubscribe: Unsubscribe | None = None

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    async def _load(self) -> LocalCartDTO:
        cart = await self.repository.load()
        self._remember(cart)
        return cart

    def _remember(self, cart: LocalCartDTO):
        self._cached_cart = cart.model_copy(deep=True)
        self._cached_at = self.clock()

    def invalidate_cache(self):
        self._cached_cart = None
        self._cached_at = 0

    async def get_cart(self) -> LocalCartDTO:
        """Current cart; an empty one if nothing valid is stored. Never raises for bad data."""
        if self._cached_cart is not None and self.clock() - self._cached_at < self.memory_cache_ms:
            return self._cached_cart.model_copy(deep=True)
        cart = await self._load()
        return cart.model_copy(deep=True)

    async def _save(self, cart: LocalCartDTO) -> LocalCartDTO:
        envelope = await self.repository.save(cart)
        self._remember(envelope.cart)
        if self.channel is not None:
            await self.channel.publish(CartChangedEvent(
                tab_id=self.tab_id,
                key=self.repository.key,
                last_update=envelope.last_update,
                total_quantity=envelope.cart.total_quantity
            ))
        return envelope.cart.model_copy(deep=True)

    async def save_cart(self, cart: LocalCartDTO) -> LocalCartDTO:
        async with self._lock:
            return await self._save(cart.model_copy(deep=True))

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def add_item(self, item: CartItemDTO) -> tuple[LocalCartDTO, StockValidationResultDTO]:
        """
        Add a line, or grow the existing line for the same variant.

        The resulting quantity is clamped to the best known stock. With no
        stock left, or stock that cannot be determined, the cart is unchanged.
        """
        variant_id = item.product_variant_id
        async with self._lock:
            cart = await self._load()
            existing = cart.find_item(variant_id)
            current_quantity = existing.quantity if existing else 0
            requested = current_quantity + item.quantity

            stock = (await self.stock_service.lookup_variants([variant_id])).get(variant_id)
            if stock is None and existing is not None:
                stock = self.stock_service.last_known(existing)
            result = self.stock_service.validate_stock_level(item.product_variant.name, requested, stock)
            if stock is None or result.adjusted_quantity == 0:
                logger.info(f"[Cart] Not adding {variant_id}: {result.error}")
                return cart, result

            if existing is None:
                existing = item.model_copy(deep=True)
                existing.quantity = result.adjusted_quantity
                cart.items.append(existing)
            else:
                existing.quantity = result.adjusted_quantity
            self.stock_service.apply_reconciliation(existing, stock)

            saved = await self._save(cart)
            logger.info(f"[Cart] Added {variant_id}: quantity {current_quantity} -> {result.adjusted_quantity}")
            return saved, result

    async def update_item_quantity(self, variant_id: str, quantity: int) -> tuple[LocalCartDTO, StockValidationResultDTO]:
        """
        Set a line's quantity.

        quantity <= 0 removes the line. A quantity above stock is clamped and
        reported; with no stock left the line is kept and removal is offered.
        When stock cannot be fetched the line's own snapshot stands in for it;
        without a snapshot only a decrease is applied.
        """
        if quantity <= 0:
            cart = await self.remove_item(variant_id)
            return cart, StockValidationResultDTO(success=True, adjusted_quantity=0)

        async with self._lock:
            cart = await self._load()
            existing = cart.find_item(variant_id)
            if existing is None:
                return cart, StockValidationResultDTO(success=False, error="This item is no longer in your cart")

            stock = (await self.stock_service.lookup_variants([variant_id])).get(variant_id)
            if stock is None:
                stock = self.stock_service.last_known(existing)
            result = self.stock_service.validate_stock_level(existing.product_variant.name, quantity, stock)
            if stock is None:
                if quantity > existing.quantity:
                    return cart, result
                result = StockValidationResultDTO(success=True, adjusted_quantity=quantity)
            else:
                self.stock_service.apply_reconciliation(existing, stock)
            if result.adjusted_quantity > 0:
                existing.quantity = result.adjusted_quantity
            saved = await self._save(cart)
            logger.info(f"[Cart] Updated {variant_id} to quantity {existing.quantity}")
            return saved, result

    async def remove_item(self, variant_id: str) -> LocalCartDTO:
        async with self._lock:
            cart = await self._load()
            if cart.find_item(variant_id) is None:
                return cart
            cart.items = [item for item in cart.items if item.product_variant_id != variant_id]
            saved = await self._save(cart)
            logger.info(f"[Cart] Removed {variant_id}")
            return saved

    async def clear_cart(self) -> LocalCartDTO:
        async with self._lock:
            saved = await self._save(self.repository.empty_cart())
            logger.info("[Cart] Cart cleared")
            return saved

    async def refresh_stock_levels(self) -> tuple[LocalCartDTO, dict[str, StockValidationResultDTO]]:
        """
        Re-fetch stock for every line and merge it into the current cart.

        The fetch runs outside the lock so removals stay possible meanwhile;
        the result is merged by variant ID into whatever the cart holds once
        the fetch returns. Quantities are not changed here.
        """
        snapshot = await self.get_cart()
        if snapshot.is_empty:
            return snapshot, {}
        stock = await self.stock_service.lookup_variants(
            [item.product_variant_id for item in snapshot.items], force_fresh=True
        )

        async with self._lock:
            cart = await self._load()
            results = {}
            for item in cart.items:
                current = stock.get(item.product_variant_id) or self.stock_service.last_known(item)
                if current is not None:
                    self.stock_service.apply_reconciliation(item, current)
                results[item.product_variant_id] = self.stock_service.validate_stock_level(
                    item.product_variant.name, item.quantity, current
                )
            saved = await self._save(cart)
            logger.info(f"[Cart] Refreshed stock for {len(stock)}/{len(cart.items)} lines")
            return saved, results

    # ------------------------------------------------------------------
    # Conversion lock
    # ------------------------------------------------------------------

    async def acquire_conversion_lock(self) -> int:
        return await self.repository.acquire_conversion_lock()

    async def release_conversion_lock(self):
        await self.repository.release_conversion_lock()

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get_cart_quantity(self) -> int:
        return (await self.get_cart()).total_quantity

    async def get_item_quantity(self, variant_id: str) -> int:
        item = (await self.get_cart()).find_item(variant_id)
        return item.quantity if item else 0

    async def get_item_quantities(self, variant_ids: list[str]) -> dict[str, int]:
        cart = await self.get_cart()
        quantities = {variant_id: 0 for variant_id in variant_ids}
        for item in cart.items:
            if item.product_variant_id in quantities:
                quantities[item.product_variant_id] = item.quantity
        return quantities

    def is_stock_check_needed(self, item: CartItemDTO) -> bool:
        return item.last_stock_check is None or self.clock() - item.last_stock_check > STOCK_CHECK_INTERVAL_MS

    # ------------------------------------------------------------------
    # Cross-tab sync
    # ------------------------------------------------------------------

    def setup_cross_tab_sync(self):
        if self.channel is None or self._channel_unsubscribe is not None:
            return
        self._channel_unsubscribe = self.channel.subscribe(self.tab_id, self._handle_foreign_change)

    def teardown_cross_tab_sync(self):
        if self._channel_unsubscribe is not None:
            self._channel_unsubscribe()
            self._channel_unsubscribe = None

    def on_cart_update(self, callback: CartUpdateCallback) -> Unsubscribe:
        """Subscribe to carts written by other tabs. Same-tab writes are not delivered."""
        self.setup_cross_tab_sync()
        self._callbacks.append(callback)

        def unsubscribe():
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    async def _handle_foreign_change(self, event: CartChangedEvent):
        if event.key != self.repository.key:
            return
        logger.info(f"[Cart] Cart changed in tab {event.tab_id}, reloading")
        self.invalidate_cache()
        cart = await self._load()
        for callback in list(self._callbacks):
            await callback(cart.model_copy(deep=True))
