import asyncio
import logging
from typing import Awaitable, Callable

import config
from enums.mutation_status import MutationStatus
from exceptions import ConversionInProgressException, EmptyCartException, StorefrontException
from exceptions.network import NetworkFailureException
from exceptions.order import ConversionFailureException
from models.cart import CartItemDTO, LocalCartDTO, StockValidationResultDTO
from models.cart_state import CartStateDTO, MutationResultDTO
from models.coupon import AppliedCouponDTO, CouponCartItemDTO, CouponValidationResultDTO
from models.order import ConversionResultDTO, OrderLineInputDTO
from services.coupon import CouponValidationService
from services.local_cart import LocalCartService
from services.stock import StockReconciliationService
from utils.clock import Clock, now_ms
from utils.error_handler import handle_service_error, is_retryable
from utils.mutation_state_machine import MutationStateMachine
from vendure_api.protocols import OrderCreator

logger = logging.getLogger(__name__)

CartStateListener = Callable[[CartStateDTO], Awaitable[None]]
CartOperation = Callable[[], Awaitable[tuple[LocalCartDTO, StockValidationResultDTO | None]]]


class CartContext:
    """
    Single mutation surface for one cart session.

    Mutations are serialized on one lock and run through the mutation state
    machine. After each one the state is updated, the applied coupon is
    re-validated and cart-changed listeners are notified.

    Conversion to a backend order never clears the cart: that only happens
    on handle_payment_succeeded, so a failed payment falls back to the
    preserved cart.
    """

    def __init__(self,
                 cart_service: LocalCartService,
                 stock_service: StockReconciliationService,
                 coupon_service: CouponValidationService,
                 order_creator: OrderCreator,
                 customer_id: str | None = None,
                 refresh_interval_seconds: int = config.STOCK_REFRESH_MIN_INTERVAL_SECONDS,
                 clock: Clock = now_ms):
        self.cart_service = cart_service
        self.stock_service = stock_service
        self.coupon_service = coupon_service
        self.order_creator = order_creator
        self.refresh_interval_ms = refresh_interval_seconds * 1000
        self.clock = clock
        self.state = CartStateDTO(
            local_cart=cart_service.repository.empty_cart(),
            customer_id=customer_id
        )
        self._lock = asyncio.Lock()
        self._listeners: list[CartStateListener] = []
        self._unsubscribe_foreign = cart_service.on_cart_update(self._on_foreign_update)

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def on_cart_changed(self, listener: CartStateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def _notify(self):
        snapshot = self.state.model_copy(deep=True)
        for listener in list(self._listeners):
            await listener(snapshot)

    def close(self):
        self._unsubscribe_foreign()
        self._listeners.clear()

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load(self) -> CartStateDTO:
        async with self._lock:
            self.state.is_loading = True
            try:
                self.state.local_cart = await self.cart_service.get_cart()
                self.state.has_loaded_once = True
            finally:
                self.state.is_loading = False
        await self._notify()
        return self.state

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def _transition(self, to_status: MutationStatus, operation: str):
        self.state.mutation_status = MutationStateMachine.transition(self.state.mutation_status, to_status, operation)

    async def _mutate(self, operation: str, variant_id: str | None, run: CartOperation) -> MutationResultDTO:
        async with self._lock:
            self._transition(MutationStatus.MUTATING, operation)
            before = self.state.local_cart
            try:
                cart, stock_result = await run()
            except StorefrontException as e:
                self.state.last_error = handle_service_error(e)
                self._transition(MutationStatus.SETTLED_WITH_ERROR, operation)
                return MutationResultDTO(status=self.state.mutation_status, cart=before, error=self.state.last_error)
            except Exception:
                self._transition(MutationStatus.SETTLED_WITH_ERROR, operation)
                raise

            if stock_result is None or stock_result.success:
                status = MutationStatus.SETTLED
            elif stock_result.adjusted_quantity:
                # Clamped: applied with less than requested
                status = MutationStatus.SETTLED_WITH_WARNING
            else:
                status = MutationStatus.SETTLED_WITH_ERROR

            self.state.local_cart = cart
            self.state.has_loaded_once = True
            if variant_id is not None:
                if stock_result is not None and cart.find_item(variant_id) is not None:
                    self.state.last_stock_validation[variant_id] = stock_result
                else:
                    self.state.last_stock_validation.pop(variant_id, None)
            self.state.last_error = stock_result.error if stock_result is not None and not stock_result.success else None
            self._transition(status, operation)

            await self._revalidate_coupon()
        await self._notify()
        return MutationResultDTO(
            status=status,
            cart=cart,
            stock_result=stock_result,
            error=stock_result.error if stock_result is not None else None
        )

    async def add_to_local_cart(self, item: CartItemDTO) -> MutationResultDTO:
        return await self._mutate("add", item.product_variant_id, lambda: self.cart_service.add_item(item))

    async def update_local_cart_quantity(self, variant_id: str, quantity: int) -> MutationResultDTO:
        return await self._mutate(
            "update", variant_id, lambda: self.cart_service.update_item_quantity(variant_id, quantity)
        )

    async def remove_from_local_cart(self, variant_id: str) -> MutationResultDTO:
        async def run():
            return await self.cart_service.remove_item(variant_id), None
        return await self._mutate("remove", variant_id, run)

    async def clear_local_cart(self) -> MutationResultDTO:
        async def run():
            cart = await self.cart_service.clear_cart()
            self.state.last_stock_validation = {}
            return cart, None
        return await self._mutate("clear", None, run)

    # ------------------------------------------------------------------
    # Coupons
    # ------------------------------------------------------------------

    def _coupon_items(self) -> list[CouponCartItemDTO]:
        return [
            CouponCartItemDTO(
                product_variant_id=item.product_variant_id,
                quantity=item.quantity,
                unit_price=item.product_variant.price
            )
            for item in self.state.local_cart.items
        ]

    async def _validate_coupon(self, code: str) -> CouponValidationResultDTO:
        return await self.coupon_service.validate_coupon(
            code, self.state.local_cart.sub_total, self._coupon_items(), self.state.customer_id
        )

    @staticmethod
    def _applied_from(result: CouponValidationResultDTO) -> AppliedCouponDTO:
        return AppliedCouponDTO(
            code=result.applied_coupon_code,
            discount_amount=result.discount_amount,
            discount_percentage=result.discount_percentage,
            free_shipping=result.free_shipping,
            promotion_name=result.promotion_name,
            promotion_description=result.promotion_description
        )

    async def _revalidate_coupon(self):
        applied = self.state.applied_coupon
        if applied is None:
            return
        result = await self._validate_coupon(applied.code)
        if result.is_valid:
            self.state.applied_coupon = self._applied_from(result)
            self.state.coupon_error = None
        elif result.retryable:
            # Unconfirmed, not rejected: keep it until the next successful check
            self.state.coupon_error = result.validation_errors[0]
        else:
            logger.info(f"[Cart] Dropping coupon_code={applied.code}: {result.validation_errors[0]}")
            self.state.applied_coupon = None
            self.state.coupon_error = f"Coupon {applied.code} was removed: {result.validation_errors[0]}"

    async def apply_coupon(self, code: str) -> CouponValidationResultDTO:
        async with self._lock:
            result = await self._validate_coupon(code)
            if result.is_valid:
                self.state.applied_coupon = self._applied_from(result)
                self.state.coupon_error = None
            else:
                self.state.coupon_error = result.validation_errors[0] if result.validation_errors else None
        await self._notify()
        return result

    async def remove_coupon(self):
        async with self._lock:
            self.state.applied_coupon = None
            self.state.coupon_error = None
        await self._notify()

    # ------------------------------------------------------------------
    # Stock refresh
    # ------------------------------------------------------------------

    async def refresh_cart_stock(self, force: bool = False) -> dict[str, StockValidationResultDTO] | None:
        """
        Re-check stock for every line.

        Skipped (returns None) for an empty cart, while another refresh is
        running, or within the minimum interval of the last refresh unless
        forced or a foreign-tab update flagged the cart for revalidation.
        """
        if self.state.local_cart.is_empty or self.state.is_refreshing_stock:
            return None
        due = self.clock() - self.state.last_stock_refresh >= self.refresh_interval_ms
        if not (force or due or self.state.needs_revalidation):
            logger.debug("[Cart] Skipping stock refresh, last one is recent")
            return None

        self.state.is_refreshing_stock = True
        try:
            _, results = await self.cart_service.refresh_stock_levels()
        finally:
            self.state.is_refreshing_stock = False

        async with self._lock:
            # Mutations that ran during the fetch already hold newer data
            self.state.local_cart = await self.cart_service.get_cart()
            present = {item.product_variant_id for item in self.state.local_cart.items}
            self.state.last_stock_validation = {
                variant_id: result for variant_id, result in results.items() if variant_id in present
            }
            self.state.last_stock_refresh = self.clock()
            self.state.needs_revalidation = False
            failures = [result.error for result in self.state.last_stock_validation.values() if not result.success]
            self.state.last_error = failures[0] if failures else None
            await self._revalidate_coupon()
        await self._notify()
        return self.state.last_stock_validation

    async def reconcile(self):
        """Run the revalidation a foreign-tab update asked for."""
        if self.state.needs_revalidation:
            await self.refresh_cart_stock(force=True)

    async def _on_foreign_update(self, cart: LocalCartDTO):
        self.state.local_cart = cart
        self.state.needs_revalidation = True
        present = {item.product_variant_id for item in cart.items}
        self.state.last_stock_validation = {
            variant_id: result for variant_id, result in self.state.last_stock_validation.items()
            if variant_id in present
        }
        await self._notify()

    # ------------------------------------------------------------------
    # Conversion and payment signals
    # ------------------------------------------------------------------

    def _conversion_failure(self, errors: list[str], retryable: bool,
                            line_errors: dict[str, str] | None = None) -> ConversionResultDTO:
        self.state.last_error = errors[0] if errors else None
        return ConversionResultDTO(success=False, errors=errors, line_errors=line_errors or {}, retryable=retryable)

    async def convert_local_cart_to_vendure_order(self, applied_coupon: AppliedCouponDTO | None = None) -> ConversionResultDTO:
        """
        Validate the whole cart against fresh stock, then create the order.

        On validation failure nothing is changed and the order collaborator
        is not called. On success the cart keeps its contents (now at
        authoritative prices) until a payment-success signal arrives.
        """
        async with self._lock:
            cart = await self.cart_service.get_cart()
            if cart.is_empty:
                return self._conversion_failure([handle_service_error(EmptyCartException())], retryable=False)

            try:
                await self.cart_service.acquire_conversion_lock()
            except ConversionInProgressException as e:
                return self._conversion_failure([handle_service_error(e)], retryable=is_retryable(e))

            try:
                validation = await self.stock_service.validate_stock(cart)
                if not validation.valid:
                    for variant_id, message in validation.line_errors.items():
                        self.state.last_stock_validation[variant_id] = StockValidationResultDTO(
                            success=False, error=message
                        )
                    return self._conversion_failure(validation.errors, validation.retryable, validation.line_errors)

                priced = self.stock_service.apply_prices(cart, validation.prices)
                if priced != cart:
                    logger.info(f"[Cart] Prices changed since last check, subtotal {cart.sub_total} -> {priced.sub_total}")
                    cart = await self.cart_service.save_cart(priced)
                self.state.local_cart = cart

                coupon = applied_coupon or self.state.applied_coupon
                lines = [
                    OrderLineInputDTO(product_variant_id=item.product_variant_id, quantity=item.quantity)
                    for item in cart.items
                ]
                try:
                    order = await self.order_creator.create_order(lines, coupon.code if coupon else None)
                except (NetworkFailureException, ConversionFailureException) as e:
                    logger.warning(f"[Cart] ⚠️ Order creation failed, cart preserved: {e.message}")
                    return self._conversion_failure([handle_service_error(e)], retryable=is_retryable(e))
            finally:
                await self.cart_service.release_conversion_lock()

            self.state.active_order_code = order.code
            self.state.applied_coupon = None
            self.state.coupon_error = None
            self.state.last_stock_validation = {}
            self.state.last_error = None
            logger.info(f"[Cart] ✅ Converted cart to order {order.code} ({cart.total_quantity} items)")
        await self._notify()
        return ConversionResultDTO(success=True, order=order)

    async def handle_payment_succeeded(self, order_code: str) -> bool:
        """Clear the cart once the order it was converted into is paid."""
        if self.state.active_order_code not in (None, order_code):
            logger.warning(f"[Cart] Ignoring payment success for {order_code}, active order is {self.state.active_order_code}")
            return False
        async with self._lock:
            self.state.local_cart = await self.cart_service.clear_cart()
            self.state.active_order_code = None
            self.state.applied_coupon = None
            self.state.last_stock_validation = {}
            self.state.last_error = None
            if MutationStateMachine.is_settled(self.state.mutation_status):
                self._transition(MutationStatus.IDLE, "payment_succeeded")
        logger.info(f"[Cart] Payment for {order_code} succeeded, cart cleared")
        await self._notify()
        return True

    async def handle_payment_failed(self, order_code: str, reason: str | None = None) -> CartStateDTO:
        """Keep the cart untouched so checkout can be retried."""
        self.state.last_error = f"Payment failed{f': {reason}' if reason else ''}. Your cart has been saved, please try again."
        logger.warning(f"[Cart] Payment for {order_code} failed, cart preserved")
        await self._notify()
        return self.state
