import logging

from exceptions.network import NetworkFailureException
from models.order import CheckoutResultDTO, PaymentResultDTO
from services.cart_context import CartContext
from utils.error_handler import handle_service_error
from vendure_api.protocols import PaymentGateway

logger = logging.getLogger(__name__)


class CheckoutService:
    """Drives one checkout attempt from local cart to payment signal."""

    def __init__(self, cart_context: CartContext, payment_gateway: PaymentGateway):
        self.cart_context = cart_context
        self.payment_gateway = payment_gateway

    async def checkout(self) -> CheckoutResultDTO:
        """
        Orchestrates checkout with order conversion and payment.

        Flow:
        1. Convert the local cart (full stock validation, order creation)
        2. Create the payment for the new order
        3. Report the outcome back to the cart context:
           - success: cart is cleared
           - failure: cart is kept for a retry

        Returns:
            CheckoutResultDTO with the conversion and (if reached) payment result
        """
        conversion = await self.cart_context.convert_local_cart_to_vendure_order()
        if not conversion.success:
            logger.info(f"[Checkout] ❌ Conversion failed: {'; '.join(conversion.errors)}")
            return CheckoutResultDTO(conversion=conversion)

        order = conversion.order
        logger.info(f"[Checkout] 💳 Creating payment for order {order.code}")
        try:
            payment = await self.payment_gateway.create_payment(order)
        except NetworkFailureException as e:
            payment = PaymentResultDTO(success=False, order_code=order.code, error=handle_service_error(e))

        if payment.success:
            await self.cart_context.handle_payment_succeeded(order.code)
            logger.info(f"[Checkout] ✅ Order {order.code} paid")
        else:
            await self.cart_context.handle_payment_failed(order.code, payment.error)
            logger.warning(f"[Checkout] ⚠️ Payment for order {order.code} failed: {payment.error}")

        return CheckoutResultDTO(conversion=conversion, payment=payment)
