import json
import logging
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable

from enums.promotion_action import PromotionAction
from enums.promotion_condition import PromotionCondition
from exceptions import CouponInvalidException, NetworkFailureException
from models.coupon import (
    ConfigurableOperationDTO,
    CouponCartItemDTO,
    CouponValidationResultDTO,
    PromotionDTO,
)
from utils.error_handler import is_retryable
from vendure_api.protocols import CustomerSource, PromotionSource

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_datetime(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _json_list(value) -> list[str]:
    if value in (None, ""):
        return []
    if isinstance(value, list):
        return [str(v) for v in value]
    return [str(v) for v in json.loads(value)]


def _number(value) -> float:
    if value in (None, ""):
        return 0
    return float(value)


class CouponValidationService:
    """
    Previews a coupon against the local cart before any backend order exists.

    Rule order, first failure wins:
    1. lookup (enabled, not deleted, highest ID wins)
    2. active window
    3. conditions in the order the promotion defines them
    4. usage limits (logged only, enforced by the backend at order creation)
    5. discount computation
    """

    def __init__(self,
                 promotion_source: PromotionSource,
                 customer_source: CustomerSource,
                 now: Callable[[], datetime] = _utcnow):
        self.promotion_source = promotion_source
        self.customer_source = customer_source
        self.now = now

    @staticmethod
    def _error_result(message: str, retryable: bool = False) -> CouponValidationResultDTO:
        return CouponValidationResultDTO(
            is_valid=False,
            validation_errors=[message],
            discount_amount=0,
            free_shipping=False,
            retryable=retryable
        )

    async def validate_coupon(self,
                              coupon_code: str,
                              cart_total: int,
                              cart_items: list[CouponCartItemDTO],
                              customer_id: str | None = None) -> CouponValidationResultDTO:
        code = (coupon_code or "").strip()
        if not code:
            return self._error_result("Please enter a coupon code")

        try:
            promotion = await self.find_promotion_by_coupon(code)
            if promotion is None:
                raise CouponInvalidException(code, ["Invalid coupon code"])
            if not self.is_promotion_active(promotion):
                raise CouponInvalidException(code, ["Coupon is not currently active"])
            await self.check_promotion_conditions(promotion, cart_total, cart_items, customer_id)
            self.check_usage_limits(promotion, customer_id)
            result = self.calculate_discount(promotion, cart_total)
        except CouponInvalidException as e:
            logger.info(f"[Coupon] ❌ coupon_code={code} rejected: {'; '.join(e.reasons)}")
            return self._error_result(e.reasons[0], retryable=is_retryable(e))
        except NetworkFailureException as e:
            logger.warning(f"[Coupon] ⚠️ Could not validate coupon_code={code}: {e.reason}")
            return self._error_result("Unable to validate coupon right now. Please try again.", retryable=True)
        except (ValueError, TypeError) as e:
            logger.error(f"[Coupon] Malformed promotion data for coupon_code={code}: {e}")
            return self._error_result("Failed to validate coupon")

        result.applied_coupon_code = code
        result.promotion_name = promotion.name
        result.promotion_description = promotion.description
        logger.info(f"[Coupon] ✅ coupon_code={code} valid, discount {result.discount_amount}")
        return result

    async def find_promotion_by_coupon(self, coupon_code: str) -> PromotionDTO | None:
        promotions = await self.promotion_source.find_promotions_by_coupon(coupon_code)
        candidates = [
            promotion for promotion in promotions
            if promotion.coupon_code == coupon_code and promotion.enabled and promotion.deleted_at is None
        ]
        if not candidates:
            return None
        # Most recently created wins
        return max(candidates, key=lambda promotion: (
            promotion.id.isdigit(), int(promotion.id) if promotion.id.isdigit() else 0, promotion.id
        ))

    def is_promotion_active(self, promotion: PromotionDTO) -> bool:
        now = self.now()
        if promotion.starts_at and _parse_datetime(promotion.starts_at) > now:
            return False
        if promotion.ends_at and _parse_datetime(promotion.ends_at) < now:
            return False
        return True

    async def check_promotion_conditions(self,
                                         promotion: PromotionDTO,
                                         cart_total: int,
                                         cart_items: list[CouponCartItemDTO],
                                         customer_id: str | None):
        for condition in promotion.conditions:
            if condition.code == PromotionCondition.MINIMUM_ORDER_AMOUNT:
                minimum = int(_number(condition.arg("amount")))
                if cart_total < minimum:
                    raise CouponInvalidException(
                        promotion.coupon_code, [f"Minimum order amount of ${minimum / 100:.2f} required"]
                    )

            elif condition.code == PromotionCondition.CUSTOMER_GROUP:
                await self._check_customer_group(promotion.coupon_code, condition, customer_id)

            elif condition.code == PromotionCondition.VERIFIED_CUSTOMER:
                await self._check_verification(promotion.coupon_code, condition, customer_id)

            elif condition.code == PromotionCondition.CONTAINS_PRODUCTS:
                if not self.check_contains_products(condition, cart_items):
                    raise CouponInvalidException(
                        promotion.coupon_code, ["This coupon requires specific products in your cart"]
                    )

            elif condition.code == PromotionCondition.HAS_FACET_VALUES:
                logger.warning("[Coupon] Facet value conditions need product facet data; not enforced locally")

            else:
                logger.warning(f"[Coupon] Unhandled promotion condition: {condition.code}")

    async def _check_customer_group(self, coupon_code: str | None, condition: ConfigurableOperationDTO,
                                    customer_id: str | None):
        group_id = condition.arg("customerGroupId")
        if not group_id:
            return
        if not customer_id:
            raise CouponInvalidException(coupon_code, ["Please sign in to use this coupon"])
        try:
            customer = await self.customer_source.get_customer(customer_id)
        except NetworkFailureException as e:
            logger.error(f"[Coupon] Error checking customer group: {e.reason}")
            raise CouponInvalidException(coupon_code, ["Failed to verify customer status"], retryable=True) from e
        if customer is None or str(group_id) not in customer.group_ids:
            raise CouponInvalidException(coupon_code, ["This coupon is not valid for your customer group"])

    async def _check_verification(self, coupon_code: str | None, condition: ConfigurableOperationDTO,
                                  customer_id: str | None):
        if not customer_id:
            raise CouponInvalidException(coupon_code, ["Please sign in to use this coupon"])
        required = _json_list(condition.arg("categories"))
        if not required:
            return
        try:
            customer = await self.customer_source.get_customer(customer_id)
        except NetworkFailureException as e:
            logger.error(f"[Coupon] Error checking customer verification: {e.reason}")
            raise CouponInvalidException(coupon_code, ["Failed to verify customer status"], retryable=True) from e
        if customer is None:
            raise CouponInvalidException(coupon_code, ["Please sign in to use this coupon"])
        if not any(category in customer.active_verifications for category in required):
            raise CouponInvalidException(coupon_code, ["Please verify your status to use this coupon"])

    @staticmethod
    def check_contains_products(condition: ConfigurableOperationDTO, cart_items: list[CouponCartItemDTO]) -> bool:
        """
        Variant-level sets are enforced. A product-level-only set cannot be
        resolved from local cart data and passes with a warning.
        """
        product_ids = _json_list(condition.arg("productIds"))
        variant_ids = _json_list(condition.arg("productVariantIds"))
        if variant_ids:
            return any(item.product_variant_id in variant_ids for item in cart_items)
        if product_ids:
            logger.warning("[Coupon] Product-level containsProducts condition not enforced in local cart validation")
        return True

    @staticmethod
    def check_usage_limits(promotion: PromotionDTO, customer_id: str | None):
        # Redemption counts live in backend order history
        if promotion.usage_limit:
            logger.warning("[Coupon] Total usage limit is enforced by the backend at order creation")
        if promotion.per_customer_usage_limit and customer_id:
            logger.warning("[Coupon] Per-customer usage limit is enforced by the backend at order creation")

    @staticmethod
    def calculate_discount(promotion: PromotionDTO, cart_total: int) -> CouponValidationResultDTO:
        result = CouponValidationResultDTO(is_valid=True)
        for action in promotion.actions:
            if action.code == PromotionAction.ORDER_PERCENTAGE_DISCOUNT:
                percentage = _number(action.arg("discount"))
                amount = (Decimal(cart_total) * Decimal(str(percentage)) / Decimal(100)).quantize(
                    Decimal(1), rounding=ROUND_HALF_UP
                )
                result.discount_percentage = percentage
                result.discount_amount = int(amount)
            elif action.code == PromotionAction.ORDER_FIXED_DISCOUNT:
                result.discount_amount = int(_number(action.arg("discount")))
            elif action.code == PromotionAction.FREE_SHIPPING:
                result.free_shipping = True
            else:
                logger.warning(f"[Coupon] Unhandled promotion action: {action.code}")

        result.discount_amount = max(0, min(result.discount_amount, cart_total))
        return result
