from enum import Enum


class PromotionAction(str, Enum):
    ORDER_PERCENTAGE_DISCOUNT = "order_percentage_discount"
    ORDER_FIXED_DISCOUNT = "order_fixed_discount"
    FREE_SHIPPING = "free_shipping"
