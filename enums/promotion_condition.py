from enum import Enum


class PromotionCondition(str, Enum):
    """
    Promotion condition codes understood by the local coupon validator.

    Codes outside this enum are logged and not enforced locally.
    """

    MINIMUM_ORDER_AMOUNT = "minimum_order_amount"
    CUSTOMER_GROUP = "customer_group"
    VERIFIED_CUSTOMER = "verified_customer"
    CONTAINS_PRODUCTS = "containsProducts"
    HAS_FACET_VALUES = "hasFacetValues"
