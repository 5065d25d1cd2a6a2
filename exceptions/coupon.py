"""
Coupon-related exceptions.
"""

from .base import StorefrontException


class CouponException(StorefrontException):
    """Base exception for coupon errors."""
    pass


class CouponInvalidException(CouponException):
    """
    Raised by the coupon rules when a check fails; the first failing rule wins.

    retryable is set when the rule could not be checked at all (customer or
    promotion lookup failed), as opposed to a definitive rejection.
    """

    def __init__(self, coupon_code: str | None, reasons: list[str], retryable: bool = False):
        super().__init__(
            f"Coupon '{coupon_code}' is not valid: {'; '.join(reasons)}",
            details={'coupon_code': coupon_code},
            retryable=retryable
        )
        self.coupon_code = coupon_code
        self.reasons = reasons
