"""
Local cart to backend order conversion exceptions.
"""

from .base import StorefrontException


class OrderConversionException(StorefrontException):
    """Base exception for cart conversion errors."""
    pass


class EmptyCartException(OrderConversionException):
    """Raised when trying to convert an empty cart."""

    def __init__(self):
        super().__init__("Cannot convert an empty cart")


class ConversionInProgressException(OrderConversionException):
    """Raised when another conversion holds the conversion lock."""

    retryable = True

    def __init__(self, started_at: int):
        super().__init__(
            "Cart conversion already in progress",
            details={'started_at': started_at}
        )
        self.started_at = started_at


class ConversionFailureException(OrderConversionException):
    """Raised when the order-creation collaborator rejects the cart."""

    retryable = True

    def __init__(self, reason: str, error_code: str | None = None, order_code: str | None = None):
        super().__init__(
            f"Order creation failed: {reason}",
            details={'error_code': error_code, 'order_code': order_code}
        )
        self.reason = reason
        self.error_code = error_code
        self.order_code = order_code
