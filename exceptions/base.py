"""
Root of the cart core's exception hierarchy.
"""


class StorefrontException(Exception):
    """
    Error raised where the cart core touches durable storage or the commerce backend.

    Public cart, stock and coupon operations never let these escape: they turn
    them into result DTOs. retryable tells the caller whether repeating the
    same request can succeed without the shopper changing the cart; subclasses
    set a default and single instances may override it.

    Attributes:
        message: Human-readable error message
        details: Context for logs (variant IDs, storage keys, error codes)
        retryable: Whether the same request may succeed later
    """

    retryable: bool = False

    def __init__(self, message: str, details: dict | None = None, retryable: bool | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if retryable is not None:
            self.retryable = retryable

    def __str__(self) -> str:
        return self.message

    def __repr__(self) -> str:
        parts = [repr(self.message)] + [f"{key}={value}" for key, value in self.details.items()]
        return f"{type(self).__name__}({', '.join(parts)})"
