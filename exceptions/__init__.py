"""
Custom exceptions for the storefront cart core.

Exceptions are raised at the storage and network boundaries and converted
into structured results by the cart and coupon services. Stock shortfalls are
not exceptions at all: they are reported as StockValidationResultDTO values.

Exception Hierarchy:
--------------------
StorefrontException (base)
├── StorageException
│   ├── StorageUnavailableException
│   └── CacheCorruptedException
├── CouponException
│   └── CouponInvalidException
├── NetworkFailureException
└── OrderConversionException
    ├── EmptyCartException
    ├── ConversionInProgressException
    └── ConversionFailureException

Usage:
------
Boundaries raise specific exceptions:
    raise StorageUnavailableException("get", key, str(e))

Services catch and return structured results:
    try:
        order = await order_creator.create_order(lines, coupon_code)
    except NetworkFailureException as e:
        return ConversionResultDTO(success=False, errors=[handle_service_error(e)], retryable=is_retryable(e))
"""

from .base import StorefrontException
from .storage import StorageException, StorageUnavailableException, CacheCorruptedException
from .coupon import CouponException, CouponInvalidException
from .network import NetworkFailureException
from .order import (
    OrderConversionException,
    EmptyCartException,
    ConversionInProgressException,
    ConversionFailureException
)

__all__ = [
    # Base
    'StorefrontException',

    # Storage
    'StorageException',
    'StorageUnavailableException',
    'CacheCorruptedException',

    # Coupon
    'CouponException',
    'CouponInvalidException',

    # Network
    'NetworkFailureException',

    # Order conversion
    'OrderConversionException',
    'EmptyCartException',
    'ConversionInProgressException',
    'ConversionFailureException',
]
