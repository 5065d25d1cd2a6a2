"""
Error Handler Utility for the cart core

Converts boundary exceptions into the user-facing messages the cart context
stores in its state. Every message names the remedy the UI should offer.

Usage:
    from utils.error_handler import handle_service_error

    try:
        order = await order_creator.create_order(lines, coupon_code)
    except StorefrontException as e:
        state.last_error = handle_service_error(e)
"""

import logging

from exceptions import (
    StorefrontException,
    StorageUnavailableException,
    CacheCorruptedException,
    NetworkFailureException,
    EmptyCartException,
    ConversionInProgressException,
    ConversionFailureException,
)

ERROR_MESSAGES = {
    StorageUnavailableException: "Your cart could not be saved on this device. Changes will last until you close the page.",
    CacheCorruptedException: "Your saved cart could not be read and has been reset.",
    NetworkFailureException: "We could not reach the store. Please check your connection and try again.",
    EmptyCartException: "Your cart is empty.",
    ConversionInProgressException: "Your order is already being created. Please wait a moment and try again.",
    ConversionFailureException: "We could not create your order: {reason}. Your cart has been kept, please try again.",
}


def handle_service_error(exception: StorefrontException) -> str:
    """
    Convert a cart core exception to a user-friendly error message.

    Args:
        exception: The custom exception raised at a storage or network boundary

    Returns:
        Error message string
    """
    logging.warning(f"Service error handled: {type(exception).__name__} - {str(exception)}")

    template = ERROR_MESSAGES.get(type(exception))
    if template is None:
        logging.error(f"Unmapped exception type: {type(exception).__name__}")
        return "Something went wrong. Please try again."

    exception_data = {}
    if hasattr(exception, 'reason'):
        exception_data['reason'] = exception.reason

    try:
        return template.format(**exception_data)
    except KeyError as e:
        logging.error(f"Missing format parameter in error message: {e}")
        return template


def is_retryable(exception: StorefrontException) -> bool:
    """Whether the same request may succeed later without the shopper changing anything."""
    return getattr(exception, "retryable", False)
