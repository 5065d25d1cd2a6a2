from enum import Enum


class StockStatus(str, Enum):
    """
    Where a stock/price answer came from.

    Only FRESH and FETCHED values may back checkout-blocking decisions.
    """

    FRESH = "fresh"
    """Served from the product cache within the variant TTL."""

    FETCHED = "fetched"
    """Fetched from the stock/price source during this lookup."""

    STALE = "stale"
    """Last-known cached value returned because the network fetch failed."""
