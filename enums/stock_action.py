from enum import Enum


class StockAction(str, Enum):
    """Remedy the UI should offer for a stock validation result."""

    NONE = "none"
    ADJUST = "adjust"
    REMOVE = "remove"
