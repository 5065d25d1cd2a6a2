def parse_stock_level(value: str | int | None) -> int:
    """
    Convert a stock level as reported by the catalog into a count.

    Anything that is not a non-negative integer (None, "OUT_OF_STOCK",
    garbage) counts as zero, never as unlimited.
    """
    if value is None:
        return 0
    if isinstance(value, int):
        return max(value, 0)
    try:
        return max(int(str(value).strip()), 0)
    except ValueError:
        return 0
