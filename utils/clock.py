import time
from typing import Callable

Clock = Callable[[], int]


def now_ms() -> int:
    """Wall-clock time in epoch milliseconds, the unit every stored timestamp uses."""
    return int(time.time() * 1000)
