import time
from typing import Callable

Clock = Callable[[], int]


def now_ms() -> int:
    """Wall-clock time in epoch milliseconds, the unit stored in cache entries."""
    return int(time.time() * 1000)
