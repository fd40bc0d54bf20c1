"""Time helpers. All pipeline timestamps are integer milliseconds since epoch."""

import time
from typing import Callable

Clock = Callable[[], int]


def now_ms() -> int:
    """Current wall-clock time in milliseconds."""
    return int(time.time() * 1000)


def now_seconds() -> int:
    return int(time.time())
