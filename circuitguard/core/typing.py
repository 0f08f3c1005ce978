"""
Time helpers.

Circuit timestamps are integer epoch milliseconds, matching the BIGINT
`timestamp` column shared by every instance. Components take a Clock so tests
can drive time explicitly.
"""

import time
from typing import Callable

# Returns the current time as epoch milliseconds
Clock = Callable[[], int]


def epoch_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


__all__ = ["Clock", "epoch_ms"]
