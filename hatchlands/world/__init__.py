"""World services — spawn scheduling, capture locks, breeding and progression."""

import time


def system_clock() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)
