"""Randomised pause between loop actions.

Delays are drawn uniformly from a closed integer range of milliseconds so
the traffic pattern is irregular rather than metronomic.
"""

from __future__ import annotations

import random

__all__ = ["next_delay"]


def next_delay(min_ms: int, max_ms: int) -> int:
    """Return a random integer delay in ``[min_ms, max_ms]`` (both inclusive).

    Args:
        min_ms: Lower bound in milliseconds (``>= 0``).
        max_ms: Upper bound in milliseconds (``>= min_ms``).

    Returns:
        Delay in milliseconds.

    Raises:
        ValueError: If the bounds are negative or inverted.
    """
    if min_ms < 0 or max_ms < min_ms:
        raise ValueError(f"invalid delay bounds [{min_ms}, {max_ms}]")
    return random.randint(min_ms, max_ms)
