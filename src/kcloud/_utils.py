"""Internal helpers shared by kcloud modules. Not part of the public API."""

from __future__ import annotations

import random
import time


def sleep_with_jitter(seconds: float, jitter_factor: float = 0.1) -> None:
    """
    Block the calling thread for about `seconds`.

    The wait is scaled by a random factor in `[1 - jitter_factor, 1 + jitter_factor]`
    so that callers retrying at the same moment spread out. A jitter_factor
    of 0.0 sleeps exactly `seconds`.

    Example:
        >>> sleep_with_jitter(2.0, jitter_factor=0.25)  # somewhere in [1.5, 2.5]
    """
    jitter = random.uniform(-jitter_factor, jitter_factor) if jitter_factor else 0.0
    time.sleep(max(0.0, seconds * (1 + jitter)))
