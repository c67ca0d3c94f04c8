"""
Delay helpers shared by the job processor and the platform fetchers.
"""

import random
from typing import Tuple

from ..config.settings import settings


def delay_window(kind: str) -> Tuple[float, float]:
    """[min, max] seconds to wait between requests/jobs hitting a source.

    `kind` is a platform name or a job kind; fetch kinds map to their platform.
    """
    if kind.startswith("twitter"):
        return settings.twitter_min_delay, settings.twitter_max_delay
    if kind.startswith("farcaster"):
        return settings.farcaster_min_delay, settings.farcaster_max_delay
    return settings.default_min_delay, settings.default_max_delay


def jittered_delay(min_seconds: float, max_seconds: float) -> float:
    if max_seconds <= min_seconds:
        return max(min_seconds, 0.0)
    return random.uniform(min_seconds, max_seconds)


def backoff_delay(attempt: int, base: float, jitter: float = 0.0) -> float:
    """Exponential backoff: base * 2^(attempt-1) plus up to `jitter` random seconds."""
    delay = base * (2 ** max(attempt - 1, 0))
    if jitter > 0:
        delay += random.uniform(0, jitter)
    return delay
