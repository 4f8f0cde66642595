"""Fixed pacing between quota-limited provider calls."""

from __future__ import annotations

import logging
import time
from typing import Callable

logger = logging.getLogger(__name__)


class RateLimiter:
    """Suspends the caller for a fixed duration.

    The delay is unconditional pacing: it is never shortened, lengthened or
    repeated based on earlier results. Callers skip it after the last item
    of a batch.
    """

    def __init__(self, delay_sec: float, sleep: Callable[[float], None] = time.sleep) -> None:
        if delay_sec < 0:
            raise ValueError("delay_sec cannot be negative")
        self.delay_sec = delay_sec
        self._sleep = sleep

    @property
    def label(self) -> str:
        """Human readable delay, e.g. ``5s``."""
        return f"{self.delay_sec:g}s"

    def wait(self) -> None:
        if self.delay_sec <= 0:
            return
        logger.info("Pausing %s before the next provider call", self.label)
        self._sleep(self.delay_sec)
