from __future__ import annotations

import time
from typing import Callable


class FixedDelayThrottle:
    """Sequential fetches with a fixed pause between consecutive requests."""

    max_workers = 1

    def __init__(self, delay_sec: float = 0.5, sleep: Callable[[float], None] | None = None) -> None:
        if delay_sec < 0:
            raise ValueError("delay_sec must be >= 0")
        self.delay_sec = delay_sec
        self._sleep = sleep or time.sleep
        self.waits = 0

    def before_request(self, index: int) -> None:
        if index == 0 or self.delay_sec == 0:
            return
        self.waits += 1
        self._sleep(self.delay_sec)


class BoundedConcurrency:
    """Parallel fan-out over a fixed-size worker pool; no ordering between symbols."""

    def __init__(self, max_workers: int = 4) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        self.max_workers = max_workers

    def before_request(self, index: int) -> None:
        return None


def throttle_from_settings(delay_sec: float, max_workers: int):
    if max_workers > 1:
        return BoundedConcurrency(max_workers)
    return FixedDelayThrottle(delay_sec)
