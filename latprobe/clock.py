"""Monotonic phase timing."""

from __future__ import annotations

import time
from typing import Callable


class PhaseClock:
    """Records instants and measures elapsed seconds between them.

    Backed by ``time.perf_counter()``, which is monotonic and
    high-resolution, so wall-clock adjustments never skew a phase.
    """

    def __init__(self, source: Callable[[], float] = time.perf_counter) -> None:
        self._source = source

    def mark(self) -> float:
        return self._source()

    def elapsed(self, start: float) -> float:
        return max(self._source() - start, 0.0)
