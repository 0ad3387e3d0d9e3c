"""Streaming latency histogram.

Values are folded into log-scaled buckets (about 1% wide), so memory depends on
the spread of the measured values, not on how many were measured. Exact min and
max are kept on the side so the extremes are reported without bucket error.

Usage example:
    >>> h = LatencyHistogram()
    >>> for v in (5.0, 5.0, 10.0, 100.0):
    ...     h.measure(v)
    >>> h.percentile(0), h.percentile(100)
    (5.0, 100.0)
"""
from __future__ import annotations

import bisect
import math
from typing import Dict, List, Tuple


PRECISION = 100.0

SUMMARY_PERCENTILES: Tuple[Tuple[str, float], ...] = (
    ("min", 0.0),
    ("50th", 50.0),
    ("75th", 75.0),
    ("90th", 90.0),
    ("95th", 95.0),
    ("99th", 99.0),
    ("max", 100.0),
)


def compress(value: float) -> int:
    """Map a non-negative value to its bucket key."""
    return int(PRECISION * math.log1p(value) + 0.5)


def decompress(key: int) -> float:
    """Representative value of a bucket key."""
    return math.expm1(key / PRECISION)


class LatencyHistogram:
    """Bucketed recorder answering arbitrary percentile queries.

    Not thread-safe: the driver's measurement loop is the only writer.
    """

    def __init__(self) -> None:
        self._buckets: Dict[int, int] = {}
        self._keys: List[int] = []
        self._count = 0
        self._min = math.inf
        self._max = -math.inf
        self.dropped = 0

    def __len__(self) -> int:
        return self._count

    @property
    def count(self) -> int:
        return self._count

    def measure(self, value_ms: float) -> None:
        """Record one value in milliseconds. Never raises.

        Negative values are clamped to zero; NaN and infinities are counted in
        ``dropped`` and otherwise ignored.
        """
        try:
            value = float(value_ms)
        except (TypeError, ValueError):
            self.dropped += 1
            return
        if not math.isfinite(value):
            self.dropped += 1
            return
        value = max(value, 0.0)

        key = compress(value)
        if key in self._buckets:
            self._buckets[key] += 1
        else:
            self._buckets[key] = 1
            bisect.insort(self._keys, key)
        self._count += 1
        if value < self._min:
            self._min = value
        if value > self._max:
            self._max = value

    def percentile(self, p: float) -> float:
        """Estimate the ``p``-th percentile (``0 <= p <= 100``).

        Returns NaN when nothing has been measured. ``percentile(0)`` and
        ``percentile(100)`` are the exact min and max; everything in between is
        the bucket estimate clamped into that range, so the result is monotonic
        in ``p``.
        """
        if not 0.0 <= p <= 100.0:
            raise ValueError(f"percentile must be within [0, 100], got {p}")
        if self._count == 0:
            return math.nan
        if p == 0.0:
            return self._min
        if p == 100.0:
            return self._max

        target = self._count * (p / 100.0)
        seen = 0
        estimate = self._max
        for key in self._keys:
            seen += self._buckets[key]
            if seen >= target:
                estimate = decompress(key)
                break
        return min(max(estimate, self._min), self._max)

    def summary(self) -> List[Tuple[str, float]]:
        """Ordered ``(label, value_ms)`` pairs: min, 50th .. 99th, max."""
        return [(label, self.percentile(p)) for label, p in SUMMARY_PERCENTILES]
