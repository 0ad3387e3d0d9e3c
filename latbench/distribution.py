"""Weighted service-time profile for simulated responders.

A delay table is a fixed sequence of ``(delay_ms, weight)`` pairs. ``build_sampler``
turns it into an ``AliasSampler`` (Vose's alias method) that draws a delay in
O(1) per draw after O(k) construction.

Construction uses integer arithmetic only: each column's acceptance threshold is
an integer out of the total weight, so draws reproduce the integer weights
exactly in expectation.

Examples
--------
>>> sampler = build_sampler([(5, 1)])
>>> sampler.sample()
5
>>> build_sampler([])
Traceback (most recent call last):
...
latbench.errors.ConfigError: delay table is empty
"""
from __future__ import annotations

import random
from typing import Optional, Sequence, Tuple

from latbench.errors import ConfigError


DelayTable = Tuple[Tuple[int, int], ...]

# Exponential-ish delays in ms for simulated responders: mostly fast, with a heavy tail.
DEFAULT_DELAYS: DelayTable = ((5, 65), (10, 25), (15, 4), (50, 3), (100, 3))


def validate_table(table: Sequence[Tuple[int, int]]) -> DelayTable:
    """Return ``table`` as an immutable ``DelayTable`` or raise ``ConfigError``."""
    if not table:
        raise ConfigError("delay table is empty")
    entries = []
    for idx, entry in enumerate(table):
        try:
            delay_ms, weight = entry
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"delay table entry {idx} is not a (delay_ms, weight) pair") from exc
        if isinstance(delay_ms, bool) or isinstance(weight, bool):
            raise ConfigError(f"delay table entry {idx} must hold integers")
        if not isinstance(delay_ms, int) or not isinstance(weight, int):
            raise ConfigError(f"delay table entry {idx} must hold integers")
        if delay_ms < 0 or weight < 0:
            raise ConfigError(f"delay table entry {idx} has a negative value")
        entries.append((delay_ms, weight))
    if sum(w for _, w in entries) <= 0:
        raise ConfigError("delay table weights are all zero")
    return tuple(entries)


class AliasSampler:
    """O(1) weighted draw over a delay table.

    Immutable after construction and safe to share between any number of
    responders. Each draw pulls fresh entropy from ``rng`` (the module-level
    ``random`` generator unless one is given).
    """

    __slots__ = ("_delays", "_threshold", "_alias", "_total", "_rng")

    def __init__(self, table: Sequence[Tuple[int, int]], rng: Optional[random.Random] = None):
        entries = validate_table(table)
        n = len(entries)
        total = sum(w for _, w in entries)

        # Scale every weight by n so the average column holds exactly ``total``
        scaled = [w * n for _, w in entries]
        threshold = [total] * n
        alias = list(range(n))

        small = [i for i, s in enumerate(scaled) if s < total]
        large = [i for i, s in enumerate(scaled) if s >= total]
        while small and large:
            lo = small.pop()
            hi = large.pop()
            threshold[lo] = scaled[lo]
            alias[lo] = hi
            scaled[hi] -= total - scaled[lo]
            if scaled[hi] < total:
                small.append(hi)
            else:
                large.append(hi)
        # Leftovers are full columns (exactly ``total`` with integer weights)
        for i in small + large:
            threshold[i] = total

        self._delays = tuple(d for d, _ in entries)
        self._threshold = tuple(threshold)
        self._alias = tuple(alias)
        self._total = total
        self._rng = rng

    @property
    def delays(self) -> Tuple[int, ...]:
        return self._delays

    def __len__(self) -> int:
        return len(self._delays)

    def sample_index(self) -> int:
        rng = self._rng or random
        column = rng.randrange(len(self._delays))
        if rng.randrange(self._total) < self._threshold[column]:
            return column
        return self._alias[column]

    def sample(self) -> int:
        """Draw one delay in milliseconds, proportional to its weight."""
        return self._delays[self.sample_index()]

    def probabilities(self) -> Tuple[float, ...]:
        """Per-entry selection probability implied by the alias tables."""
        n = len(self._delays)
        mass = [0] * n
        for column in range(n):
            mass[column] += self._threshold[column]
            mass[self._alias[column]] += self._total - self._threshold[column]
        return tuple(m / (n * self._total) for m in mass)


def build_sampler(table: Sequence[Tuple[int, int]] = DEFAULT_DELAYS, rng: Optional[random.Random] = None) -> AliasSampler:
    """Validate ``table`` and build its alias sampler.

    Raises ``ConfigError`` for an empty table, malformed entries, negative values
    or all-zero weights.
    """
    return AliasSampler(table, rng=rng)
