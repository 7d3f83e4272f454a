"""Random number helpers for the simulation."""

from __future__ import annotations

import math
import random
import time


def make_rngs(n: int) -> list[random.Random]:
    """Return ``n`` independently seeded random generators.

    Seeds are consecutive integers starting from the current time in
    nanoseconds, so do not call this in rapid succession.
    """
    base = time.time_ns()
    return [random.Random(base + i) for i in range(n)]


def poisson_variate(mean: float, rng: random.Random) -> int:
    """Draw a Poisson variate with the given expected value."""
    if mean == 0:
        return 0
    if mean > 30:
        # Normal approximation, rounded to the nearest integer.
        x = rng.gauss(0.0, 1.0) * math.sqrt(mean) + mean
        i = int(x)
        return i + 1 if x - i > 0.5 else i
    limit = math.exp(-mean)
    k = 0
    p = 1.0
    while p > limit:
        k += 1
        p *= rng.random()
    return k - 1