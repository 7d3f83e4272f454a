"""Core value types of the queue simulation: transactions, block policies and rate functions."""

from __future__ import annotations

import sys
from bisect import bisect_left
from dataclasses import dataclass, field
from itertools import groupby, pairwise
from typing import Protocol, Sequence

MAX_FEE_RATE = 2**63 - 1
"""Fee rate (satoshis per kB) meaning "no transaction qualifies"."""

MAX_TX_SIZE = 2**63 - 1
"""Largest representable transaction size in bytes."""


@dataclass(eq=False)
class Tx:
    """A simulated transaction; fee rate in satoshis per kB, size in bytes.

    Instances compare and hash by identity, because the mempool graph links
    transactions to each other through ``parents`` and ``children``.
    """

    fee_rate: int
    size: int
    parents: list[Tx] = field(default_factory=list)
    children: list[Tx] = field(default_factory=list, repr=False)
    removed_parents: int = field(default=0, repr=False)


@dataclass(frozen=True)
class BlockPolicy:
    """A miner's policy for one block.

    A block that includes no transactions whatever the fee has
    ``min_fee_rate == MAX_FEE_RATE``.
    """

    max_block_size: int
    min_fee_rate: int


class MonotonicFn(Protocol):
    """A (non-strict) monotonic function of the fee rate."""

    def evaluate(self, x: float) -> float: ...

    def inverse(self, y: float) -> float: ...

    def approx(self, n: int) -> MonotonicFn: ...

    def to_json(self) -> dict[str, list[float]]: ...


def _is_sorted(values: Sequence[float]) -> bool:
    return all(a <= b for a, b in pairwise(values))


@dataclass(frozen=True)
class TxRateFn:
    """Reverse cumulative tx byte rate: x ascending, y non-increasing."""

    x: tuple[float, ...]
    y: tuple[float, ...]

    def __post_init__(self) -> None:
        x, y = tuple(self.x), tuple(self.y)
        if len(x) != len(y):
            raise ValueError("x and y must have same len")
        if not _is_sorted(x):
            raise ValueError("x must be sorted")
        if not _is_sorted(y[::-1]):
            raise ValueError("y must be reverse sorted")
        object.__setattr__(self, "x", x)
        object.__setattr__(self, "y", y)

    def evaluate(self, x: float) -> float:
        """Total byte rate of all transactions with fee rate >= x."""
        i = bisect_left(self.x, x)
        return self.y[i] if i < len(self.x) else 0.0

    def inverse(self, y: float) -> float:
        """Lowest fee rate whose rate of txs paying at least that is <= y."""
        idx = bisect_left(self.y, -y, key=lambda v: -v)
        if idx == 0:
            return 0.0
        return self.x[idx - 1] + 1

    def approx(self, n: int) -> TxRateFn:
        """A coarser copy sampled at ``n`` evenly spaced byte rates."""
        if not self.x:
            return TxRateFn((), ())
        if n < 1:
            raise ValueError("n must be positive")
        top = self.evaluate(0)
        xs = [self.inverse((n - i) * top / n) for i in range(n)]
        xd = [k for k, _ in groupby(xs)]
        return TxRateFn(xd, [self.evaluate(k) for k in xd])

    def to_json(self) -> dict[str, list[float]]:
        """JSON-serialisable form."""
        return {"x": list(self.x), "y": list(self.y)}


@dataclass(frozen=True)
class CapRateFn:
    """Cumulative block capacity byte rate: x and y both ascending."""

    x: tuple[float, ...]
    y: tuple[float, ...]

    def __post_init__(self) -> None:
        x, y = tuple(self.x), tuple(self.y)
        if len(x) != len(y):
            raise ValueError("x and y must have same len")
        if not (_is_sorted(x) and _is_sorted(y)):
            raise ValueError("x and y must be sorted")
        object.__setattr__(self, "x", x)
        object.__setattr__(self, "y", y)

    def evaluate(self, x: float) -> float:
        """Average capacity rate of all miners with min fee rate <= x."""
        i = bisect_left(self.x, x)
        if i < len(self.y) and self.x[i] == x:
            return self.y[i]
        if i > 0:
            return self.y[i - 1]
        return 0.0

    def inverse(self, y: float) -> float:
        """Lowest fee rate with cumulative capacity >= y, else MAX_FEE_RATE."""
        if y <= 0:
            return 0.0
        idx = bisect_left(self.y, y)
        if idx == len(self.y):
            return float(MAX_FEE_RATE)
        return self.x[idx]

    def approx(self, n: int) -> CapRateFn:
        """A coarser copy sampled at ``n`` evenly spaced capacity rates."""
        if n < 1:
            raise ValueError("n must be positive")
        top = self.evaluate(sys.float_info.max) - 1
        xs = [self.inverse((n - i) * top / n) for i in range(n)]
        xd = [k for k, _ in groupby(reversed(xs))]
        return CapRateFn(xd, [self.evaluate(k) for k in xd])

    def to_json(self) -> dict[str, list[float]]:
        """JSON-serialisable form."""
        return {"x": list(self.x), "y": list(self.y)}