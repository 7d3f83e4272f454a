"""Transaction and block sources that drive the queue simulation."""

from __future__ import annotations

import copy as _copy
import random
from bisect import bisect_left
from collections import defaultdict
from itertools import accumulate
from typing import Protocol, Sequence

from feesim.model import (
    MAX_FEE_RATE,
    MAX_TX_SIZE,
    BlockPolicy,
    CapRateFn,
    MonotonicFn,
    Tx,
    TxRateFn,
)
from feesim.randutil import make_rngs, poisson_variate


class TxSource(Protocol):
    """Emits the transactions that arrive during a time interval."""

    txrate: float
    min_size: int

    def generate(self, seconds: float) -> list[Tx]: ...

    def copy(self, n: int) -> list[TxSource]: ...

    def rate_fn(self) -> MonotonicFn: ...

    def to_json(self) -> dict: ...


class BlockSource(Protocol):
    """Models the discovery of blocks and the policy of their miners."""

    block_rate: float

    def next_block(self) -> tuple[float, BlockPolicy]: ...

    def copy(self, n: int) -> list[BlockSource]: ...

    def rate_fn(self) -> MonotonicFn: ...

    def to_json(self) -> dict: ...


def _spawn_rngs(rng: random.Random, n: int) -> list[random.Random]:
    """Derive ``n`` generators with isolated states from ``rng``."""
    return [random.Random(rng.getrandbits(64)) for _ in range(n)]


def _clone_with(source, rngs: list[random.Random]) -> list:
    clones = []
    for rng in rngs:
        clone = _copy.copy(source)
        clone._rng = rng
        clones.append(clone)
    return clones


class UniTxSource:
    """Poisson arrivals drawn uniformly from a sample of (fee rate, size) pairs.

    Not safe for concurrent use; use :meth:`copy` to get independent sources.
    """

    def __init__(
        self,
        fee_rates: Sequence[int],
        sizes: Sequence[int],
        txrate: float,
        rng: random.Random | None = None,
    ) -> None:
        if len(fee_rates) != len(sizes):
            raise ValueError("feerates and sizes must have same len")
        if not fee_rates:
            txrate = 0.0
        self._txs = tuple(Tx(fee_rate=f, size=s) for f, s in zip(fee_rates, sizes))
        self.txrate = float(txrate)
        self.min_size = min(sizes, default=MAX_TX_SIZE)
        self._rng = make_rngs(1)[0] if rng is None else rng

    def generate(self, seconds: float) -> list[Tx]:
        """Transactions arriving during an interval of ``seconds``."""
        count = poisson_variate(seconds * self.txrate, self._rng)
        return [self._rng.choice(self._txs) for _ in range(count)]

    def copy(self, n: int) -> list[UniTxSource]:
        """``n`` copies sharing the sample, each with its own random state."""
        return _clone_with(self, _spawn_rngs(self._rng, n))

    def rate_fn(self) -> TxRateFn:
        """Byte rate of arrivals paying at least a given fee rate."""
        totals: dict[float, float] = defaultdict(float)
        for tx in self._txs:
            totals[float(tx.fee_rate)] += float(tx.size)
        xs = sorted(totals)
        ys: list[float] = []
        acc = 0.0
        for x in reversed(xs):
            acc += totals[x] * self.txrate / len(self._txs)
            ys.append(acc)
        return TxRateFn(xs, ys[::-1])

    def to_json(self) -> dict:
        """JSON-serialisable form."""
        return {
            "feerates": [tx.fee_rate for tx in self._txs],
            "sizes": [tx.size for tx in self._txs],
            "txrate": self.txrate,
            "type": "UniTxSource",
        }


class MultiTxSource:
    """Poisson arrivals with weighted, independent (fee rate, size) choices.

    Not safe for concurrent use; use :meth:`copy` to get independent sources.
    """

    def __init__(
        self,
        fee_rates: Sequence[int],
        sizes: Sequence[int],
        weights: Sequence[float],
        txrate: float,
        rng: random.Random | None = None,
    ) -> None:
        if len(fee_rates) != len(weights) or len(sizes) != len(weights):
            raise ValueError("feerates / sizes / weights must have same len")
        if any(w <= 0 for w in weights):
            raise ValueError("weights must be positive")
        if not fee_rates:
            txrate = 0.0
        cumulative = list(accumulate(weights))
        total = cumulative[-1] if cumulative else 0.0
        self._index = tuple(c / total for c in cumulative)
        self.weights = tuple(w / total for w in weights)
        self._txs = tuple(Tx(fee_rate=f, size=s) for f, s in zip(fee_rates, sizes))
        self.txrate = float(txrate)
        self.min_size = min(sizes, default=MAX_TX_SIZE)
        self._rng = make_rngs(1)[0] if rng is None else rng

    def generate(self, seconds: float) -> list[Tx]:
        """Transactions arriving during an interval of ``seconds``."""
        count = poisson_variate(seconds * self.txrate, self._rng)
        rand = self._rng.random
        return [self._txs[bisect_left(self._index, rand())] for _ in range(count)]

    def copy(self, n: int) -> list[MultiTxSource]:
        """``n`` copies sharing the distribution, each with its own random state."""
        return _clone_with(self, _spawn_rngs(self._rng, n))

    def rate_fn(self) -> TxRateFn:
        """Byte rate of arrivals paying at least a given fee rate."""
        totals: dict[float, float] = defaultdict(float)
        for tx, weight in zip(self._txs, self.weights):
            totals[float(tx.fee_rate)] += float(tx.size) * weight
        xs = sorted(totals)
        ys: list[float] = []
        acc = 0.0
        for x in reversed(xs):
            acc += totals[x] * self.txrate
            ys.append(acc)
        return TxRateFn(xs, ys[::-1])

    def to_json(self) -> dict:
        """JSON-serialisable form."""
        return {
            "feerates": [tx.fee_rate for tx in self._txs],
            "sizes": [tx.size for tx in self._txs],
            "weights": list(self.weights),
            "txrate": self.txrate,
            "type": "MultiTxSource",
        }


class IndBlockSource:
    """Blocks whose max size and min fee rate are independent random choices.

    Block discovery is a Poisson process at ``block_rate`` blocks per second.
    Not safe for concurrent use; use :meth:`copy` to get independent sources.
    """

    def __init__(
        self,
        min_fee_rates: Sequence[int],
        max_block_sizes: Sequence[int],
        block_rate: float,
        rng: random.Random | None = None,
    ) -> None:
        if block_rate <= 0:
            raise ValueError("blockrate must be > 0")
        if not min_fee_rates or not max_block_sizes:
            raise ValueError("minfeerates and maxblocksizes must have len > 0")
        self.min_fee_rates = tuple(min_fee_rates)
        self.max_block_sizes = tuple(max_block_sizes)
        self.block_rate = float(block_rate)
        self._rng = make_rngs(1)[0] if rng is None else rng

    def next_block(self) -> tuple[float, BlockPolicy]:
        """Seconds until the next block, and that block's policy."""
        seconds = self._rng.expovariate(1.0) / self.block_rate
        min_fee_rate = self._rng.choice(self.min_fee_rates)
        max_block_size = self._rng.choice(self.max_block_sizes)
        return seconds, BlockPolicy(max_block_size=max_block_size, min_fee_rate=min_fee_rate)

    def copy(self, n: int) -> list[IndBlockSource]:
        """``n`` copies sharing the model, each with its own random state."""
        return _clone_with(self, _spawn_rngs(self._rng, n))

    def rate_fn(self) -> CapRateFn:
        """Capacity byte rate of miners accepting a given fee rate."""
        avg_size = sum(self.max_block_sizes) / len(self.max_block_sizes)
        shares: dict[float, float] = defaultdict(float)
        for fee in self.min_fee_rates:
            if fee < MAX_FEE_RATE:
                shares[float(fee)] += 1 / len(self.min_fee_rates)
        xs = sorted(shares)
        ys: list[float] = []
        acc = 0.0
        for x in xs:
            acc += shares[x] * avg_size * self.block_rate
            ys.append(acc)
        return CapRateFn(xs, ys)

    def to_json(self) -> dict:
        """JSON-serialisable form; a never-including miner shows as -1."""
        fee_rates = sorted(
            -1.0 if fee == MAX_FEE_RATE else float(fee) for fee in self.min_fee_rates
        )
        return {
            "minfeerates": fee_rates,
            "maxblocksizes": sorted(float(s) for s in self.max_block_sizes),
            "blockrate": self.block_rate,
            "type": "IndBlockSource",
        }