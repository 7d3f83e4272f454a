"""Transaction queue simulation driven by a tx source and a block source.

Miners include transactions greedily by fee rate, each transaction taken in
isolation, subject to the minimum fee rate and maximum block size of the
block's :class:`~feesim.model.BlockPolicy`.  Each simulated block is reported
by its stranding fee rate (SFR), roughly the lowest fee rate a transaction
needed to be included in that block.
"""

from __future__ import annotations

import sys
from bisect import bisect_left
from typing import Iterable

from feesim.model import MAX_FEE_RATE, Tx
from feesim.sources import BlockSource, TxSource

_MAX_INT32 = 2**31 - 1


def _sift_up(queue: list[Tx], j: int) -> None:
    while j > 0:
        i = (j - 1) // 2
        if queue[j].fee_rate <= queue[i].fee_rate:
            break
        queue[i], queue[j] = queue[j], queue[i]
        j = i


def _sift_down(queue: list[Tx], i: int, n: int) -> None:
    while True:
        j = 2 * i + 1
        if j >= n:
            break
        right = j + 1
        if right < n and queue[j].fee_rate <= queue[right].fee_rate:
            j = right
        if queue[j].fee_rate <= queue[i].fee_rate:
            break
        queue[i], queue[j] = queue[j], queue[i]
        i = j


def _heapify(queue: list[Tx]) -> None:
    n = len(queue)
    for i in range(n // 2 - 1, -1, -1):
        _sift_down(queue, i, n)


def _heap_push(queue: list[Tx], tx: Tx) -> None:
    queue.append(tx)
    _sift_up(queue, len(queue) - 1)


def _heap_pop(queue: list[Tx]) -> Tx:
    last = len(queue) - 1
    queue[0], queue[last] = queue[last], queue[0]
    _sift_down(queue, 0, last)
    return queue.pop()


class Sim:
    """A single-threaded mempool queue simulation.

    The transactions of ``init_mempool`` are modified in place: their parents
    are dropped, since mempool dependencies are not modelled.
    """

    def __init__(
        self, txsource: TxSource, blocksource: BlockSource, init_mempool: Iterable[Tx]
    ) -> None:
        mempool = list(init_mempool)
        for tx in mempool:
            tx.parents = []

        # Arrivals with fee rate below the stable fee are discarded.
        txrate_fn, caprate_fn = txsource.rate_fn(), blocksource.rate_fn()
        high_fee = txrate_fn.inverse(0)
        max_cap = caprate_fn.evaluate(sys.float_info.max)
        low_fee = int(caprate_fn.inverse(1))
        n = min(int(high_fee), _MAX_INT32)
        stable_fee = bisect_left(
            range(n),
            True,
            key=lambda i: max_cap > txrate_fn.evaluate(i) and i >= low_fee,
        )

        for tx in mempool:
            tx.children = []
        min_tx_size = txsource.min_size
        init_queue: list[Tx] = []
        for tx in mempool:
            min_tx_size = min(min_tx_size, tx.size)
            if not tx.parents:
                init_queue.append(tx)
            for parent in tx.parents:
                parent.children.append(tx)
        _heapify(init_queue)

        self._setup(txsource, blocksource, mempool, init_queue, stable_fee, min_tx_size)

    def _setup(
        self,
        txsource: TxSource,
        blocksource: BlockSource,
        mempool: list[Tx],
        init_queue: list[Tx],
        stable_fee: int,
        min_tx_size: int,
    ) -> None:
        self._txsource = txsource
        self._blocksource = blocksource
        self._init_mempool = mempool
        self._init_queue = init_queue
        self._stable_fee = stable_fee
        self._min_tx_size = min_tx_size
        self._queue: list[Tx] = []
        self.reset()

    @property
    def stable_fee(self) -> int:
        """Lowest fee rate of tx arrivals that enter the simulated queue."""
        return self._stable_fee

    def next_block(self) -> tuple[int, int]:
        """Simulate one block; return its stranding fee rate and its size."""
        seconds, policy = self._blocksource.next_block()
        queue = self._queue
        queue.extend(
            tx for tx in self._txsource.generate(seconds) if tx.fee_rate >= self._stable_fee
        )
        _heapify(queue)

        size_limited = 0
        spilled: list[Tx] = []
        sfr = MAX_FEE_RATE
        block_size = 0

        while queue:
            if policy.max_block_size - block_size < self._min_tx_size:
                size_limited = 1
                break
            tx = _heap_pop(queue)
            if tx.fee_rate < policy.min_fee_rate:
                queue.append(tx)
                break
            if block_size + tx.size <= policy.max_block_size:
                block_size += tx.size
                if size_limited > 0:
                    size_limited -= 1
                elif tx.fee_rate < sfr:
                    sfr = tx.fee_rate
                self._process_children(tx)
            else:
                size_limited += 1
                spilled.append(tx)

        queue.extend(spilled)

        if size_limited > 0:
            if sfr < MAX_FEE_RATE:
                sfr += 1
        else:
            sfr = policy.min_fee_rate
        return max(sfr, self._stable_fee), block_size

    def reset(self) -> None:
        """Restore the queue to the initial mempool."""
        for tx in self._init_mempool:
            tx.removed_parents = 0
        self._queue = list(self._init_queue)

    def _process_children(self, tx: Tx) -> None:
        for child in tx.children:
            child.removed_parents += 1
            if child.removed_parents == len(child.parents):
                _heap_push(self._queue, child)

    def copy(self, n: int) -> list[Sim]:
        """``n`` independent copies, each with its own random state and mempool."""
        txsources = self._txsource.copy(n)
        blocksources = self._blocksource.copy(n)
        index = {tx: i for i, tx in enumerate(self._init_mempool)}

        def lookup(tx: Tx) -> int:
            try:
                return index[tx]
            except KeyError:
                raise ValueError("mempool deps not closed") from None

        copies = []
        for txsource, blocksource in zip(txsources, blocksources):
            mempool = [Tx(fee_rate=tx.fee_rate, size=tx.size) for tx in self._init_mempool]
            for original, clone in zip(self._init_mempool, mempool):
                clone.parents = [mempool[lookup(p)] for p in original.parents]
                clone.children = [mempool[lookup(c)] for c in original.children]
            init_queue = [mempool[index[tx]] for tx in self._init_queue]
            sim = Sim.__new__(Sim)
            sim._setup(
                txsource,
                blocksource,
                mempool,
                init_queue,
                self._stable_fee,
                self._min_tx_size,
            )
            copies.append(sim)
        return copies