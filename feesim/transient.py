"""Transient simulation: estimates of the fee rate needed to confirm within N blocks."""

from __future__ import annotations

import threading
from bisect import bisect_left
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from itertools import accumulate
from typing import Iterator, NamedTuple

from feesim.model import MAX_FEE_RATE
from feesim.simulation import Sim


@dataclass
class TransientConfig:
    """Settings of a transient simulation.

    ``min_success_pct`` should lie in [0, 1).  ``lowest_fee_rate`` is the
    lowest fee rate for which confirmation times are estimated.
    """

    max_block_confirms: int
    min_success_pct: float
    num_iters: int
    lowest_fee_rate: int = 0


class TransientSample(NamedTuple):
    """One simulated run: decreasing fee rates and the block each confirms in."""

    fee_rates: list[int]
    conf_times: list[int]


def transient_samples(
    sim: Sim, lowest: int, max_blocks: int, n: int
) -> Iterator[TransientSample]:
    """Yield ``n`` samples of confirmation times, resetting ``sim`` after each.

    A fee rate at or above ``lowest`` that is not confirmed within
    ``max_blocks`` blocks gets the confirmation time ``max_blocks + 1``.
    """
    for _ in range(n):
        low = MAX_FEE_RATE
        fee_rates: list[int] = []
        conf_times: list[int] = []
        for block in range(1, max_blocks + 1):
            sfr, _ = sim.next_block()
            sfr = max(sfr, lowest)
            if sfr < low:
                fee_rates.append(sfr)
                conf_times.append(block)
                low = sfr
            if sfr == lowest:
                break
        if not fee_rates or fee_rates[-1] != lowest:
            fee_rates.append(lowest)
            conf_times.append(max_blocks + 1)
        yield TransientSample(fee_rates, conf_times)
        sim.reset()


class TransientSim:
    """Runs many short simulations from the current mempool.

    The result lists, for each confirmation target of 1 to
    ``max_block_confirms`` blocks, the lowest fee rate that confirms within
    it in at least ``min_success_pct`` of the runs, or -1 if there is none.
    """

    def __init__(self, sim: Sim, cfg: TransientConfig, workers: int = 1) -> None:
        if workers < 1:
            raise ValueError("workers must be >= 1")
        self._sim = sim
        self._cfg = cfg
        self._workers = workers
        self._lowest_fee = max(cfg.lowest_fee_rate, sim.stable_fee)
        self._done = threading.Event()
        self._lock = threading.Lock()
        self._thread: threading.Thread | None = None

    @property
    def lowest_fee(self) -> int:
        """The larger of the configured lowest fee rate and the sim's stable fee."""
        return self._lowest_fee

    def run(self) -> Future:
        """Start the simulation in the background.

        The returned future resolves to the result list, or to ``None`` if
        the simulation was stopped first.
        """
        future: Future = Future()

        def target() -> None:
            try:
                result = self._execute()
            except BaseException as exc:  # delivered to the caller via the future
                future.set_exception(exc)
            else:
                future.set_result(result)

        thread = threading.Thread(target=target, daemon=True)
        with self._lock:
            self._thread = thread
        thread.start()
        return future

    def stop(self) -> None:
        """Abort the simulation and wait until it has finished; idempotent."""
        self._done.set()
        with self._lock:
            thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join()

    def _collect(self, sim: Sim, n: int) -> list[TransientSample]:
        samples = []
        for sample in transient_samples(
            sim, self._lowest_fee, self._cfg.max_block_confirms, n
        ):
            if self._done.is_set():
                break
            samples.append(sample)
        return samples

    def _execute(self) -> list[int] | None:
        try:
            if self._done.is_set():
                return None
            self._sim.reset()
            sims = self._sim.copy(self._workers - 1) + [self._sim]
            total = self._cfg.num_iters
            chunks = [total // len(sims)] * len(sims)
            chunks[0] += total % len(sims)
            with ThreadPoolExecutor(max_workers=len(sims)) as pool:
                futures = [pool.submit(self._collect, s, c) for s, c in zip(sims, chunks)]
                samples = [sample for f in futures for sample in f.result()]
            if self._done.is_set():
                return None
            return self._summarise(samples)
        finally:
            self._done.set()

    def _summarise(self, samples: list[TransientSample]) -> list[int]:
        max_blocks = self._cfg.max_block_confirms
        fees = sorted({fee for s in samples for fee in s.fee_rates}, reverse=True)

        counts = [[0] * (max_blocks + 1) for _ in fees]
        for sample in samples:
            k = 0
            for fee, conf in zip(sample.fee_rates, sample.conf_times):
                while k < len(fees) and fees[k] >= fee:
                    counts[k][conf - 1] += 1
                    k += 1
            if k != len(fees):
                raise RuntimeError("some fee rates were skipped")

        threshold = int(self._cfg.min_success_pct * len(samples))
        percentiles = [
            next(
                (j + 1 for j, running in enumerate(accumulate(row)) if running >= threshold),
                0,
            )
            for row in counts
        ]
        if any(a > b for a, b in zip(percentiles, percentiles[1:])):
            raise RuntimeError("confirmation percentiles should be sorted")

        result = []
        for target in range(max_blocks):
            idx = bisect_left(percentiles, target + 2)
            result.append(fees[idx - 1] if idx > 0 else -1)
        return result