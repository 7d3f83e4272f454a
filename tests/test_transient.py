import random
import time

import pytest

from feesim.model import MAX_FEE_RATE, Tx
from feesim.simulation import Sim
from feesim.sources import IndBlockSource, MultiTxSource
from feesim.transient import (
    TransientConfig,
    TransientSample,
    TransientSim,
    transient_samples,
)


def make_mempool(seed=7, count=300):
    rng = random.Random(seed)
    return [
        Tx(fee_rate=rng.randint(1000, 50000), size=rng.randint(200, 1000))
        for _ in range(count)
    ]


def make_txsource(seed, txrate=0.5):
    rng = random.Random(seed)
    fees = [rng.randint(1000, 50000) for _ in range(50)]
    sizes = [rng.randint(200, 1000) for _ in range(50)]
    return MultiTxSource(fees, sizes, [1.0] * 50, txrate, rng=random.Random(seed + 1))


def null_txsource():
    return MultiTxSource([], [], [], 0)


def test_samples_single_block_policy():
    blocks = IndBlockSource([10000], [50000], 1 / 600, rng=random.Random(1))
    sim = Sim(null_txsource(), blocks, [])
    samples = list(transient_samples(sim, 5000, 4, 3))
    assert samples == [TransientSample([10000, 5000], [1, 5])] * 3


def test_samples_break_at_lowest():
    blocks = IndBlockSource([10000], [50000], 1 / 600, rng=random.Random(1))
    sim = Sim(null_txsource(), blocks, [])
    samples = list(transient_samples(sim, 10000, 4, 2))
    assert samples == [TransientSample([10000], [1])] * 2


def test_samples_null_block_source():
    blocks = IndBlockSource([MAX_FEE_RATE], [1000000], 1 / 600, rng=random.Random(1))
    sim = Sim(null_txsource(), blocks, make_mempool())
    samples = list(transient_samples(sim, 5000, 6, 2))
    assert samples == [TransientSample([5000], [7])] * 2


def test_samples_fee_rates_decrease():
    blocks = IndBlockSource([1000, 5000], [100000], 1 / 600, rng=random.Random(3))
    sim = Sim(make_txsource(11), blocks, make_mempool())
    for sample in transient_samples(sim, 2000, 18, 20):
        assert sample.fee_rates[-1] == 2000
        assert all(a > b for a, b in zip(sample.fee_rates, sample.fee_rates[1:]))
        assert all(a < b for a, b in zip(sample.conf_times, sample.conf_times[1:]))
        assert all(1 <= c <= 19 for c in sample.conf_times)


def test_run_constant_policy():
    blocks = IndBlockSource([10000], [50000], 1 / 600, rng=random.Random(1))
    sim = Sim(null_txsource(), blocks, [])
    cfg = TransientConfig(
        max_block_confirms=18, min_success_pct=0.9, num_iters=100, lowest_fee_rate=5000
    )
    result = TransientSim(sim, cfg).run().result(timeout=60)
    assert result == [10000] * 18


def test_run_null_block_source_all_unavailable():
    blocks = IndBlockSource([MAX_FEE_RATE], [1000000], 1 / 600, rng=random.Random(1))
    sim = Sim(null_txsource(), blocks, make_mempool())
    cfg = TransientConfig(
        max_block_confirms=18, min_success_pct=0.9, num_iters=20, lowest_fee_rate=5000
    )
    result = TransientSim(sim, cfg).run().result(timeout=60)
    assert result == [-1] * 18


@pytest.mark.parametrize("workers", [1, 3])
def test_run_partial_null_policy_shape(workers):
    blocks = IndBlockSource([MAX_FEE_RATE, 1000], [1000000], 1 / 600, rng=random.Random(5))
    sim = Sim(make_txsource(21), blocks, make_mempool())
    cfg = TransientConfig(
        max_block_confirms=18, min_success_pct=0.9, num_iters=50, lowest_fee_rate=5000
    )
    result = TransientSim(sim, cfg, workers=workers).run().result(timeout=60)
    assert len(result) == 18
    known = [r for r in result if r != -1]
    assert result[: 18 - len(known)] == [-1] * (18 - len(known))
    assert all(a >= b for a, b in zip(known, known[1:]))
    assert all(r >= 5000 for r in known)


def test_run_is_reproducible_with_seeds():
    def build():
        blocks = IndBlockSource([1000, 10000], [200000, 100000], 1 / 600, rng=random.Random(9))
        sim = Sim(make_txsource(31), blocks, make_mempool(seed=2))
        cfg = TransientConfig(
            max_block_confirms=10, min_success_pct=0.8, num_iters=40, lowest_fee_rate=2000
        )
        return TransientSim(sim, cfg, workers=2)

    first = build().run().result(timeout=60)
    second = build().run().result(timeout=60)
    assert first == second
    assert len(first) == 10


def test_lowest_fee_is_at_least_stable_fee():
    blocks = IndBlockSource([1000], [1000000], 1 / 600, rng=random.Random(1))
    txsource = MultiTxSource([20000], [250], [1.0], 0.01, rng=random.Random(2))
    sim = Sim(txsource, blocks, [])
    cfg = TransientConfig(
        max_block_confirms=5, min_success_pct=0.9, num_iters=5, lowest_fee_rate=500
    )
    ts = TransientSim(sim, cfg)
    assert ts.lowest_fee == sim.stable_fee
    assert ts.lowest_fee >= 500


def test_stop_aborts_and_is_idempotent():
    blocks = IndBlockSource([MAX_FEE_RATE, 1000], [1000000], 1 / 600, rng=random.Random(4))
    sim = Sim(make_txsource(41, txrate=2.5), blocks, make_mempool())
    cfg = TransientConfig(
        max_block_confirms=18, min_success_pct=0.9, num_iters=10**7, lowest_fee_rate=5000
    )
    ts = TransientSim(sim, cfg)
    future = ts.run()
    time.sleep(0.05)
    ts.stop()
    assert future.result(timeout=60) is None
    ts.stop()
    assert future.done()


def test_invalid_workers():
    blocks = IndBlockSource([1000], [1000000], 1 / 600, rng=random.Random(1))
    sim = Sim(null_txsource(), blocks, [])
    cfg = TransientConfig(max_block_confirms=2, min_success_pct=0.5, num_iters=1)
    with pytest.raises(ValueError):
        TransientSim(sim, cfg, workers=0)