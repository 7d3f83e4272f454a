# feesim

Queue simulation of the Bitcoin mempool for fee estimation.

A transaction source emits transactions into the mempool. A block source
models miners finding blocks. A transient simulation then works out, for each
confirmation target, the lowest fee rate (satoshis per kB) that confirms in
time with a chosen success probability. A predictor scores such estimates
against the blocks that actually arrive.

The package has no runtime dependencies.

## Installation

```
pip install .
pip install ".[test]"   # with the test dependencies
```

## Modules

- `feesim.model`
  - `Tx` is a simulated transaction with `fee_rate`, `size`, `parents` and `children`. It compares by identity.
  - `BlockPolicy` holds `max_block_size` and `min_fee_rate`.
  - `TxRateFn` gives the byte rate of transactions at or above a fee rate.
  - `CapRateFn` gives the block capacity byte rate of miners at or below a fee rate.
  - Both rate functions have `evaluate`, `inverse`, `approx(n)` and `to_json()`.
  - The constants `MAX_FEE_RATE` and `MAX_TX_SIZE` are also defined here. A block whose `min_fee_rate` is `MAX_FEE_RATE` includes nothing.
- `feesim.randutil`
  - `make_rngs(n)` returns independently seeded `random.Random` generators.
  - `poisson_variate(mean, rng)` draws a Poisson variate. Above a mean of 30 it uses a normal approximation.
- `feesim.sources`
  - `UniTxSource(fee_rates, sizes, txrate)` and `MultiTxSource(fee_rates, sizes, weights, txrate)` are transaction sources. Each has `generate(seconds)`, `copy(n)`, `rate_fn()` and `to_json()`.
  - `IndBlockSource(min_fee_rates, max_block_sizes, block_rate)` is a block source. It has `next_block()`, which returns the seconds to the next block and its `BlockPolicy`. It also has `copy(n)`, `rate_fn()` and `to_json()`.
  - Every source takes an optional `rng` for reproducible runs.
- `feesim.simulation`
  - `Sim(txsource, blocksource, init_mempool)` mines one block per `next_block()` call. Each call returns the block's stranding fee rate and its size.
  - `reset()` restores the initial mempool.
  - `copy(n)` gives independent copies.
  - `stable_fee` is the lowest arrival fee rate that is kept. Arrivals below it are dropped.
  - Mempool dependencies are not modelled: the parents of the initial transactions are cleared in place.
- `feesim.transient`
  - `TransientConfig` holds `max_block_confirms`, `min_success_pct`, `num_iters` and `lowest_fee_rate`.
  - `TransientSim(sim, cfg, workers=1)` runs in a background thread. Its `run()` returns a `concurrent.futures.Future`. The future resolves to the result list, or to `None` if `stop()` was called first.
  - `transient_samples(sim, lowest, max_blocks, n)` yields the individual runs.
- `feesim.mempool`
  - `MempoolEntry` has `fee_rate()` and `is_high_priority()`.
  - `Block` has `txids()` and `num_hashes()`.
  - `MempoolState` holds a mempool snapshot.
  - `ChainData` has `get_block(height)`.
  - `load_data(datadir)` reads `mempool.json`, `blocks.json` and `blockhashes.json` from a directory.
- `feesim.predict`
  - `Predictor(db, PredictConfig(max_block_confirms, halflife))` handles predictions. `add_predicts(state, sim_result)` records predicted confirmation heights for transactions new since the previous state. `process_block(block)` tallies attained and exceeded predictions with exponential decay. `cleanup(state)` and `get_scores()` complete the interface.
  - `search_result(result, x)` finds the confirmation target a fee rate meets.
  - `PredictTx` is one stored prediction.
- `feesim.debuglog`
  - `DebugLog(out, prefix="", timestamps=True)` provides a `logging.Logger` as `.logger`.
  - Lines tagged `[DEBUG]` are written only after `set_debug(True)`. Records logged at DEBUG level get that tag automatically.
  - `close()` detaches the logger and closes `out`.

## Example

```python
from feesim.sources import MultiTxSource, IndBlockSource
from feesim.simulation import Sim
from feesim.transient import TransientConfig, TransientSim

txsource = MultiTxSource([20000, 10000, 5000], [250, 500, 1000], [1, 1, 1], 1.5)
blocksource = IndBlockSource([5000], [1_000_000], 1 / 600)
sim = Sim(txsource, blocksource, [])

config = TransientConfig(max_block_confirms=6, min_success_pct=0.9, num_iters=200)
estimates = TransientSim(sim, config).run().result()
# estimates[i] is the lowest fee rate to confirm within i + 1 blocks, or -1
```

## What it does not do

This is a library only:

- There is no command-line program and no RPC server.
- Nothing polls a node for mempool or block data.
- Nothing estimates transaction or block sources from collected history.
- `Predictor` needs a storage object supplied by the caller. It must provide `get_txs`, `put_txs`, `get_scores`, `put_scores`, `reconcile` and `close`. The package ships no such store.

## Tests

```
pytest
```