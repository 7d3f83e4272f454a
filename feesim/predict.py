"""Validation of the sim models.

Confirmation times of transactions are predicted from a sim result and then
compared with the confirmation times actually observed.
"""

from __future__ import annotations

import logging
from bisect import bisect_left
from dataclasses import dataclass
from typing import Iterable, Mapping, Protocol, Sequence

from feesim.mempool import Block, MempoolState

_log = logging.getLogger(__name__)


@dataclass(frozen=True)
class PredictTx:
    """A prediction: confirm within ``confirm_in`` blocks, i.e. by height ``confirm_by``."""

    confirm_in: int
    confirm_by: int


class PredictDB(Protocol):
    """Storage for predictions and scores."""

    def get_txs(self, txids: Iterable[str]) -> dict[str, PredictTx]:
        """Predictions for those of ``txids`` that were previously stored."""
        ...

    def put_txs(self, txs: Mapping[str, PredictTx]) -> None: ...

    def get_scores(self) -> tuple[list[float], list[float]]: ...

    def put_scores(self, attained: Sequence[float], exceeded: Sequence[float]) -> None: ...

    def reconcile(self, txids: Sequence[str]) -> None: ...

    def close(self) -> None: ...


@dataclass
class PredictConfig:
    """Predictor settings; ``halflife`` is counted in blocks."""

    max_block_confirms: int
    halflife: int
    logger: logging.Logger | None = None


def search_result(result: Sequence[int], x: int) -> int:
    """Smallest index i with ``x >= result[i]``, skipping entries of -1."""
    return bisect_left(
        range(len(result)),
        True,
        key=lambda i: x >= result[i] and result[i] != -1,
    )


def _resized(scores: Sequence[float], length: int) -> list[float]:
    scores = list(scores)
    if len(scores) < length:
        return scores + [0.0] * (length - len(scores))
    return scores[:length]


class Predictor:
    """Adds predictions for new mempool transactions and scores them per block."""

    def __init__(self, db: PredictDB, cfg: PredictConfig) -> None:
        attained, exceeded = db.get_scores()
        db.put_scores(
            _resized(attained, cfg.max_block_confirms),
            _resized(exceeded, cfg.max_block_confirms),
        )
        self._db = db
        self._cfg = cfg
        self._decay = 0.0 if cfg.halflife == 0 else 0.5 ** (1 / cfg.halflife)
        self._state: MempoolState | None = None

    @property
    def _logger(self) -> logging.Logger:
        return self._cfg.logger or _log

    def process_block(self, block: Block) -> None:
        """Tally the predictions for the transactions confirmed in ``block``."""
        size = self._cfg.max_block_confirms
        attained = [0.0] * size
        exceeded = [0.0] * size
        predicted = self._db.get_txs(block.txids())
        for tx in predicted.values():
            if block.height <= tx.confirm_by:
                attained[tx.confirm_in - 1] += 1
            else:
                exceeded[tx.confirm_in - 1] += 1
        self._logger.debug("Predictor: %d predicts tallied.", len(predicted))

        attained_total, exceeded_total = self._db.get_scores()
        a = self._decay
        self._db.put_scores(
            [a * total + new for total, new in zip(attained_total, attained)],
            [a * total + new for total, new in zip(exceeded_total, exceeded)],
        )

    def add_predicts(self, state: MempoolState, sim_result: Sequence[int]) -> None:
        """Predict confirmation of the transactions new since the previous state."""
        try:
            previous = self._state
            if previous is None:
                return
            predicted: dict[str, PredictTx] = {}
            for txid, entry in state.entries.items():
                if txid in previous.entries:
                    continue
                # No predictions for high priority txs or txs with mempool deps.
                if entry.depends or entry.is_high_priority():
                    continue
                confirm_in = search_result(sim_result, entry.fee_rate()) + 1
                if confirm_in > len(sim_result) or confirm_in > self._cfg.max_block_confirms:
                    continue
                predicted[txid] = PredictTx(
                    confirm_in=confirm_in, confirm_by=state.height + confirm_in
                )
            self._logger.debug("Predictor: %d predicts added.", len(predicted))
            self._db.put_txs(predicted)
        finally:
            self._state = state

    def cleanup(self, state: MempoolState) -> None:
        """Drop stored predictions for transactions no longer in the mempool."""
        self._db.reconcile(list(state.entries))

    def get_scores(self) -> tuple[list[float], list[float]]:
        """The decayed attained and exceeded counts per confirmation target."""
        return self._db.get_scores()