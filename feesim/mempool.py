"""Mempool and block records as reported by a node, and loading them from JSON."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path

COIN = 100_000_000
PRIORITY_THRESHOLD = 57_600_000
_HASHES_PER_DIFFICULTY = 4295032833.000015


@dataclass
class MempoolEntry:
    """A mempool transaction; ``size`` in bytes and ``fee`` in coins."""

    size: int
    fee: float
    time: int = 0
    depends: list[str] = field(default_factory=list)
    current_priority: float = 0.0

    def fee_rate(self) -> int:
        """Fee rate in satoshis per kB."""
        total = int(self.fee * COIN * 1000)
        quotient = abs(total) // abs(self.size)
        return quotient if (total >= 0) == (self.size > 0) else -quotient

    def is_high_priority(self) -> bool:
        """Whether the tx qualifies as high priority."""
        return self.current_priority > PRIORITY_THRESHOLD


@dataclass
class Block:
    """A block: its height, size, transaction ids and difficulty."""

    height: int
    size: int
    tx: tuple[str, ...] = ()
    difficulty: float = 0.0

    def __post_init__(self) -> None:
        self.tx = tuple(self.tx)

    def txids(self) -> list[str]:
        """The block's transaction ids, as a fresh list."""
        return list(self.tx)

    def num_hashes(self) -> float:
        """Expected number of hashes needed to solve this block."""
        return self.difficulty * _HASHES_PER_DIFFICULTY


@dataclass
class MempoolState:
    """The mempool at a given block height and time, keyed by txid."""

    height: int
    entries: dict[str, MempoolEntry] = field(default_factory=dict)
    time: int = 0


@dataclass
class ChainData:
    """Recorded blocks and mempool snapshots."""

    blocks: dict[str, Block] = field(default_factory=dict)
    block_hashes: dict[str, str] = field(default_factory=dict)
    mempool: dict[str, dict[str, MempoolEntry]] = field(default_factory=dict)

    def get_block(self, height: int) -> Block:
        """The block at ``height``.

        Raises LookupError if no block is recorded at that height, and
        RuntimeError if its hash is recorded but the block itself is missing.
        """
        block_hash = self.block_hashes.get(str(height), "")
        if not block_hash:
            raise LookupError("block data not available")
        block = self.blocks.get(block_hash)
        if block is None:
            raise RuntimeError("block data missing")
        return block


def _entry_from_json(data: dict) -> MempoolEntry:
    return MempoolEntry(
        size=int(data.get("vsize", 0)),
        fee=float(data.get("fee", 0.0)),
        time=int(data.get("time", 0)),
        depends=list(data.get("depends") or []),
        current_priority=float(data.get("currentpriority", 0.0)),
    )


def _block_from_json(data: dict) -> Block:
    return Block(
        height=int(data.get("height", 0)),
        size=int(data.get("size", 0)),
        tx=tuple(data.get("tx") or ()),
        difficulty=float(data.get("difficulty", 0.0)),
    )


def _read_json(path: Path):
    with path.open(encoding="utf-8") as f:
        return json.load(f)


def load_data(datadir) -> ChainData:
    """Load mempool.json, blocks.json and blockhashes.json from ``datadir``."""
    root = Path(datadir)
    mempool_raw = _read_json(root / "mempool.json") or {}
    blocks_raw = _read_json(root / "blocks.json") or {}
    hashes_raw = _read_json(root / "blockhashes.json") or {}
    return ChainData(
        blocks={h: _block_from_json(b) for h, b in blocks_raw.items()},
        block_hashes={str(k): v for k, v in hashes_raw.items()},
        mempool={
            height: {txid: _entry_from_json(e) for txid, e in entries.items()}
            for height, entries in mempool_raw.items()
        },
    )