"""
fairpool/blockchain/entropy.py

External entropy for round distribution.

A round's random values mix its seed with a block hash supplied by a ledger
or oracle at distribution time. The ledger integration itself lives outside
this package; anything implementing BlockHashSource can be plugged into
RoundManager.

Architecture:
    BlockHashSource (abstract)
    ├── SimulatedBlockSource (local chain simulation for tests and demos)
    └── CallableBlockSource  (adapter around an async ledger client call)

Usage:
    source = CallableBlockSource(ledger_client.latest_block)
    manager = RoundManager(block_source=source)
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from typing import Awaitable, Callable, Optional

from ..protocol.randomness import simple_hash, is_valid_block_hash

logger = logging.getLogger("fairpool.blockchain.entropy")


class EntropyError(RuntimeError):
    """The entropy source could not provide a usable block."""


@dataclass(frozen=True)
class BlockInfo:
    """A block reference used as entropy."""
    block_hash: str
    block_height: int

    def to_dict(self) -> dict:
        return asdict(self)


class BlockHashSource(ABC):
    """Supplies the block hash mixed into a round's randomness."""

    @abstractmethod
    async def get_block(self) -> BlockInfo:
        """
        Return the block to use for a distribution happening now.

        Raises:
            EntropyError: If no valid block is available
        """
        pass


def generate_mock_block_hash(block_height: int, timestamp: int) -> str:
    """Deterministic stand-in block hash: 0x + 64 hex digits."""
    return "0x" + format(simple_hash(f"block_{block_height}_{timestamp}"), "064x")


class SimulatedBlockSource(BlockHashSource):
    """
    Local stand-in for a ledger.

    Heights increase by one per request. Hashes are derived from height and
    time and are therefore predictable; never use this in production.
    """

    def __init__(
        self,
        start_height: int = 1,
        clock: Callable[[], float] = time.time,
    ):
        self._height = start_height
        self._clock = clock

    @property
    def height(self) -> int:
        return self._height

    async def get_block(self) -> BlockInfo:
        height = self._height
        self._height += 1
        block = BlockInfo(
            block_hash=generate_mock_block_hash(height, int(self._clock())),
            block_height=height,
        )
        logger.debug(f"Simulated block {height}: {block.block_hash[:18]}...")
        return block


class CallableBlockSource(BlockHashSource):
    """Adapts an async callable returning (block_hash, block_height)."""

    def __init__(self, fetch: Callable[[], Awaitable[tuple]]):
        self._fetch = fetch

    async def get_block(self) -> BlockInfo:
        try:
            block_hash, block_height = await self._fetch()
        except EntropyError:
            raise
        except Exception as e:
            raise EntropyError(f"Block fetch failed: {e}") from e

        if not is_valid_block_hash(block_hash):
            raise EntropyError(f"Ledger returned malformed block hash {block_hash!r}")
        return BlockInfo(block_hash=block_hash, block_height=int(block_height))
