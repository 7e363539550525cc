"""
fairpool/blockchain/

Ledger-facing pieces of fairpool. Only the entropy interface lives here;
wallets and stake transfers are handled by the embedding application.
"""

from .entropy import (
    BlockHashSource,
    BlockInfo,
    SimulatedBlockSource,
    CallableBlockSource,
    EntropyError,
    generate_mock_block_hash,
)

__all__ = [
    "BlockHashSource",
    "BlockInfo",
    "SimulatedBlockSource",
    "CallableBlockSource",
    "EntropyError",
    "generate_mock_block_hash",
]
