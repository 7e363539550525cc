"""
fairpool - Provably fair prize-pool rounds

Participants stake into a round; when it closes the pool (minus a platform
fee) is redistributed so that everyone gets back at least half of their own
stake after fee, and the rest is split by random weights derived from a
public seed and a block hash. Anyone can recompute a round from its stored
record.

Usage:
    from fairpool import RoundManager, RoundMode

    manager = RoundManager()
    round_ = await manager.create_round(
        "EQCreator", RoundMode.CAPACITY_LOCKED, stake=1_000_000_000,
        target_participants=2,
    )
    record = await manager.join_round(round_.round_id, "EQAlice")

Verification Usage:
    from fairpool import verify_fairness_proof

    result = verify_fairness_proof(seed, block_hash, addresses, stakes, payouts, 500)
    result.is_valid

Metrics Usage:
    from fairpool import GameMetrics

    metrics = GameMetrics()
    manager = RoundManager(metrics=metrics)
    prometheus_output = metrics.collect()
"""

from .config import (
    GameConfig,
    PLATFORM_FEE_BPS,
    MIN_PARTICIPANTS,
    PAYOUT_TOLERANCE,
    NANOTON_PER_TON,
)
from .protocol.randomness import (
    simple_hash,
    generate_random_values,
    generate_commit_hash,
    generate_random_seed,
    derive_round_seed,
    is_valid_seed,
    is_valid_block_hash,
)
from .protocol.distribution import (
    calculate_distribution,
    build_payout_entries,
    base_payout,
    DistributionResult,
    DistributionError,
    DISTRIBUTION_FORMULA,
)
from .protocol.verifier import (
    verify_fairness_proof,
    verify_round,
    VerificationResult,
    FairnessVerification,
)
from .protocol.rounds import (
    RoundMode,
    RoundStatus,
    OpenRound,
    DistributedRound,
    CancelledRound,
    PayoutEntry,
    RandomnessProof,
    RoundError,
    RoundValidationError,
    RoundNotFoundError,
    RoundClosedError,
    AlreadyJoinedError,
    RoundFullError,
)
from .protocol.lifecycle import RoundManager
from .protocol.events import RoundEvent, RoundEventType, RoundEventChannel
from .protocol.storage import RoundStore, MemoryBackend, FileBackend, StorageError
from .protocol.stats import UserStats, compute_user_stats
from .blockchain import BlockHashSource, BlockInfo, SimulatedBlockSource, CallableBlockSource
from .metrics import GameMetrics
from .units import ton_to_nanoton, nanoton_to_ton, format_ton

__version__ = "1.0.0"
__all__ = [
    # Config
    "GameConfig",
    "PLATFORM_FEE_BPS",
    "MIN_PARTICIPANTS",
    "PAYOUT_TOLERANCE",
    "NANOTON_PER_TON",
    # Randomness
    "simple_hash",
    "generate_random_values",
    "generate_commit_hash",
    "generate_random_seed",
    "derive_round_seed",
    "is_valid_seed",
    "is_valid_block_hash",
    # Distribution
    "calculate_distribution",
    "build_payout_entries",
    "base_payout",
    "DistributionResult",
    "DistributionError",
    "DISTRIBUTION_FORMULA",
    # Verification
    "verify_fairness_proof",
    "verify_round",
    "VerificationResult",
    "FairnessVerification",
    # Rounds
    "RoundMode",
    "RoundStatus",
    "OpenRound",
    "DistributedRound",
    "CancelledRound",
    "PayoutEntry",
    "RandomnessProof",
    "RoundError",
    "RoundValidationError",
    "RoundNotFoundError",
    "RoundClosedError",
    "AlreadyJoinedError",
    "RoundFullError",
    # Lifecycle
    "RoundManager",
    "RoundEvent",
    "RoundEventType",
    "RoundEventChannel",
    # Storage & stats
    "RoundStore",
    "MemoryBackend",
    "FileBackend",
    "StorageError",
    "UserStats",
    "compute_user_stats",
    # Entropy
    "BlockHashSource",
    "BlockInfo",
    "SimulatedBlockSource",
    "CallableBlockSource",
    # Metrics & units
    "GameMetrics",
    "ton_to_nanoton",
    "nanoton_to_ton",
    "format_ton",
]
