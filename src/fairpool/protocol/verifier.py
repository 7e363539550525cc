"""
fairpool/protocol/verifier.py

Independent fairness verification.

Recomputes a round's random values and payouts from public data and compares
them with the payouts that were claimed. Built to run against historical or
third-party data that may be malformed, so nothing here raises: every failure
comes back as an invalid result with an explanation.

Usage:
    from fairpool.protocol.verifier import verify_fairness_proof, verify_round

    result = verify_fairness_proof(seed, block_hash, addresses, stakes, payouts, 500)
    if not result.is_valid:
        print(result.explanation)

    report = verify_round(distributed_round.to_dict())
"""

import logging
import time
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from ..config import PAYOUT_TOLERANCE
from .distribution import calculate_distribution, DISTRIBUTION_FORMULA
from .randomness import (
    generate_random_values,
    generate_commit_hash,
    is_valid_seed,
    is_valid_block_hash,
)
from .rounds import DistributedRound

logger = logging.getLogger("fairpool.protocol.verifier")


@dataclass
class VerificationResult:
    """Outcome of comparing claimed payouts with recomputed ones."""
    is_valid: bool
    recomputed_payouts: List[int]
    differences: List[int]
    explanation: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class VerificationStep:
    """A single named check in a round report."""
    id: str
    description: str
    passed: bool
    details: str = ""

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class FairnessVerification:
    """Report for a stored round."""
    round_id: Optional[int]
    verified_at: int
    is_valid: bool
    message: str
    steps: List[VerificationStep] = field(default_factory=list)
    result: Optional[VerificationResult] = None

    def step(self, step_id: str) -> Optional[VerificationStep]:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def to_dict(self) -> dict:
        return {
            'round_id': self.round_id,
            'verified_at': self.verified_at,
            'is_valid': self.is_valid,
            'message': self.message,
            'steps': [s.to_dict() for s in self.steps],
            'result': self.result.to_dict() if self.result else None,
        }


def _failure(reason: str) -> VerificationResult:
    return VerificationResult(
        is_valid=False,
        recomputed_payouts=[],
        differences=[],
        explanation=f"Verification error: {reason}",
    )


def verify_fairness_proof(
    seed: str,
    block_hash: str,
    addresses: Sequence[str],
    stakes: Sequence[int],
    claimed_payouts: Sequence[int],
    platform_fee_bps: int,
    tolerance: int = PAYOUT_TOLERANCE,
    check_format: bool = False,
) -> VerificationResult:
    """
    Recompute payouts and compare them with claimed payouts.

    Args:
        seed: Round seed
        block_hash: Block hash used as entropy
        addresses: Ordered participant addresses
        stakes: Stakes in the same order
        claimed_payouts: Payouts to check, same order
        platform_fee_bps: Platform fee in basis points
        tolerance: Allowed per-participant difference in nanotons
        check_format: Also require 0x + 64 hex seed and block hash

    Returns:
        VerificationResult, valid iff every difference is within tolerance
    """
    try:
        if check_format and not is_valid_seed(seed):
            return _failure(f"malformed seed {seed!r}")
        if check_format and not is_valid_block_hash(block_hash):
            return _failure(f"malformed block hash {block_hash!r}")
        if not isinstance(seed, str) or not isinstance(block_hash, str):
            return _failure("seed and block hash must be strings")
        if any(not isinstance(a, str) for a in addresses):
            return _failure("addresses must be strings")
        if len(claimed_payouts) != len(addresses):
            return _failure(
                f"length mismatch: {len(claimed_payouts)} claimed payouts "
                f"for {len(addresses)} participants"
            )
        for index, claimed in enumerate(claimed_payouts):
            if not isinstance(claimed, int) or isinstance(claimed, bool):
                return _failure(f"claimed payout {index} is not an integer: {claimed!r}")

        random_values = generate_random_values(seed, block_hash, addresses)
        distribution = calculate_distribution(stakes, random_values, platform_fee_bps)
        recomputed = list(distribution.payouts)

        differences = [abs(claimed - actual) for claimed, actual in zip(claimed_payouts, recomputed)]
        mismatched = [i for i, diff in enumerate(differences) if diff > tolerance]
    except Exception as e:
        logger.debug(f"Verification failed with {type(e).__name__}: {e}")
        return _failure(str(e) or type(e).__name__)

    if mismatched:
        explanation = (
            f"Fairness proof failed: {len(mismatched)} payout(s) differ from the "
            f"recomputed distribution by more than {tolerance} (participants {mismatched})"
        )
    else:
        explanation = "Fairness proof verified: recomputed payouts match the claimed payouts"

    return VerificationResult(
        is_valid=not mismatched,
        recomputed_payouts=recomputed,
        differences=differences,
        explanation=explanation,
    )


def verify_round(
    record: Union[DistributedRound, Mapping[str, Any]],
    tolerance: int = PAYOUT_TOLERANCE,
) -> FairnessVerification:
    """
    Run every fairness check on a stored round.

    Accepts a DistributedRound or its to_dict() form; a malformed record
    yields an invalid report rather than an exception.
    """
    now = int(time.time())
    if isinstance(record, Mapping) and record.get('status') == 'CANCELLED':
        return FairnessVerification(
            round_id=record.get('round_id'),
            verified_at=now,
            is_valid=False,
            message="Round was cancelled, there is no distribution to verify",
        )
    round_id = record.get('round_id') if isinstance(record, Mapping) else getattr(record, 'round_id', None)
    try:
        if not isinstance(record, DistributedRound):
            record = DistributedRound.from_dict(dict(record))
        steps, result = _round_steps(record, tolerance)
    except Exception as e:
        logger.debug(f"Round {round_id} verification failed with {type(e).__name__}: {e}")
        return FairnessVerification(
            round_id=round_id,
            verified_at=now,
            is_valid=False,
            message=f"Verification error: malformed round record ({e!r})",
        )

    failed = [s.id for s in steps if not s.passed]
    if failed:
        message = f"Round {record.round_id} failed verification: {', '.join(failed)}"
    else:
        message = f"Round {record.round_id} verified"
    logger.info(message)

    return FairnessVerification(
        round_id=record.round_id,
        verified_at=now,
        is_valid=not failed,
        message=message,
        steps=steps,
        result=result,
    )


def _round_steps(
    record: DistributedRound,
    tolerance: int,
) -> Tuple[List[VerificationStep], VerificationResult]:
    """Build the named checks; field types are trusted, callers catch errors."""
    proof = record.proof
    addresses = list(record.participants)
    claimed = [entry.amount for entry in record.payouts]
    steps: List[VerificationStep] = []

    steps.append(VerificationStep(
        id="seed_format",
        description="Seed is a 0x-prefixed 256-bit hex value",
        passed=is_valid_seed(proof.seed),
    ))
    steps.append(VerificationStep(
        id="block_hash_format",
        description="Block hash is a 0x-prefixed 256-bit hex value",
        passed=is_valid_block_hash(proof.block_hash),
    ))

    expected_commit = generate_commit_hash(proof.seed, str(record.round_id))
    steps.append(VerificationStep(
        id="commit_reveal",
        description="Revealed seed matches the commit hash",
        passed=proof.commit_hash == expected_commit,
        details="" if proof.commit_hash == expected_commit else f"expected {expected_commit}",
    ))

    payout_addresses = [entry.address for entry in record.payouts]
    steps.append(VerificationStep(
        id="payout_coverage",
        description="Every participant has exactly one payout, in order",
        passed=payout_addresses == addresses,
    ))

    total_paid = sum(claimed)
    conserved = abs(record.total_pool - total_paid) <= len(addresses)
    steps.append(VerificationStep(
        id="pool_conservation",
        description="Payouts add up to the pool within rounding",
        passed=conserved,
        details=f"paid {total_paid} of {record.total_pool}",
    ))

    steps.append(VerificationStep(
        id="formula",
        description="Recorded formula is the published one",
        passed=record.formula == DISTRIBUTION_FORMULA,
    ))

    result = verify_fairness_proof(
        proof.seed,
        proof.block_hash,
        addresses,
        record.stakes,
        claimed,
        record.platform_fee_bps,
        tolerance=tolerance,
    )
    steps.append(VerificationStep(
        id="payouts",
        description="Payouts match the recomputed distribution",
        passed=result.is_valid,
        details=result.explanation,
    ))
    return steps, result
