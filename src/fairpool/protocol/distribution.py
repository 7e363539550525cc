"""
fairpool/protocol/distribution.py

Payout distribution for a closed round.

Every participant is guaranteed half of their own stake after the platform
fee. What is left of the pool (the bonus pool) is split in proportion to the
participants' random values:

    payout_i = basePayout_i + bonusPool * (random_i / sum(all_randoms))

All arithmetic is integer floor division on nanotons, so any implementation
that follows the same steps reproduces the payouts bit for bit. Rounding
loses at most one unit per participant; the loss stays in the pool.

Usage:
    from fairpool.protocol.distribution import calculate_distribution

    result = calculate_distribution(stakes, random_values, platform_fee_bps=500)
    result.payouts
"""

import logging
from dataclasses import dataclass, asdict
from typing import List, Sequence, Tuple

from ..config import BASIS_POINTS
from .rounds import PayoutEntry

logger = logging.getLogger("fairpool.protocol.distribution")


DISTRIBUTION_FORMULA = "payout_i = basePayout_i + bonusPool * (random_i / sum(all_randoms))"


class DistributionError(ValueError):
    """Invalid input to the distribution calculator."""


@dataclass(frozen=True)
class DistributionResult:
    """Full accounting of a round's pool."""
    payouts: Tuple[int, ...]
    total_pool: int
    base_payouts: Tuple[int, ...]
    bonus_pool: int
    formula: str
    total_stakes: int
    platform_fee: int
    random_values: Tuple[int, ...]

    def to_dict(self) -> dict:
        result = asdict(self)
        for key in ("payouts", "base_payouts", "random_values"):
            result[key] = list(result[key])
        return result


def _check_fee(platform_fee_bps: int) -> None:
    if not _is_int(platform_fee_bps) or not 0 <= platform_fee_bps <= BASIS_POINTS:
        raise DistributionError(
            f"Platform fee must be an integer in [0, {BASIS_POINTS}] bps, got {platform_fee_bps!r}"
        )


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _check_amounts(name: str, values: Sequence[int]) -> None:
    for index, value in enumerate(values):
        if not _is_int(value):
            raise DistributionError(f"{name}[{index}] must be an integer, got {value!r}")
        if value < 0:
            raise DistributionError(f"{name}[{index}] must be non-negative, got {value}")


def stake_after_fee(stake: int, platform_fee_bps: int) -> int:
    """Stake minus its own floor-rounded platform fee."""
    return stake - (stake * platform_fee_bps) // BASIS_POINTS


def base_payout(stake: int, platform_fee_bps: int) -> int:
    """Guaranteed floor: half of the participant's stake after fee."""
    return stake_after_fee(stake, platform_fee_bps) // 2


def calculate_distribution(
    stakes: Sequence[int],
    random_values: Sequence[int],
    platform_fee_bps: int,
) -> DistributionResult:
    """
    Split the pool between participants.

    Args:
        stakes: Per-participant stakes in nanotons
        random_values: Per-participant random weights, same order as stakes
        platform_fee_bps: Platform fee in basis points (0-10000)

    Returns:
        DistributionResult

    Raises:
        DistributionError: On empty or mismatched inputs, negative or
            non-integer amounts, or an out-of-range fee
    """
    if len(stakes) != len(random_values):
        raise DistributionError(
            f"Stakes and random values must have same length "
            f"({len(stakes)} != {len(random_values)})"
        )
    if not stakes:
        raise DistributionError("At least one participant is required")
    _check_fee(platform_fee_bps)
    _check_amounts("stakes", stakes)
    _check_amounts("random_values", random_values)

    total_stakes = sum(stakes)
    platform_fee = (total_stakes * platform_fee_bps) // BASIS_POINTS
    total_pool = total_stakes - platform_fee

    # Floor is per participant, from their own stake
    base_payouts = [base_payout(stake, platform_fee_bps) for stake in stakes]
    bonus_pool = total_pool - sum(base_payouts)
    if bonus_pool < 0:
        logger.warning(
            f"Fee rounding left a negative bonus pool ({bonus_pool}); clamping to zero"
        )
        bonus_pool = 0

    total_weight = sum(random_values)
    if total_weight == 0:
        payouts = list(base_payouts)
    else:
        payouts = [
            base + (bonus_pool * weight) // total_weight
            for base, weight in zip(base_payouts, random_values)
        ]

    return DistributionResult(
        payouts=tuple(payouts),
        total_pool=total_pool,
        base_payouts=tuple(base_payouts),
        bonus_pool=bonus_pool,
        formula=DISTRIBUTION_FORMULA,
        total_stakes=total_stakes,
        platform_fee=platform_fee,
        random_values=tuple(random_values),
    )


def build_payout_entries(
    addresses: Sequence[str],
    stakes: Sequence[int],
    payouts: Sequence[int],
) -> List[PayoutEntry]:
    """Pair each address with its payout and profit against its stake."""
    if not len(addresses) == len(stakes) == len(payouts):
        raise DistributionError("Addresses, stakes and payouts must have same length")
    return [
        PayoutEntry(
            address=address,
            amount=amount,
            profit=amount - stake,
            is_winner=amount > stake,
        )
        for address, stake, amount in zip(addresses, stakes, payouts)
    ]
