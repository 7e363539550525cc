"""
fairpool/tests/test_stats.py

Tests for per-user statistics.
"""

from dataclasses import replace

from fairpool.protocol.rounds import (
    DistributedRound,
    CancelledRound,
    PayoutEntry,
    RandomnessProof,
    RoundMode,
)
from fairpool.protocol.stats import compute_user_stats


ONE_TON = 1_000_000_000


def make_round(round_id: int, alice_amount: int) -> DistributedRound:
    bob_amount = 1_900_000_000 - alice_amount
    return DistributedRound(
        round_id=round_id,
        mode=RoundMode.CAPACITY_LOCKED,
        creator="EQAlice",
        stake=ONE_TON,
        platform_fee_bps=500,
        created_at=1_700_000_000,
        completed_at=1_700_000_060,
        participants=("EQAlice", "EQBob"),
        bank=1_900_000_000,
        total_stakes=2 * ONE_TON,
        platform_fee=100_000_000,
        total_pool=1_900_000_000,
        bonus_pool=950_000_000,
        random_values=(1, 1),
        payouts=(
            PayoutEntry("EQAlice", alice_amount, alice_amount - ONE_TON, alice_amount > ONE_TON),
            PayoutEntry("EQBob", bob_amount, bob_amount - ONE_TON, bob_amount > ONE_TON),
        ),
        proof=RandomnessProof("0x" + "1" * 64, "0x" + "a" * 64, 1, "0x" + "0" * 64, 1_700_000_060),
        formula="",
        close_reason="capacity_reached",
        target_participants=2,
    )


class TestComputeUserStats:
    """Test compute_user_stats."""

    def test_no_history(self):
        stats = compute_user_stats([], "EQAlice")
        assert stats.total_games == 0
        assert stats.win_rate == 0.0

    def test_wins_and_losses(self):
        history = [
            make_round(1, 1_200_000_000),
            make_round(2, 700_000_000),
            make_round(3, 1_100_000_000),
        ]
        stats = compute_user_stats(history, "EQAlice")

        assert stats.total_games == 3
        assert stats.total_won == 2
        assert stats.total_lost == 1
        assert stats.total_profit == 0
        assert stats.best_win == 200_000_000
        assert stats.total_deposited == 3 * ONE_TON
        assert stats.total_withdrawn == 3_000_000_000
        assert round(stats.win_rate, 2) == 66.67

    def test_other_address_rounds_ignored(self):
        stats = compute_user_stats([make_round(1, 1_200_000_000)], "EQCarol")
        assert stats.total_games == 0

    def test_cancelled_rounds_skipped(self):
        cancelled = CancelledRound(
            round_id=9,
            mode=RoundMode.TIME_LOCKED,
            creator="EQAlice",
            stake=ONE_TON,
            platform_fee_bps=500,
            created_at=1_700_000_000,
            cancelled_at=1_700_003_600,
            participants=("EQAlice",),
            bank=950_000_000,
            reason="insufficient_participants",
        )
        stats = compute_user_stats([cancelled, make_round(1, 950_000_000)], "EQAlice")
        assert stats.total_games == 1
        assert stats.total_lost == 1
        assert stats.avg_profit == -50_000_000

    def test_to_dict(self):
        stats = compute_user_stats([make_round(1, 1_200_000_000)], "EQAlice")
        data = stats.to_dict()
        assert data["address"] == "EQAlice"
        assert data["win_rate"] == 100.0
