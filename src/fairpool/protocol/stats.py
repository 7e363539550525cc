"""
fairpool/protocol/stats.py

Per-user statistics over distributed rounds.
"""

from dataclasses import dataclass, asdict
from typing import Iterable

from .rounds import DistributedRound, RoundRecord


@dataclass
class UserStats:
    """Aggregate results of one address. Amounts in nanotons."""
    address: str
    total_games: int = 0
    total_won: int = 0
    total_lost: int = 0
    total_profit: int = 0
    win_rate: float = 0.0          # Percent of games with positive profit
    avg_profit: float = 0.0
    best_win: int = 0
    total_deposited: int = 0
    total_withdrawn: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


def compute_user_stats(history: Iterable[RoundRecord], address: str) -> UserStats:
    """
    Summarize an address's results.

    Cancelled rounds are skipped: their stakes are refunded, so they count
    as neither a game nor a deposit.
    """
    stats = UserStats(address=address)

    for record in history:
        if not isinstance(record, DistributedRound):
            continue
        entry = record.payout_for(address)
        if entry is None:
            continue

        stats.total_games += 1
        stats.total_deposited += record.stake
        stats.total_withdrawn += entry.amount
        stats.total_profit += entry.profit
        if entry.is_winner:
            stats.total_won += 1
            stats.best_win = max(stats.best_win, entry.profit)
        else:
            stats.total_lost += 1

    if stats.total_games:
        stats.win_rate = stats.total_won / stats.total_games * 100
        stats.avg_profit = stats.total_profit / stats.total_games
    return stats
