"""
fairpool/protocol/rounds.py

Round data model.

A round lives as an OpenRound while it accepts joins and ends as exactly one
immutable terminal record: DistributedRound or CancelledRound. Terminal
records carry everything a third party needs to re-run the fairness check.

Statuses:
    OPEN        -> accepting joins
    ACTIVE      -> closing, randomness being fixed (transient)
    DISTRIBUTED -> payouts recorded
    CANCELLED   -> no distribution, stakes refunded externally
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union


# ============================================================================
# ENUMS
# ============================================================================

class RoundMode(Enum):
    """What closes the round."""
    TIME_LOCKED = "TIME_LOCKED"          # Deadline reached
    CAPACITY_LOCKED = "CAPACITY_LOCKED"  # Target participant count reached


class RoundStatus(Enum):
    """Lifecycle status of a round."""
    OPEN = "OPEN"
    ACTIVE = "ACTIVE"
    DISTRIBUTED = "DISTRIBUTED"
    CANCELLED = "CANCELLED"


# Close reasons
REASON_TIME_EXPIRED = "time_expired"
REASON_CAPACITY_REACHED = "capacity_reached"
REASON_MANUAL = "manual"

# Cancel reasons
CANCEL_INSUFFICIENT_PARTICIPANTS = "insufficient_participants"
CANCEL_DISTRIBUTION_ERROR = "distribution_error"


# ============================================================================
# ERRORS
# ============================================================================

class RoundError(Exception):
    """Base class for rejected round operations."""

    def __init__(self, message: str, round_id: Optional[int] = None):
        super().__init__(message)
        self.round_id = round_id


class RoundValidationError(RoundError, ValueError):
    """Round parameters are out of policy bounds."""


class RoundNotFoundError(RoundError):
    """No open round with this id."""


class RoundClosedError(RoundError):
    """Round no longer accepts joins."""


class AlreadyJoinedError(RoundError):
    """Address is already a participant."""


class RoundFullError(RoundError):
    """Capacity-locked round has reached its target."""


# ============================================================================
# RECORDS
# ============================================================================

@dataclass(frozen=True)
class PayoutEntry:
    """One participant's result."""
    address: str
    amount: int       # Nanotons paid out
    profit: int       # amount - stake, negative on a loss
    is_winner: bool   # profit > 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PayoutEntry":
        return cls(**data)


@dataclass(frozen=True)
class RandomnessProof:
    """Public material needed to reproduce a round's random values."""
    seed: str
    block_hash: str
    block_height: int
    commit_hash: str
    reveal_timestamp: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RandomnessProof":
        return cls(**data)


@dataclass
class OpenRound:
    """
    A round that is still collecting participants.

    Only RoundManager mutates this, while holding the round's lock.
    Exactly one of deadline / target_participants is meaningful, by mode.
    """
    round_id: int
    mode: RoundMode
    creator: str
    stake: int
    platform_fee_bps: int
    created_at: int
    deadline: Optional[int] = None
    target_participants: Optional[int] = None
    participants: List[str] = field(default_factory=list)
    bank: int = 0
    status: RoundStatus = RoundStatus.OPEN
    expiry_warned: bool = False

    @property
    def participant_count(self) -> int:
        return len(self.participants)

    @property
    def is_open(self) -> bool:
        return self.status == RoundStatus.OPEN

    def is_full(self) -> bool:
        return (
            self.mode == RoundMode.CAPACITY_LOCKED
            and self.target_participants is not None
            and self.participant_count >= self.target_participants
        )

    def deadline_passed(self, now: float) -> bool:
        return (
            self.mode == RoundMode.TIME_LOCKED
            and self.deadline is not None
            and now >= self.deadline
        )

    def trigger_reason(self, now: float) -> Optional[str]:
        """Why the round should close now, or None if it stays open."""
        if self.deadline_passed(now):
            return REASON_TIME_EXPIRED
        if self.is_full():
            return REASON_CAPACITY_REACHED
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'round_id': self.round_id,
            'mode': self.mode.value,
            'creator': self.creator,
            'stake': self.stake,
            'platform_fee_bps': self.platform_fee_bps,
            'created_at': self.created_at,
            'deadline': self.deadline,
            'target_participants': self.target_participants,
            'participants': list(self.participants),
            'bank': self.bank,
            'status': self.status.value,
            'expiry_warned': self.expiry_warned,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OpenRound":
        return cls(
            round_id=data['round_id'],
            mode=RoundMode(data['mode']),
            creator=data['creator'],
            stake=data['stake'],
            platform_fee_bps=data['platform_fee_bps'],
            created_at=data['created_at'],
            deadline=data.get('deadline'),
            target_participants=data.get('target_participants'),
            participants=list(data.get('participants', [])),
            bank=data.get('bank', 0),
            status=RoundStatus(data.get('status', RoundStatus.OPEN.value)),
            expiry_warned=data.get('expiry_warned', False),
        )


@dataclass(frozen=True)
class DistributedRound:
    """Immutable record of a round whose pool was paid out."""
    round_id: int
    mode: RoundMode
    creator: str
    stake: int
    platform_fee_bps: int
    created_at: int
    completed_at: int
    participants: Tuple[str, ...]
    bank: int
    total_stakes: int
    platform_fee: int
    total_pool: int
    bonus_pool: int
    random_values: Tuple[int, ...]
    payouts: Tuple[PayoutEntry, ...]
    proof: RandomnessProof
    formula: str
    close_reason: str
    deadline: Optional[int] = None
    target_participants: Optional[int] = None

    @property
    def status(self) -> RoundStatus:
        return RoundStatus.DISTRIBUTED

    @property
    def participant_count(self) -> int:
        return len(self.participants)

    @property
    def stakes(self) -> List[int]:
        return [self.stake] * len(self.participants)

    def payout_for(self, address: str) -> Optional[PayoutEntry]:
        for entry in self.payouts:
            if entry.address == address:
                return entry
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status.value,
            'round_id': self.round_id,
            'mode': self.mode.value,
            'creator': self.creator,
            'stake': self.stake,
            'platform_fee_bps': self.platform_fee_bps,
            'created_at': self.created_at,
            'completed_at': self.completed_at,
            'deadline': self.deadline,
            'target_participants': self.target_participants,
            'participants': list(self.participants),
            'participant_count': self.participant_count,
            'bank': self.bank,
            'total_stakes': self.total_stakes,
            'platform_fee': self.platform_fee,
            'total_pool': self.total_pool,
            'bonus_pool': self.bonus_pool,
            'random_values': list(self.random_values),
            'payouts': [p.to_dict() for p in self.payouts],
            'proof': self.proof.to_dict(),
            'formula': self.formula,
            'close_reason': self.close_reason,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DistributedRound":
        return cls(
            round_id=data['round_id'],
            mode=RoundMode(data['mode']),
            creator=data['creator'],
            stake=data['stake'],
            platform_fee_bps=data['platform_fee_bps'],
            created_at=data['created_at'],
            completed_at=data['completed_at'],
            participants=tuple(data['participants']),
            bank=data['bank'],
            total_stakes=data['total_stakes'],
            platform_fee=data['platform_fee'],
            total_pool=data['total_pool'],
            bonus_pool=data['bonus_pool'],
            random_values=tuple(data['random_values']),
            payouts=tuple(PayoutEntry.from_dict(p) for p in data['payouts']),
            proof=RandomnessProof.from_dict(data['proof']),
            formula=data['formula'],
            close_reason=data['close_reason'],
            deadline=data.get('deadline'),
            target_participants=data.get('target_participants'),
        )


@dataclass(frozen=True)
class CancelledRound:
    """Immutable record of a round closed without distribution."""
    round_id: int
    mode: RoundMode
    creator: str
    stake: int
    platform_fee_bps: int
    created_at: int
    cancelled_at: int
    participants: Tuple[str, ...]
    bank: int
    reason: str
    error_message: Optional[str] = None
    deadline: Optional[int] = None
    target_participants: Optional[int] = None

    @property
    def status(self) -> RoundStatus:
        return RoundStatus.CANCELLED

    @property
    def participant_count(self) -> int:
        return len(self.participants)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status.value,
            'round_id': self.round_id,
            'mode': self.mode.value,
            'creator': self.creator,
            'stake': self.stake,
            'platform_fee_bps': self.platform_fee_bps,
            'created_at': self.created_at,
            'cancelled_at': self.cancelled_at,
            'deadline': self.deadline,
            'target_participants': self.target_participants,
            'participants': list(self.participants),
            'participant_count': self.participant_count,
            'bank': self.bank,
            'reason': self.reason,
            'error_message': self.error_message,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CancelledRound":
        return cls(
            round_id=data['round_id'],
            mode=RoundMode(data['mode']),
            creator=data['creator'],
            stake=data['stake'],
            platform_fee_bps=data['platform_fee_bps'],
            created_at=data['created_at'],
            cancelled_at=data['cancelled_at'],
            participants=tuple(data['participants']),
            bank=data['bank'],
            reason=data['reason'],
            error_message=data.get('error_message'),
            deadline=data.get('deadline'),
            target_participants=data.get('target_participants'),
        )


RoundRecord = Union[DistributedRound, CancelledRound]


def round_record_from_dict(data: Dict[str, Any]) -> RoundRecord:
    """Rebuild a terminal record from its to_dict() form."""
    status = RoundStatus(data.get('status'))
    if status == RoundStatus.DISTRIBUTED:
        return DistributedRound.from_dict(data)
    if status == RoundStatus.CANCELLED:
        return CancelledRound.from_dict(data)
    raise ValueError(f"Not a terminal round record: status={status.value}")
