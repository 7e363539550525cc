"""
fairpool/protocol/lifecycle.py

Round lifecycle: creation, joins, and the close that fixes randomness and
pays out.

State machine per round:
    OPEN --(deadline reached | capacity reached)--> ACTIVE --> DISTRIBUTED
    OPEN --(closing with fewer than min_participants)--> CANCELLED
    ACTIVE --(any error while distributing)--> CANCELLED

Every transition of a round happens while holding that round's trio.Lock, so
a join can never land after the round's randomness is fixed and a round is
closed at most once. Rounds are independent of each other.

Close sequence:
1. Fetch a block hash from the entropy source
2. Derive the round seed (round id, creation time, participants, time bucket)
3. Generate random values and compute the distribution
4. Re-verify the result, then persist the DistributedRound
5. Emit one payout event per participant and one round-level event

Usage:
    manager = RoundManager(config=GameConfig(), store=RoundStore(FileBackend()))
    async with trio.open_nursery() as nursery:
        await nursery.start(manager.run)

        round_ = await manager.create_round(
            "EQCreator", RoundMode.CAPACITY_LOCKED, stake=1_000_000_000,
            target_participants=3,
        )
        await manager.join_round(round_.round_id, "EQAlice")
"""

import logging
import time
from dataclasses import replace
from typing import Callable, Dict, List, Optional, Union

import trio

from ..config import GameConfig
from ..blockchain.entropy import BlockHashSource, SimulatedBlockSource
from ..metrics import GameMetrics
from .distribution import calculate_distribution, build_payout_entries, stake_after_fee
from .events import RoundEvent, RoundEventChannel, RoundEventType
from .randomness import derive_round_seed, generate_random_values, generate_commit_hash
from .rounds import (
    OpenRound,
    DistributedRound,
    CancelledRound,
    RandomnessProof,
    RoundRecord,
    RoundMode,
    RoundStatus,
    RoundValidationError,
    RoundNotFoundError,
    RoundClosedError,
    AlreadyJoinedError,
    RoundFullError,
    REASON_CAPACITY_REACHED,
    REASON_MANUAL,
    CANCEL_INSUFFICIENT_PARTICIPANTS,
    CANCEL_DISTRIBUTION_ERROR,
)
from .stats import UserStats, compute_user_stats
from .storage import RoundStore
from .verifier import verify_fairness_proof, verify_round, FairnessVerification

logger = logging.getLogger("fairpool.protocol.lifecycle")


class RoundManager:
    """
    Owns the open rounds and drives them to a terminal record.

    All collaborators are passed in; nothing here is process-global.
    """

    def __init__(
        self,
        config: Optional[GameConfig] = None,
        store: Optional[RoundStore] = None,
        block_source: Optional[BlockHashSource] = None,
        events: Optional[RoundEventChannel] = None,
        metrics: Optional[GameMetrics] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize RoundManager.

        Args:
            config: Game policy (defaults to GameConfig())
            store: Where terminal records are persisted
            block_source: External entropy for distributions
            events: Channel receiving round events
            metrics: Optional metrics collector
            clock: Wall clock returning unix seconds
        """
        self.config = config or GameConfig()
        self.config.validate()
        self._clock = clock
        self.store = store or RoundStore()
        self.block_source = block_source or SimulatedBlockSource(clock=clock)
        self.events = events or RoundEventChannel(self.config.event_buffer_size)
        self.metrics = metrics
        if self.metrics:
            self.metrics.attach(self)

        self._open_rounds: Dict[int, OpenRound] = {}
        self._locks: Dict[int, trio.Lock] = {}
        self._next_id = 1
        self._started = False

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    async def start(self) -> None:
        """Continue round ids after the highest stored round."""
        stored_max = await self.store.max_round_id()
        self._next_id = max(self._next_id, stored_max + 1)
        if not self._started:
            self._started = True
            logger.info(f"RoundManager started (next round id {self._next_id})")

    async def stop(self) -> None:
        self._started = False
        logger.info("RoundManager stopped")

    async def run(self, task_status=trio.TASK_STATUS_IGNORED) -> None:
        """
        Scheduler loop: check every open round each check_interval seconds.

        Meant to be started with nursery.start(manager.run).
        """
        await self.start()
        task_status.started()
        while self._started:
            try:
                await self.check_rounds()
            except Exception as e:
                logger.error(f"Round check failed: {e}")
            await trio.sleep(self.config.check_interval)

    # ========================================================================
    # QUERIES
    # ========================================================================

    @property
    def open_round_count(self) -> int:
        return len(self._open_rounds)

    def get_open_round(self, round_id: int) -> Optional[OpenRound]:
        """Snapshot of an open round, safe to hand to callers."""
        round_ = self._open_rounds.get(round_id)
        return self._snapshot(round_) if round_ else None

    def get_open_rounds(self) -> List[OpenRound]:
        return [self._snapshot(self._open_rounds[i]) for i in sorted(self._open_rounds)]

    async def get_round(self, round_id: int) -> Optional[Union[OpenRound, RoundRecord]]:
        """Open snapshot or terminal record, whichever exists."""
        open_round = self.get_open_round(round_id)
        if open_round is not None:
            return open_round
        return await self.store.get_round(round_id)

    async def get_history(self, limit: Optional[int] = None) -> List[RoundRecord]:
        return await self.store.get_history(limit)

    async def get_user_stats(self, address: str) -> UserStats:
        return compute_user_stats(await self.store.get_history(), address)

    async def verify_round(self, round_id: int) -> FairnessVerification:
        """Re-run the fairness checks on a stored round from its raw record."""
        raw = await self.store.get_raw_round(round_id)
        if raw is None:
            report = FairnessVerification(
                round_id=round_id,
                verified_at=int(self._clock()),
                is_valid=False,
                message=f"Verification error: no stored record for round {round_id}",
            )
        else:
            report = verify_round(raw)
        if self.metrics:
            self.metrics.record_verification(report.is_valid)
        return report

    # ========================================================================
    # ROUND OPERATIONS
    # ========================================================================

    async def create_round(
        self,
        creator: str,
        mode: Union[RoundMode, str],
        stake: int,
        deadline: Optional[int] = None,
        target_participants: Optional[int] = None,
    ) -> OpenRound:
        """
        Open a new round with the creator as participant #0.

        Args:
            creator: Creator's address
            mode: TIME_LOCKED or CAPACITY_LOCKED
            stake: Per-participant stake in nanotons
            deadline: Unix seconds, TIME_LOCKED only
            target_participants: Capacity, CAPACITY_LOCKED only

        Returns:
            Snapshot of the new round

        Raises:
            RoundValidationError: If parameters break policy
        """
        if not self._started:
            await self.start()

        now = int(self._clock())
        mode = self._validate_new_round(creator, mode, stake, deadline, target_participants, now)
        fee_bps = self.config.platform_fee_bps

        round_id = self._next_id
        self._next_id += 1
        round_ = OpenRound(
            round_id=round_id,
            mode=mode,
            creator=creator,
            stake=stake,
            platform_fee_bps=fee_bps,
            created_at=now,
            deadline=deadline if mode == RoundMode.TIME_LOCKED else None,
            target_participants=target_participants if mode == RoundMode.CAPACITY_LOCKED else None,
            participants=[creator],
            bank=stake_after_fee(stake, fee_bps),
        )
        self._open_rounds[round_id] = round_
        self._locks[round_id] = trio.Lock()

        logger.info(f"Round {round_id} created by {creator[:12]}... ({mode.value}, stake {stake})")
        self._emit(RoundEventType.ROUND_CREATED, round_id, creator, {
            'mode': mode.value,
            'stake': stake,
            'deadline': round_.deadline,
            'target_participants': round_.target_participants,
        })
        if self.metrics:
            self.metrics.record_round_created()

        return self._snapshot(round_)

    async def join_round(
        self,
        round_id: int,
        address: str,
    ) -> Union[OpenRound, RoundRecord]:
        """
        Add a participant to an open round.

        A join that fills a capacity-locked round closes it before the lock
        is released; the terminal record is returned in that case.

        Raises:
            RoundNotFoundError: Unknown round
            RoundClosedError: Round is no longer OPEN or its deadline passed
            AlreadyJoinedError: Address already participates
            RoundFullError: Capacity already reached
            RoundValidationError: Address is empty
        """
        if not isinstance(address, str) or not address:
            raise RoundValidationError("Participant address is required", round_id)

        lock = self._locks.get(round_id)
        if lock is None:
            await self._raise_missing(round_id)

        # A closing round rejects joins without waiting for its lock
        pending = self._open_rounds.get(round_id)
        if pending is not None and not pending.is_open:
            raise RoundClosedError(f"Round {round_id} is closing", round_id)

        async with lock:
            round_ = self._open_rounds.get(round_id)
            if round_ is None or not round_.is_open:
                raise RoundClosedError(f"Round {round_id} is not open for joining", round_id)
            if round_.deadline_passed(self._clock()):
                raise RoundClosedError(f"Round {round_id} deadline has passed", round_id)
            if address in round_.participants:
                raise AlreadyJoinedError(f"{address} is already in round {round_id}", round_id)
            if round_.is_full():
                raise RoundFullError(f"Round {round_id} is full", round_id)

            round_.participants.append(address)
            round_.bank += stake_after_fee(round_.stake, round_.platform_fee_bps)

            logger.debug(f"{address[:12]}... joined round {round_id} ({round_.participant_count} participants)")
            self._emit(RoundEventType.ROUND_JOINED, round_id, address, {
                'stake': round_.stake,
                'participants': round_.participant_count,
            })
            if self.metrics:
                self.metrics.record_join()

            if round_.is_full():
                return await self._close_locked(round_, REASON_CAPACITY_REACHED)
            return self._snapshot(round_)

    async def check_round(self, round_id: int) -> Optional[RoundRecord]:
        """
        Close the round if its trigger fired.

        Returns:
            The terminal record if the round closed, else None
        """
        lock = self._locks.get(round_id)
        if lock is None:
            return None

        async with lock:
            round_ = self._open_rounds.get(round_id)
            if round_ is None or not round_.is_open:
                return None

            now = self._clock()
            reason = round_.trigger_reason(now)
            if reason:
                return await self._close_locked(round_, reason)
            self._warn_if_expiring(round_, now)
            return None

    async def check_rounds(self) -> List[RoundRecord]:
        """Check every open round once."""
        closed = []
        for round_id in sorted(self._open_rounds):
            record = await self.check_round(round_id)
            if record is not None:
                closed.append(record)
        return closed

    async def close_round(self, round_id: int, reason: str = REASON_MANUAL) -> RoundRecord:
        """
        Close a round now, regardless of its trigger.

        Raises:
            RoundNotFoundError: Unknown round
            RoundClosedError: Round was already closed
        """
        lock = self._locks.get(round_id)
        if lock is None:
            await self._raise_missing(round_id)

        async with lock:
            round_ = self._open_rounds.get(round_id)
            if round_ is None or not round_.is_open:
                raise RoundClosedError(f"Round {round_id} is already closed", round_id)
            return await self._close_locked(round_, reason)

    # ========================================================================
    # CLOSING (caller holds the round's lock)
    # ========================================================================

    async def _close_locked(self, round_: OpenRound, reason: str) -> RoundRecord:
        """
        Move an OPEN round to its terminal record.

        Shielded from cancellation so a round never stays ACTIVE; a slow
        entropy source or store is bounded by distribution_timeout instead.
        """
        with trio.CancelScope(shield=True):
            if round_.participant_count < self.config.min_participants:
                logger.info(
                    f"Round {round_.round_id} cancelled: {round_.participant_count} "
                    f"participant(s), {self.config.min_participants} required"
                )
                return await self._cancel_locked(round_, CANCEL_INSUFFICIENT_PARTICIPANTS)

            round_.status = RoundStatus.ACTIVE
            try:
                with trio.fail_after(self.config.distribution_timeout):
                    record = await self._distribute(round_, reason)
                    await self.store.save_round(record)
            except Exception as e:
                logger.error(f"Distribution of round {round_.round_id} failed: {type(e).__name__}: {e}")
                await self._discard_partial(round_.round_id)
                return await self._cancel_locked(
                    round_, CANCEL_DISTRIBUTION_ERROR, error_message=f"{type(e).__name__}: {e}"
                )

            self._remove(round_.round_id)
            logger.info(
                f"Round {record.round_id} distributed ({reason}): {record.participant_count} "
                f"participants, pool {record.total_pool}, block {record.proof.block_height}"
            )

            for entry in record.payouts:
                self._emit(RoundEventType.PAYOUT_RECEIVED, record.round_id, entry.address, {
                    'amount': entry.amount,
                    'profit': entry.profit,
                    'is_winner': entry.is_winner,
                    'mode': record.mode.value,
                })
            self._emit(RoundEventType.ROUND_DISTRIBUTED, record.round_id, None, {
                'participants': record.participant_count,
                'total_pool': record.total_pool,
                'bank': record.bank,
                'mode': record.mode.value,
                'reason': reason,
            })
            if self.metrics:
                self.metrics.record_distribution(record)
            return record

    async def _distribute(self, round_: OpenRound, reason: str) -> DistributedRound:
        block = await self.block_source.get_block()
        now = self._clock()
        seed = derive_round_seed(
            round_.round_id,
            round_.created_at,
            round_.participants,
            now,
            self.config.seed_time_bucket,
        )

        addresses = list(round_.participants)
        stakes = [round_.stake] * len(addresses)
        random_values = generate_random_values(seed, block.block_hash, addresses)
        result = calculate_distribution(stakes, random_values, round_.platform_fee_bps)

        check = verify_fairness_proof(
            seed, block.block_hash, addresses, stakes, list(result.payouts), round_.platform_fee_bps
        )
        if not check.is_valid:
            raise RuntimeError(f"Self-verification failed: {check.explanation}")

        return DistributedRound(
            round_id=round_.round_id,
            mode=round_.mode,
            creator=round_.creator,
            stake=round_.stake,
            platform_fee_bps=round_.platform_fee_bps,
            created_at=round_.created_at,
            completed_at=int(self._clock()),
            participants=tuple(addresses),
            bank=round_.bank,
            total_stakes=result.total_stakes,
            platform_fee=result.platform_fee,
            total_pool=result.total_pool,
            bonus_pool=result.bonus_pool,
            random_values=result.random_values,
            payouts=tuple(build_payout_entries(addresses, stakes, result.payouts)),
            proof=RandomnessProof(
                seed=seed,
                block_hash=block.block_hash,
                block_height=block.block_height,
                commit_hash=generate_commit_hash(seed, str(round_.round_id)),
                reveal_timestamp=int(now),
            ),
            formula=result.formula,
            close_reason=reason,
            deadline=round_.deadline,
            target_participants=round_.target_participants,
        )

    async def _discard_partial(self, round_id: int) -> None:
        """Drop a DistributedRound the backend kept despite a failed save."""
        try:
            raw = await self.store.get_raw_round(round_id)
            if raw is not None and raw.get('status') == RoundStatus.DISTRIBUTED.value:
                await self.store.discard_round(round_id)
        except Exception as e:
            logger.error(f"Could not discard partial record of round {round_id}: {e}")

    async def _cancel_locked(
        self,
        round_: OpenRound,
        reason: str,
        error_message: Optional[str] = None,
    ) -> CancelledRound:
        record = CancelledRound(
            round_id=round_.round_id,
            mode=round_.mode,
            creator=round_.creator,
            stake=round_.stake,
            platform_fee_bps=round_.platform_fee_bps,
            created_at=round_.created_at,
            cancelled_at=int(self._clock()),
            participants=tuple(round_.participants),
            bank=round_.bank,
            reason=reason,
            error_message=error_message,
            deadline=round_.deadline,
            target_participants=round_.target_participants,
        )
        round_.status = RoundStatus.CANCELLED
        self._remove(round_.round_id)

        try:
            await self.store.save_round(record)
        except Exception as e:
            logger.error(f"Could not persist cancellation of round {record.round_id}: {e}")

        for address in record.participants:
            self._emit(RoundEventType.ROUND_CANCELLED, record.round_id, address, {
                'reason': reason,
                'refund': record.stake,
            })
        if self.metrics:
            self.metrics.record_cancellation(reason)
        return record

    # ========================================================================
    # HELPERS
    # ========================================================================

    def _validate_new_round(
        self,
        creator: str,
        mode: Union[RoundMode, str],
        stake: int,
        deadline: Optional[int],
        target_participants: Optional[int],
        now: int,
    ) -> RoundMode:
        config = self.config
        if not isinstance(creator, str) or not creator:
            raise RoundValidationError("Creator address is required")
        if not isinstance(mode, RoundMode):
            try:
                mode = RoundMode(mode)
            except ValueError:
                raise RoundValidationError(f"Unknown round mode: {mode!r}")
        if not isinstance(stake, int) or isinstance(stake, bool):
            raise RoundValidationError(f"Stake must be an integer amount of nanotons, got {stake!r}")
        if stake < config.min_stake:
            raise RoundValidationError(f"Minimum stake is {config.min_stake} nanotons")
        if stake > config.max_stake:
            raise RoundValidationError(f"Maximum stake is {config.max_stake} nanotons")

        if mode == RoundMode.TIME_LOCKED:
            if target_participants is not None:
                raise RoundValidationError("target_participants is only valid for CAPACITY_LOCKED rounds")
            if not isinstance(deadline, int) or isinstance(deadline, bool):
                raise RoundValidationError("Deadline is required for time-locked rounds")
            if deadline < now + config.min_round_duration:
                raise RoundValidationError(
                    f"Minimum round duration is {config.min_round_duration} seconds"
                )
            if deadline > now + config.max_round_duration:
                raise RoundValidationError(
                    f"Maximum round duration is {config.max_round_duration} seconds"
                )
        else:
            if deadline is not None:
                raise RoundValidationError("deadline is only valid for TIME_LOCKED rounds")
            if not isinstance(target_participants, int) or isinstance(target_participants, bool):
                raise RoundValidationError("Target participants is required for capacity-locked rounds")
            if target_participants < max(2, config.min_participants):
                raise RoundValidationError(
                    f"Minimum participants is {max(2, config.min_participants)}"
                )
            if target_participants > config.max_participants:
                raise RoundValidationError(f"Maximum participants is {config.max_participants}")
        return mode

    async def _raise_missing(self, round_id: int) -> None:
        if await self.store.get_raw_round(round_id) is not None:
            raise RoundClosedError(f"Round {round_id} is already closed", round_id)
        raise RoundNotFoundError(f"Round {round_id} not found", round_id)

    def _warn_if_expiring(self, round_: OpenRound, now: float) -> None:
        if round_.mode != RoundMode.TIME_LOCKED or round_.expiry_warned:
            return
        remaining = round_.deadline - now
        if remaining > self.config.expiry_warning_seconds:
            return
        round_.expiry_warned = True
        for address in round_.participants:
            self._emit(RoundEventType.ROUND_EXPIRING_SOON, round_.round_id, address, {
                'seconds_left': int(remaining),
                'minutes_left': int(remaining // 60),
            })

    def _emit(self, event_type: RoundEventType, round_id: int, address: Optional[str], data: dict) -> None:
        self.events.emit(RoundEvent(
            event_type=event_type,
            round_id=round_id,
            address=address,
            data=data,
            timestamp=self._clock(),
        ))

    def _remove(self, round_id: int) -> None:
        self._open_rounds.pop(round_id, None)
        self._locks.pop(round_id, None)

    @staticmethod
    def _snapshot(round_: OpenRound) -> OpenRound:
        return replace(round_, participants=list(round_.participants))
