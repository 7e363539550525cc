"""
fairpool/protocol/events.py

Round event channel.

RoundManager publishes what happened to rounds on a trio memory channel;
notification and analytics consumers read from it at their own pace. Emitting
never blocks the lifecycle: if the buffer is full the event is dropped and
counted.

Usage:
    channel = RoundEventChannel()
    manager = RoundManager(events=channel)

    async with channel.open_receiver() as receiver:
        async for event in receiver:
            notify(event)
"""

import time
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import trio

from ..config import EVENT_BUFFER_SIZE

logger = logging.getLogger("fairpool.protocol.events")


class RoundEventType(Enum):
    """Kinds of round events."""
    ROUND_CREATED = "round_created"
    ROUND_JOINED = "round_joined"
    ROUND_EXPIRING_SOON = "round_expiring_soon"
    PAYOUT_RECEIVED = "payout_received"        # One per participant
    ROUND_DISTRIBUTED = "round_distributed"    # One per round
    ROUND_CANCELLED = "round_cancelled"        # One per participant


@dataclass
class RoundEvent:
    """Something that happened to a round, optionally for one address."""
    event_type: RoundEventType
    round_id: int
    address: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'event_type': self.event_type.value,
            'round_id': self.round_id,
            'address': self.address,
            'data': dict(self.data),
            'timestamp': self.timestamp,
        }


class RoundEventChannel:
    """Bounded, non-blocking fan-in of round events."""

    def __init__(self, max_buffer_size: int = EVENT_BUFFER_SIZE):
        self._send, self._receive = trio.open_memory_channel(max_buffer_size)
        self.emitted = 0
        self.dropped = 0

    def emit(self, event: RoundEvent) -> bool:
        """
        Queue an event without blocking.

        Returns:
            False if the event was dropped
        """
        try:
            self._send.send_nowait(event)
        except trio.WouldBlock:
            self.dropped += 1
            logger.warning(
                f"Event buffer full, dropped {event.event_type.value} for round {event.round_id}"
            )
            return False
        except (trio.ClosedResourceError, trio.BrokenResourceError):
            self.dropped += 1
            logger.warning(f"Event channel closed, dropped {event.event_type.value}")
            return False
        self.emitted += 1
        return True

    def open_receiver(self) -> trio.MemoryReceiveChannel:
        """A new receiving handle; use it as an async context manager."""
        return self._receive.clone()

    def drain(self) -> List[RoundEvent]:
        """Take every queued event without waiting."""
        events = []
        while True:
            try:
                events.append(self._receive.receive_nowait())
            except (trio.WouldBlock, trio.EndOfChannel):
                return events

    async def aclose(self) -> None:
        await self._send.aclose()
