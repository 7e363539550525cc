"""
fairpool/tests/test_events.py

Tests for the round event channel.
"""

import pytest
import trio

from fairpool.protocol.events import RoundEvent, RoundEventChannel, RoundEventType


def make_event(round_id: int = 1, address: str = "EQAlice") -> RoundEvent:
    return RoundEvent(
        event_type=RoundEventType.PAYOUT_RECEIVED,
        round_id=round_id,
        address=address,
        data={'amount': 42},
        timestamp=1_700_000_000,
    )


class TestRoundEvent:
    """Test RoundEvent."""

    def test_to_dict(self):
        data = make_event().to_dict()
        assert data['event_type'] == "payout_received"
        assert data['round_id'] == 1
        assert data['address'] == "EQAlice"
        assert data['data'] == {'amount': 42}


class TestRoundEventChannel:
    """Test RoundEventChannel."""

    @pytest.mark.trio
    async def test_emit_and_drain(self):
        channel = RoundEventChannel()
        assert channel.emit(make_event(1))
        assert channel.emit(make_event(2))

        events = channel.drain()
        assert [e.round_id for e in events] == [1, 2]
        assert channel.drain() == []
        assert channel.emitted == 2

    @pytest.mark.trio
    async def test_full_buffer_drops(self):
        """Emitting never blocks; overflow is counted."""
        channel = RoundEventChannel(max_buffer_size=2)
        results = [channel.emit(make_event(i)) for i in range(3)]

        assert results == [True, True, False]
        assert channel.dropped == 1
        assert len(channel.drain()) == 2

    @pytest.mark.trio
    async def test_emit_after_close(self):
        channel = RoundEventChannel()
        await channel.aclose()
        assert channel.emit(make_event()) is False
        assert channel.dropped == 1

    @pytest.mark.trio
    async def test_receiver(self):
        """Consumers read events as an async iterator."""
        channel = RoundEventChannel()
        received = []

        async def consume():
            async with channel.open_receiver() as receiver:
                async for event in receiver:
                    received.append(event.round_id)

        async with trio.open_nursery() as nursery:
            nursery.start_soon(consume)
            channel.emit(make_event(1))
            channel.emit(make_event(2))
            await channel.aclose()

        assert received == [1, 2]
