"""
fairpool/tests/test_storage.py

Tests for storage backends and the round record store.
"""

import json
import pytest
from unittest.mock import patch

from fairpool.protocol.rounds import CancelledRound, RoundMode
from fairpool.protocol.storage import (
    MemoryBackend,
    FileBackend,
    RoundStore,
    StorageError,
    ROUND_KEY_PREFIX,
)


def make_cancelled(round_id: int, reason: str = "insufficient_participants") -> CancelledRound:
    return CancelledRound(
        round_id=round_id,
        mode=RoundMode.TIME_LOCKED,
        creator="EQAlice",
        stake=1_000_000_000,
        platform_fee_bps=500,
        created_at=1_700_000_000,
        cancelled_at=1_700_003_600,
        participants=("EQAlice",),
        bank=950_000_000,
        reason=reason,
        deadline=1_700_003_600,
    )


class TestMemoryBackend:
    """Test MemoryBackend class."""

    @pytest.fixture
    def backend(self):
        return MemoryBackend()

    @pytest.mark.trio
    async def test_put_and_get(self, backend):
        """Test basic put and get."""
        assert await backend.put("key1", b"value1") is True
        assert await backend.get("key1") == b"value1"

    @pytest.mark.trio
    async def test_get_nonexistent(self, backend):
        assert await backend.get("nonexistent") is None

    @pytest.mark.trio
    async def test_delete(self, backend):
        await backend.put("key1", b"value1")
        assert await backend.delete("key1") is True
        assert await backend.get("key1") is None
        assert await backend.delete("key1") is False

    @pytest.mark.trio
    async def test_list_keys(self, backend):
        """Test listing keys by prefix."""
        await backend.put("prefix:key1", b"v1")
        await backend.put("prefix:key2", b"v2")
        await backend.put("other:key3", b"v3")

        assert sorted(await backend.list_keys("prefix:")) == ["prefix:key1", "prefix:key2"]
        assert len(await backend.list_keys()) == 3


class TestFileBackend:
    """Test FileBackend class."""

    @pytest.fixture
    def backend(self, tmp_path):
        return FileBackend(tmp_path)

    @pytest.mark.trio
    async def test_put_and_get(self, backend):
        await backend.put("fairpool:round:1", b"value1")
        assert await backend.get("fairpool:round:1") == b"value1"

    @pytest.mark.trio
    async def test_get_nonexistent(self, backend):
        assert await backend.get("nonexistent") is None

    @pytest.mark.trio
    async def test_delete(self, backend):
        await backend.put("key1", b"value1")
        assert await backend.delete("key1") is True
        assert await backend.get("key1") is None

    @pytest.mark.trio
    async def test_survives_restart(self, tmp_path):
        """A new backend on the same directory sees earlier writes."""
        await FileBackend(tmp_path).put("key1", b"value1")

        reopened = FileBackend(tmp_path)
        assert await reopened.get("key1") == b"value1"
        assert await reopened.list_keys() == ["key1"]

    @pytest.mark.trio
    async def test_failed_index_save_rolls_back(self, backend):
        """A write whose index cannot be saved leaves nothing behind."""
        with patch.object(backend, "_save_index", side_effect=OSError("disk full")):
            assert await backend.put("fairpool:round:1", b"value1") is False

        assert await backend.get("fairpool:round:1") is None
        assert await backend.list_keys() == []
        assert not backend._key_to_path("fairpool:round:1").exists()

    @pytest.mark.trio
    async def test_failed_overwrite_keeps_entry(self, backend):
        await backend.put("key1", b"value1")
        with patch.object(backend, "_save_index", side_effect=OSError("disk full")):
            assert await backend.put("key1", b"value2") is False
        assert await backend.list_keys() == ["key1"]

    @pytest.mark.trio
    async def test_corrupt_index_starts_empty(self, tmp_path):
        (tmp_path / "index.json").write_text("{not json")
        backend = FileBackend(tmp_path)
        assert await backend.list_keys() == []


class TestRoundStore:
    """Test RoundStore."""

    @pytest.fixture
    def store(self):
        return RoundStore(MemoryBackend())

    @pytest.mark.trio
    async def test_save_and_get(self, store):
        record = make_cancelled(1)
        await store.save_round(record)
        assert await store.get_round(1) == record

    @pytest.mark.trio
    async def test_records_written_once(self, store):
        """Terminal records are never overwritten."""
        await store.save_round(make_cancelled(1))
        with pytest.raises(StorageError):
            await store.save_round(make_cancelled(1, reason="distribution_error"))
        assert (await store.get_round(1)).reason == "insufficient_participants"

    @pytest.mark.trio
    async def test_missing_round(self, store):
        assert await store.get_round(5) is None
        assert await store.get_raw_round(5) is None

    @pytest.mark.trio
    async def test_raw_round(self, store):
        await store.save_round(make_cancelled(2))
        raw = await store.get_raw_round(2)
        assert raw['status'] == "CANCELLED"
        assert raw['participants'] == ["EQAlice"]

    @pytest.mark.trio
    async def test_corrupt_record(self, store):
        await store.backend.put(f"{ROUND_KEY_PREFIX}3", b"{broken")
        assert await store.get_round(3) is None
        assert await store.get_raw_round(3) is None

    @pytest.mark.trio
    async def test_history_newest_first(self, store):
        for round_id in (1, 3, 2):
            await store.save_round(make_cancelled(round_id))

        history = await store.get_history()
        assert [r.round_id for r in history] == [3, 2, 1]
        assert [r.round_id for r in await store.get_history(limit=2)] == [3, 2]
        assert await store.get_distributed() == []

    @pytest.mark.trio
    async def test_ids_sorted_numerically(self, store):
        for round_id in (2, 10, 1):
            await store.save_round(make_cancelled(round_id))
        assert await store.list_round_ids() == [1, 2, 10]
        assert await store.max_round_id() == 10

    @pytest.mark.trio
    async def test_empty_store(self, store):
        assert await store.max_round_id() == 0
        assert await store.get_history() == []

    @pytest.mark.trio
    async def test_json_is_stable(self, store):
        await store.save_round(make_cancelled(4))
        data = await store.backend.get(f"{ROUND_KEY_PREFIX}4")
        assert json.loads(data)["reason"] == "insufficient_participants"

    @pytest.mark.trio
    async def test_refused_write(self):
        class Refusing(MemoryBackend):
            async def put(self, key, value):
                return False

        store = RoundStore(Refusing())
        with pytest.raises(StorageError):
            await store.save_round(make_cancelled(1))

    @pytest.mark.trio
    async def test_file_backed_store(self, tmp_path):
        await RoundStore(FileBackend(tmp_path)).save_round(make_cancelled(1))
        reopened = RoundStore(FileBackend(tmp_path))
        assert (await reopened.get_round(1)).round_id == 1

    @pytest.mark.trio
    async def test_discard_round(self, store):
        """A discarded record frees the id for the cancellation record."""
        await store.save_round(make_cancelled(1, reason="distribution_error"))

        assert await store.discard_round(1) is True
        assert await store.get_round(1) is None
        assert await store.discard_round(1) is False

        await store.save_round(make_cancelled(1))
        assert (await store.get_round(1)).reason == "insufficient_participants"
