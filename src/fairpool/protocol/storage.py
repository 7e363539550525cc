"""
fairpool/protocol/storage.py

Storage for terminal round records.

Backends store opaque bytes under string keys:
1. MemoryBackend - Fast, volatile (tests, single process)
2. FileBackend   - Local disk, survives restarts

RoundStore serializes DistributedRound / CancelledRound records as JSON on
top of a backend. A record is written once, when its round reaches a
terminal status, and never updated.
"""

import json
import time
import logging
import hashlib
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional

from .rounds import RoundRecord, DistributedRound, round_record_from_dict

logger = logging.getLogger("fairpool.protocol.storage")


# ============================================================================
# CONSTANTS
# ============================================================================

ROUND_KEY_PREFIX = "fairpool:round:"

DEFAULT_STORAGE_DIR = Path.home() / ".fairpool" / "rounds"


class StorageError(RuntimeError):
    """A record could not be persisted."""


# ============================================================================
# STORAGE BACKENDS
# ============================================================================

class StorageBackend(ABC):
    """Abstract base class for storage backends."""

    @abstractmethod
    async def get(self, key: str) -> Optional[bytes]:
        """Get a value by key."""
        pass

    @abstractmethod
    async def put(self, key: str, value: bytes) -> bool:
        """Store a value."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete a value."""
        pass

    @abstractmethod
    async def list_keys(self, prefix: str = "") -> List[str]:
        """List keys with optional prefix filter."""
        pass


class MemoryBackend(StorageBackend):
    """In-memory storage backend."""

    def __init__(self):
        self._data: Dict[str, bytes] = {}

    async def get(self, key: str) -> Optional[bytes]:
        return self._data.get(key)

    async def put(self, key: str, value: bytes) -> bool:
        self._data[key] = value
        return True

    async def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    async def list_keys(self, prefix: str = "") -> List[str]:
        return [key for key in self._data if key.startswith(prefix)]


class FileBackend(StorageBackend):
    """Local file storage backend, one file per key plus an index."""

    def __init__(self, storage_dir: Path = None):
        self.storage_dir = Path(storage_dir) if storage_dir else DEFAULT_STORAGE_DIR
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        self._index_file = self.storage_dir / "index.json"
        self._index: Dict[str, dict] = self._load_index()

    def _load_index(self) -> Dict[str, dict]:
        """Load the key index from disk."""
        if self._index_file.exists():
            try:
                with open(self._index_file, "r") as f:
                    return json.load(f)
            except Exception as e:
                logger.warning(f"Failed to load index: {e}")
        return {}

    def _save_index(self) -> None:
        with open(self._index_file, "w") as f:
            json.dump(self._index, f)

    def _key_to_path(self, key: str) -> Path:
        """Convert key to file path."""
        # Hash keeps special characters out of file names
        hash_name = hashlib.sha256(key.encode()).hexdigest()[:32]
        return self.storage_dir / f"{hash_name}.json"

    async def get(self, key: str) -> Optional[bytes]:
        if key not in self._index:
            return None

        path = self._key_to_path(key)
        if path.exists():
            try:
                return path.read_bytes()
            except Exception as e:
                logger.error(f"Failed to read {key}: {e}")
        return None

    async def put(self, key: str, value: bytes) -> bool:
        """Store a value; a failed write leaves neither file nor index entry behind."""
        path = self._key_to_path(key)
        previous = self._index.get(key)
        try:
            path.write_bytes(value)
            self._index[key] = {
                "path": path.name,
                "written_at": time.time(),
            }
            self._save_index()
            return True
        except Exception as e:
            logger.error(f"Failed to write {key}: {e}")
            if previous is not None:
                self._index[key] = previous
                return False
            self._index.pop(key, None)
            try:
                path.unlink(missing_ok=True)
            except OSError as unlink_error:
                logger.error(f"Failed to remove partial file for {key}: {unlink_error}")
            return False

    async def delete(self, key: str) -> bool:
        if key not in self._index:
            return False

        path = self._key_to_path(key)
        try:
            if path.exists():
                path.unlink()
            del self._index[key]
            self._save_index()
            return True
        except Exception as e:
            logger.error(f"Failed to delete {key}: {e}")
            return False

    async def list_keys(self, prefix: str = "") -> List[str]:
        return [key for key in self._index if key.startswith(prefix)]


# ============================================================================
# ROUND STORE
# ============================================================================

class RoundStore:
    """
    Persists terminal round records.

    Usage:
        store = RoundStore(FileBackend(Path("/var/lib/fairpool")))
        await store.save_round(record)
        history = await store.get_history()
    """

    def __init__(self, backend: Optional[StorageBackend] = None):
        self.backend = backend or MemoryBackend()

    @staticmethod
    def _make_key(round_id: int) -> str:
        return f"{ROUND_KEY_PREFIX}{round_id}"

    async def save_round(self, record: RoundRecord) -> None:
        """
        Persist a terminal record.

        Raises:
            StorageError: If the round already has a record or the backend
                refused the write
        """
        key = self._make_key(record.round_id)
        if await self.backend.get(key) is not None:
            raise StorageError(f"Round {record.round_id} already has a terminal record")

        data = json.dumps(record.to_dict(), sort_keys=True).encode("utf-8")
        if not await self.backend.put(key, data):
            raise StorageError(f"Backend refused record for round {record.round_id}")
        logger.debug(f"Saved round {record.round_id} ({record.status.value})")

    async def discard_round(self, round_id: int) -> bool:
        """
        Remove a record left behind by a write that reported failure.

        Only RoundManager calls this, while it still holds the round's lock
        and before any other record for the round exists.
        """
        removed = await self.backend.delete(self._make_key(round_id))
        if removed:
            logger.warning(f"Discarded partial record for round {round_id}")
        return removed

    async def get_round(self, round_id: int) -> Optional[RoundRecord]:
        """Load a record, or None if missing or unreadable."""
        data = await self.backend.get(self._make_key(round_id))
        if data is None:
            return None
        try:
            return round_record_from_dict(json.loads(data.decode("utf-8")))
        except Exception as e:
            logger.error(f"Corrupt record for round {round_id}: {e}")
            return None

    async def get_raw_round(self, round_id: int) -> Optional[dict]:
        """Load a record as a plain dict, without rebuilding it."""
        data = await self.backend.get(self._make_key(round_id))
        if data is None:
            return None
        try:
            return json.loads(data.decode("utf-8"))
        except ValueError as e:
            logger.error(f"Corrupt record for round {round_id}: {e}")
            return None

    async def list_round_ids(self) -> List[int]:
        ids = []
        for key in await self.backend.list_keys(ROUND_KEY_PREFIX):
            try:
                ids.append(int(key[len(ROUND_KEY_PREFIX):]))
            except ValueError:
                logger.warning(f"Ignoring unexpected key {key}")
        return sorted(ids)

    async def get_history(self, limit: Optional[int] = None) -> List[RoundRecord]:
        """Terminal records, newest round first."""
        records = []
        for round_id in reversed(await self.list_round_ids()):
            record = await self.get_round(round_id)
            if record is not None:
                records.append(record)
            if limit is not None and len(records) >= limit:
                break
        return records

    async def get_distributed(self) -> List[DistributedRound]:
        return [r for r in await self.get_history() if isinstance(r, DistributedRound)]

    async def max_round_id(self) -> int:
        ids = await self.list_round_ids()
        return ids[-1] if ids else 0
