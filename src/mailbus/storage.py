"""
Key-value storage for the mailbox engine.

The engine reads and writes byte-string keys through a Storage handle that a
StorageBackend hands out per transaction. Everything written inside
`async with backend.transaction() as storage:` is committed when the block
exits normally and discarded when it raises.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncContextManager, AsyncIterator, Dict, Optional, Protocol

logger = logging.getLogger(__name__)

# Marks a key removed inside a transaction that has not been committed yet.
_REMOVED = object()


class Storage(Protocol):
    """Byte-keyed store as seen from inside one transaction."""

    async def get(self, key: bytes) -> Optional[bytes]:
        """Return the value for key, or None if absent."""

    async def set(self, key: bytes, value: bytes) -> None:
        """Insert or replace the value for key."""

    async def remove(self, key: bytes) -> None:
        """Delete key; a no-op when absent."""


class StorageBackend(Protocol):
    """Protocol for storage backends (in memory, PostgreSQL)."""

    def transaction(self) -> AsyncContextManager[Storage]:
        """Open a transaction; commit on clean exit, roll back on exception."""


def _namespace(prefix: bytes) -> bytes:
    """Length-prefix a namespace so that no two namespaces can share keys."""
    if len(prefix) > 0xFFFF:
        raise ValueError("namespace too long")
    return len(prefix).to_bytes(2, "big") + prefix


class PrefixedStorage:
    """
    Storage view that keeps all keys under one namespace.

    Keys are stored as [len(prefix):2 BE][prefix][key].
    """

    def __init__(self, prefix: bytes, storage: Storage) -> None:
        self._prefix = _namespace(prefix)
        self._storage = storage

    async def get(self, key: bytes) -> Optional[bytes]:
        return await self._storage.get(self._prefix + key)

    async def set(self, key: bytes, value: bytes) -> None:
        await self._storage.set(self._prefix + key, value)

    async def remove(self, key: bytes) -> None:
        await self._storage.remove(self._prefix + key)


class _MemoryTransaction:
    """Write buffer over a MemoryBackend; reads see the buffered writes."""

    def __init__(self, data: Dict[bytes, bytes]) -> None:
        self._data = data
        self._writes: Dict[bytes, object] = {}

    async def get(self, key: bytes) -> Optional[bytes]:
        if key in self._writes:
            value = self._writes[key]
            return None if value is _REMOVED else value  # type: ignore[return-value]
        return self._data.get(key)

    async def set(self, key: bytes, value: bytes) -> None:
        self._writes[key] = bytes(value)

    async def remove(self, key: bytes) -> None:
        self._writes[key] = _REMOVED

    def commit(self) -> int:
        for key, value in self._writes.items():
            if value is _REMOVED:
                self._data.pop(key, None)
            else:
                self._data[key] = value  # type: ignore[assignment]
        count = len(self._writes)
        self._writes.clear()
        return count


class MemoryBackend:
    """
    In-process storage backend.

    Useful for tests and for servers that do not need messages to survive a
    restart.
    """

    def __init__(self) -> None:
        self._data: Dict[bytes, bytes] = {}

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Storage]:
        txn = _MemoryTransaction(self._data)
        yield txn
        count = txn.commit()
        logger.debug("memory storage: committed %d writes", count)

    def snapshot(self) -> Dict[bytes, bytes]:
        """Return a copy of every committed key/value pair."""
        return dict(self._data)

    def __len__(self) -> int:
        return len(self._data)
