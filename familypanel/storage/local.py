"""
Local storage implementations for development and tests.

These are in-memory implementations that work without any external
services. Rows are copied on the way in and out so callers never hold a
reference into the store.
"""

from __future__ import annotations

import copy
import time
from datetime import datetime, timezone
from typing import Any, Callable

from familypanel.storage.base import (
    CacheStorage,
    MetadataStorage,
    StorageProvider,
)


# =============================================================================
# In-Memory Metadata Storage
# =============================================================================


def _matches(row: dict[str, Any], filters: dict[str, Any]) -> bool:
    """Equality on every filtered column, like a WHERE a = .. AND b = .."""
    return all(row.get(column) == value for column, value in filters.items())


class InMemoryMetadataStorage(MetadataStorage):
    """In-memory row storage for development."""

    def __init__(self):
        self._data: dict[str, dict[str, dict[str, Any]]] = {}

    async def save(self, collection: str, id: str, data: dict[str, Any]) -> None:
        self._data.setdefault(collection, {})[id] = {
            **copy.deepcopy(data),
            "_id": id,
            "_updated_at": datetime.now(timezone.utc).isoformat(),
        }

    async def get(self, collection: str, id: str) -> dict[str, Any] | None:
        row = self._data.get(collection, {}).get(id)
        return copy.deepcopy(row) if row is not None else None

    async def delete(self, collection: str, id: str) -> bool:
        return self._data.get(collection, {}).pop(id, None) is not None

    async def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        results = list(self._data.get(collection, {}).values())

        if filters:
            results = [row for row in results if _matches(row, filters)]

        return [copy.deepcopy(row) for row in results[offset:offset + limit]]

    async def update(self, collection: str, id: str, updates: dict[str, Any]) -> bool:
        if collection in self._data and id in self._data[collection]:
            # Build the new row first, then swap it in with one assignment
            row = {**self._data[collection][id], **copy.deepcopy(updates)}
            row["_updated_at"] = datetime.now(timezone.utc).isoformat()
            self._data[collection][id] = row
            return True
        return False


# =============================================================================
# In-Memory Cache Storage
# =============================================================================


class InMemoryCacheStorage(CacheStorage):
    """In-memory cache with per-key expiry, standing in for Redis."""

    SWEEP_INTERVAL_SECONDS = 60.0

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._cache: dict[str, tuple[Any, float | None]] = {}
        self._clock = clock
        self._next_sweep = clock() + self.SWEEP_INTERVAL_SECONDS

    def _live(self, entry: tuple[Any, float | None] | None) -> Any | None:
        """The entry's value, or None if absent or past its expiry."""
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            return None
        return value

    def _sweep(self) -> None:
        """Drop expired entries, at most once per interval."""
        now = self._clock()
        if now < self._next_sweep:
            return
        self._next_sweep = now + self.SWEEP_INTERVAL_SECONDS
        expired = [
            key for key, (_, expires_at) in self._cache.items()
            if expires_at is not None and now >= expires_at
        ]
        for key in expired:
            del self._cache[key]

    def _store(self, key: str, value: Any, ttl: int | None) -> None:
        self._sweep()
        expires_at = self._clock() + ttl if ttl else None
        self._cache[key] = (value, expires_at)

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        self._store(key, value, ttl)

    async def add(self, key: str, value: Any, ttl: int | None = None) -> bool:
        # No await between the check and the write, so this is atomic on the loop
        if self._live(self._cache.get(key)) is not None:
            return False
        self._store(key, value, ttl)
        return True

    async def get(self, key: str) -> Any | None:
        value = self._live(self._cache.get(key))
        if value is None:
            self._cache.pop(key, None)
        return value

    async def pop(self, key: str) -> Any | None:
        # Removal and read in one step; a second pop always misses
        return self._live(self._cache.pop(key, None))

    async def delete(self, key: str) -> bool:
        return self._cache.pop(key, None) is not None

    async def exists(self, key: str) -> bool:
        return await self.get(key) is not None


# =============================================================================
# Factory
# =============================================================================


def create_local_storage() -> StorageProvider:
    """Create a StorageProvider with in-memory implementations."""
    return StorageProvider(
        metadata=InMemoryMetadataStorage(),
        cache=InMemoryCacheStorage(),
    )
