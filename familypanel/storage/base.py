"""
Storage abstraction layer.

All persistence goes through these interfaces. This allows swapping
implementations (in-memory -> PostgreSQL, dict cache -> Redis)
without changing application code.

The raw interfaces here do NOT apply authorization. Request-scoped code
reaches rows through `RowFilteredStorage` (storage/filtered.py); only the
credential store and the token authority hold a raw handle.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel


# =============================================================================
# Storage Interfaces
# =============================================================================


class StorageError(Exception):
    """A backend failed (unreachable, driver error, corrupt row)."""


class MetadataStorage(ABC):
    """
    Storage for structured rows (principals, chores, assignments).

    Production Implementation: PostgreSQL
    Local Implementation: in-memory

    Every write is a single-row operation and atomic on its own.
    """

    @abstractmethod
    async def save(self, collection: str, id: str, data: dict[str, Any]) -> None:
        """Insert or replace a row."""
        pass

    @abstractmethod
    async def get(self, collection: str, id: str) -> dict[str, Any] | None:
        """Get a row by ID."""
        pass

    @abstractmethod
    async def delete(self, collection: str, id: str) -> bool:
        """Delete a row."""
        pass

    @abstractmethod
    async def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """Query rows with optional equality filters."""
        pass

    @abstractmethod
    async def update(self, collection: str, id: str, updates: dict[str, Any]) -> bool:
        """Partial update of a row."""
        pass


class CacheStorage(ABC):
    """
    Fast key-value cache for revoked token IDs and single-use proofs.

    Production Implementation: Redis
    Local Implementation: In-memory dict
    """

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        """Set a value with optional TTL in seconds."""
        pass

    @abstractmethod
    async def add(self, key: str, value: Any, ttl: int | None = None) -> bool:
        """Set only if the key is absent (SET NX). True if this call set it."""
        pass

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Get a value."""
        pass

    @abstractmethod
    async def pop(self, key: str) -> Any | None:
        """Get a value and delete it in one step (GETDEL)."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete a key."""
        pass

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Check if key exists."""
        pass


# =============================================================================
# Storage Provider (dependency injection container)
# =============================================================================


class StorageProvider(BaseModel):
    """
    Container for all storage backends.

    Initialize once at app startup with appropriate implementations.
    """

    model_config = {"arbitrary_types_allowed": True}

    metadata: MetadataStorage
    cache: CacheStorage


# =============================================================================
# Collection Names (for MetadataStorage)
# =============================================================================


class Collections:
    """Standard collection/table names."""

    USERS = "users"
    CHORES = "chores"
    CHORE_ASSIGNMENTS = "chore_assignments"
    INCENTIVE_TYPES = "incentive_types"
    INCENTIVE_LOGS = "incentive_logs"
    SCREEN_TIME_SESSIONS = "screen_time_sessions"
    FAMILIES = "families"
    FAMILY_MEMBERS = "family_members"

    # Rows owned by a principal, removed when the principal is deleted
    OWNED_BY_PRINCIPAL = (
        CHORE_ASSIGNMENTS,
        INCENTIVE_LOGS,
        SCREEN_TIME_SESSIONS,
        FAMILY_MEMBERS,
    )
