"""
Storage abstractions.

Integration Points:
- MetadataStorage -> PostgreSQL (principals, chores, assignments)
- CacheStorage -> Redis (revoked token IDs, single-use link proofs)

RowFilteredStorage lives in familypanel.storage.filtered and is imported
from there; it depends on the auth package.
"""

from familypanel.storage.base import (
    CacheStorage,
    Collections,
    MetadataStorage,
    StorageError,
    StorageProvider,
)
from familypanel.storage.local import create_local_storage

__all__ = [
    "CacheStorage",
    "Collections",
    "MetadataStorage",
    "StorageError",
    "StorageProvider",
    "create_local_storage",
]
