"""
Shared fixtures: settings, an in-memory store with the demo household, and
the auth services built on top of it.
"""

import asyncio
from typing import Any

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from familypanel.api.app import create_app
from familypanel.auth.credentials import CredentialStore
from familypanel.auth.jwt import TokenAuthority
from familypanel.auth.policies import PolicyEngine
from familypanel.auth.rules import HOUSEHOLD_POLICIES
from familypanel.auth.sessions import SessionIssuer
from familypanel.config import Settings
from familypanel.seed import seed_household
from familypanel.storage import StorageProvider
from familypanel.storage.local import InMemoryCacheStorage, InMemoryMetadataStorage

TEST_SECRET = "test-secret-key-long-enough-for-hs256-signing"


# =============================================================================
# Store doubles
# =============================================================================


class CountingMetadataStorage(InMemoryMetadataStorage):
    """In-memory store that records every call made to it."""

    def __init__(self):
        super().__init__()
        self.calls: list[tuple[str, str]] = []

    def reset_calls(self) -> None:
        self.calls.clear()

    async def save(self, collection: str, id: str, data: dict[str, Any]) -> None:
        self.calls.append(("save", collection))
        await super().save(collection, id, data)

    async def get(self, collection: str, id: str) -> dict[str, Any] | None:
        self.calls.append(("get", collection))
        return await super().get(collection, id)

    async def delete(self, collection: str, id: str) -> bool:
        self.calls.append(("delete", collection))
        return await super().delete(collection, id)

    async def query(self, collection, filters=None, limit=100, offset=0):
        self.calls.append(("query", collection))
        return await super().query(collection, filters, limit, offset)

    async def update(self, collection: str, id: str, updates: dict[str, Any]) -> bool:
        self.calls.append(("update", collection))
        return await super().update(collection, id, updates)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def settings():
    """Settings isolated from the environment's .env file."""
    return Settings(
        _env_file=None,
        environment="test",
        jwt_secret_key=TEST_SECRET,
        seed_demo_household=False,
        store_timeout_seconds=1.0,
        issue_timeout_seconds=1.0,
        sentry_dsn="",
    )


@pytest.fixture
def storage():
    """Fresh in-memory storage whose metadata store counts calls."""
    return StorageProvider(metadata=CountingMetadataStorage(), cache=InMemoryCacheStorage())


@pytest.fixture
def credentials(storage, settings):
    return CredentialStore(storage.metadata, timeout=settings.store_timeout_seconds)


@pytest.fixture
def authority(storage, credentials, settings):
    return TokenAuthority(storage.cache, credentials, settings)


@pytest.fixture
def issuer(credentials, authority, settings):
    return SessionIssuer(credentials, authority, settings)


@pytest.fixture
def engine():
    return PolicyEngine(HOUSEHOLD_POLICIES)


@pytest_asyncio.fixture
async def household(credentials, storage):
    """The demo household, seeded into the store. Call counts start at zero."""
    seeded = await seed_household(credentials, storage.metadata)
    storage.metadata.reset_calls()
    return seeded


@pytest.fixture
def seeded(credentials, storage):
    """The demo household, seeded outside any event loop (for TestClient tests)."""
    return asyncio.run(seed_household(credentials, storage.metadata))


@pytest.fixture
def app(settings, storage, seeded):
    """The API over the pre-seeded store."""
    return create_app(settings=settings, storage=storage)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client
