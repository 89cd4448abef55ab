"""
Tests for the credential store.

Core principle: a failed verification is a value (Invalid), never an
exception, and it looks the same whatever check failed.
"""

import asyncio

import pytest

from familypanel.auth.credentials import (
    CredentialStore,
    Invalid,
    InvalidReason,
    hash_password,
    is_valid_pin,
    verify_password,
)
from familypanel.auth.errors import PinFormatError, ServiceUnavailableError, ValidationError
from familypanel.core.models import Principal, Role
from familypanel.seed import PARENT_EMAIL, PARENT_PASSWORD
from familypanel.storage.base import Collections, StorageError
from familypanel.storage.local import InMemoryMetadataStorage

MALFORMED_PINS = ["", "123", "12345", "abcd", "12a4", " 1234", "1234\n", "１２３４", "-123"]


# =============================================================================
# Store doubles
# =============================================================================


class SlowMetadataStorage(InMemoryMetadataStorage):
    async def get(self, collection, id):
        await asyncio.sleep(1)
        return await super().get(collection, id)


class BrokenMetadataStorage(InMemoryMetadataStorage):
    async def get(self, collection, id):
        raise StorageError("connection refused")

    async def query(self, collection, filters=None, limit=100, offset=0):
        raise StorageError("connection refused")


# =============================================================================
# Hashing
# =============================================================================


class TestHashing:

    def test_hash_round_trip(self):
        hashed = hash_password("hunter22")
        assert verify_password("hunter22", hashed)
        assert not verify_password("hunter23", hashed)

    def test_hashes_are_salted(self):
        assert hash_password("1234") != hash_password("1234")

    def test_malformed_hash_does_not_verify(self):
        assert not verify_password("1234", "not-a-hash")

    @pytest.mark.parametrize("pin", ["0000", "1234", "9999", "0420"])
    def test_valid_pins(self, pin):
        assert is_valid_pin(pin)

    @pytest.mark.parametrize("pin", MALFORMED_PINS + [None, 1234])
    def test_invalid_pins(self, pin):
        assert not is_valid_pin(pin)


# =============================================================================
# Password verification
# =============================================================================


class TestVerifyPassword:

    @pytest.mark.asyncio
    async def test_correct_password(self, credentials, household):
        result = await credentials.verify_password(PARENT_EMAIL, PARENT_PASSWORD)
        assert isinstance(result, Principal)
        assert result.id == household.parent.id

    @pytest.mark.asyncio
    async def test_email_is_case_insensitive(self, credentials, household):
        result = await credentials.verify_password("  Parent@Example.COM ", PARENT_PASSWORD)
        assert isinstance(result, Principal)

    @pytest.mark.asyncio
    async def test_wrong_password_is_invalid(self, credentials, household):
        result = await credentials.verify_password(PARENT_EMAIL, "wrong-password")
        assert result == Invalid(InvalidReason.BAD_SECRET)
        assert not result

    @pytest.mark.asyncio
    async def test_unknown_email_has_same_shape_as_wrong_password(self, credentials, household):
        unknown = await credentials.verify_password("nobody@example.com", PARENT_PASSWORD)
        wrong = await credentials.verify_password(PARENT_EMAIL, "wrong-password")

        assert type(unknown) is type(wrong) is Invalid
        assert unknown.reason == InvalidReason.UNKNOWN_IDENTITY

    @pytest.mark.asyncio
    async def test_kid_has_no_password(self, credentials, household):
        result = await credentials.verify_password("kid1@example.com", "1234")
        assert result == Invalid(InvalidReason.NO_CREDENTIAL)


# =============================================================================
# PIN verification
# =============================================================================


class TestVerifyPin:

    @pytest.mark.asyncio
    async def test_correct_pin(self, credentials, household):
        alice = household.kids[0]
        result = await credentials.verify_pin(alice.id, "1234")
        assert isinstance(result, Principal)
        assert result.id == alice.id
        assert result.role == Role.KID

    @pytest.mark.asyncio
    async def test_wrong_pin(self, credentials, household):
        result = await credentials.verify_pin(household.kids[0].id, "9999")
        assert result == Invalid(InvalidReason.BAD_SECRET)

    @pytest.mark.asyncio
    async def test_unknown_principal(self, credentials, household):
        result = await credentials.verify_pin("usr_nobody", "1234")
        assert result == Invalid(InvalidReason.UNKNOWN_IDENTITY)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("pin", MALFORMED_PINS)
    async def test_malformed_pin_never_touches_store(self, credentials, storage, household, pin):
        with pytest.raises(PinFormatError):
            await credentials.verify_pin(household.kids[0].id, pin)
        assert storage.metadata.calls == []

    @pytest.mark.asyncio
    async def test_parent_never_authenticates_by_pin(self, credentials, storage, household):
        parent = household.parent
        # Even with a PIN hash that matches
        await storage.metadata.update(Collections.USERS, parent.id, {"pin_hash": hash_password("4321")})

        result = await credentials.verify_pin(parent.id, "4321")
        assert result == Invalid(InvalidReason.WRONG_ROLE)

    @pytest.mark.asyncio
    async def test_wrong_role_same_shape_as_wrong_pin(self, credentials, household):
        wrong_role = await credentials.verify_pin(household.parent.id, "1234")
        wrong_pin = await credentials.verify_pin(household.kids[0].id, "0000")
        assert type(wrong_role) is type(wrong_pin) is Invalid

    @pytest.mark.asyncio
    async def test_kid_without_pin(self, credentials):
        kid = await credentials.create_principal("New Kid", "new@example.com", Role.KID)
        result = await credentials.verify_pin(kid.id, "1234")
        assert result == Invalid(InvalidReason.NO_CREDENTIAL)


# =============================================================================
# Setting PINs
# =============================================================================


class TestSetPin:

    @pytest.mark.asyncio
    async def test_set_pin_replaces_old_pin(self, credentials, household):
        bob = household.kids[1]
        await credentials.set_pin(bob.id, "2468")

        assert isinstance(await credentials.verify_pin(bob.id, "2468"), Principal)
        assert not await credentials.verify_pin(bob.id, "5678")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("pin", MALFORMED_PINS)
    async def test_malformed_pin_rejected_before_store(self, credentials, storage, household, pin):
        with pytest.raises(PinFormatError) as exc_info:
            await credentials.set_pin(household.kids[1].id, pin)
        assert exc_info.value.status_code == 400
        assert storage.metadata.calls == []

    @pytest.mark.asyncio
    async def test_parent_cannot_get_a_pin(self, credentials, household):
        with pytest.raises(ValidationError):
            await credentials.set_pin(household.parent.id, "1234")

    @pytest.mark.asyncio
    async def test_unknown_principal(self, credentials, household):
        with pytest.raises(ValidationError):
            await credentials.set_pin("usr_nobody", "1234")

    @pytest.mark.asyncio
    async def test_concurrent_set_pin_last_write_wins(self, credentials, household):
        alice = household.kids[0]

        await asyncio.gather(
            credentials.set_pin(alice.id, "1111"),
            credentials.set_pin(alice.id, "2222"),
        )

        first = await credentials.verify_pin(alice.id, "1111")
        second = await credentials.verify_pin(alice.id, "2222")
        # Exactly one of the two writes survives, intact
        assert bool(first) != bool(second)


# =============================================================================
# Administration
# =============================================================================


class TestAdministration:

    @pytest.mark.asyncio
    async def test_lookup_role(self, credentials, household):
        assert await credentials.lookup_role(household.parent.id) == Role.PARENT
        assert await credentials.lookup_role(household.kids[0].id) == Role.KID
        assert await credentials.lookup_role("usr_nobody") is None

    @pytest.mark.asyncio
    async def test_lookup_role_reads_only_users(self, credentials, storage, household):
        await credentials.lookup_role(household.kids[0].id)
        assert storage.metadata.calls == [("get", Collections.USERS)]

    @pytest.mark.asyncio
    async def test_duplicate_email_rejected(self, credentials, household):
        with pytest.raises(ValidationError):
            await credentials.create_principal("Again", "PARENT@example.com", Role.PARENT, password="x" * 12)

    @pytest.mark.asyncio
    async def test_parent_needs_password(self, credentials):
        with pytest.raises(ValidationError):
            await credentials.create_principal("No Password", "np@example.com", Role.PARENT)

    @pytest.mark.asyncio
    async def test_set_role(self, credentials, household):
        bob = household.kids[1]
        assert await credentials.set_role(bob.id, Role.PARENT)
        assert await credentials.lookup_role(bob.id) == Role.PARENT

    @pytest.mark.asyncio
    async def test_delete_cascades_to_owned_rows(self, credentials, storage, household):
        alice = household.kids[0]
        assert await credentials.delete_principal(alice.id)

        assert await credentials.get_principal(alice.id) is None
        remaining = await storage.metadata.query(Collections.CHORE_ASSIGNMENTS, limit=1000)
        assert remaining
        assert all(row["user_id"] != alice.id for row in remaining)


# =============================================================================
# Infrastructure failures
# =============================================================================


class TestInfrastructureFailures:

    @pytest.mark.asyncio
    async def test_timeout_is_service_unavailable_not_invalid(self):
        store = CredentialStore(SlowMetadataStorage(), timeout=0.05)
        with pytest.raises(ServiceUnavailableError) as exc_info:
            await store.verify_pin("usr_alice", "1234")
        assert exc_info.value.status_code == 500
        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_store_error_is_service_unavailable(self):
        store = CredentialStore(BrokenMetadataStorage(), timeout=1.0)
        with pytest.raises(ServiceUnavailableError) as exc_info:
            await store.verify_password(PARENT_EMAIL, PARENT_PASSWORD)
        # Driver text stays out of the client-facing body
        assert "connection refused" not in str(exc_info.value.to_dict())
