# =============================================================================
# Credential Store
# =============================================================================
#
# Holds principal records and verifies presented credentials:
#   - Password hashing (parents) and PIN hashing (kids)
#   - verify_password / verify_pin -> Principal | Invalid
#   - set_pin (kids only)
#   - lookup_role, the one privileged read the session validator uses
#
# This store reads the raw MetadataStorage. It is the narrow privileged
# path; nothing here goes through the policy engine, and the policy engine
# never calls back into here.
#
# =============================================================================

from __future__ import annotations

import asyncio
import hashlib
import logging
import re
import secrets
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Any, Awaitable, TypeVar

from familypanel.auth.capabilities import Role, parse_role
from familypanel.auth.errors import (
    PinFormatError,
    ServiceUnavailableError,
    ValidationError,
)
from familypanel.config import get_settings
from familypanel.core.models import Principal
from familypanel.core.utils import utc_now
from familypanel.storage.base import Collections, MetadataStorage, StorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")

PIN_PATTERN = re.compile(r"^[0-9]{4}$")

HASH_ITERATIONS = 100_000


# =============================================================================
# Hashing
# =============================================================================

def hash_password(password: str) -> str:
    """
    Hash a password (or PIN) using PBKDF2-SHA256.

    Returns: salt:hash format string
    """
    salt = secrets.token_hex(32)
    hash_bytes = hashlib.pbkdf2_hmac(
        'sha256',
        password.encode('utf-8'),
        salt.encode('utf-8'),
        iterations=HASH_ITERATIONS,
    )
    return f"{salt}:{hash_bytes.hex()}"


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password (or PIN) against its hash."""
    try:
        salt, stored_hash = password_hash.split(':')
        hash_bytes = hashlib.pbkdf2_hmac(
            'sha256',
            password.encode('utf-8'),
            salt.encode('utf-8'),
            iterations=HASH_ITERATIONS,
        )
        return secrets.compare_digest(hash_bytes.hex(), stored_hash)
    except (ValueError, AttributeError):
        return False


@lru_cache
def _dummy_hash() -> str:
    # Compared against when the identity is unknown, so a miss costs the
    # same as a wrong secret
    return hash_password(secrets.token_hex(16))


def is_valid_pin(pin: Any) -> bool:
    return isinstance(pin, str) and PIN_PATTERN.fullmatch(pin) is not None


def check_pin_format(pin: Any) -> str:
    """Return the pin unchanged, or raise PinFormatError."""
    if not is_valid_pin(pin):
        raise PinFormatError()
    return pin


# =============================================================================
# Verification results
# =============================================================================

class InvalidReason(str, Enum):
    """Why a verification failed. Logged, never shown to the client."""

    UNKNOWN_IDENTITY = "unknown_identity"
    BAD_SECRET = "bad_secret"
    WRONG_ROLE = "wrong_role"
    NO_CREDENTIAL = "no_credential"


@dataclass(frozen=True)
class Invalid:
    """A failed verification. Falsy, so `if not result:` reads naturally."""

    reason: InvalidReason

    def __bool__(self) -> bool:
        return False


# =============================================================================
# Store
# =============================================================================

class CredentialStore:
    """Principal records plus credential verification."""

    def __init__(self, metadata: MetadataStorage, timeout: float | None = None):
        self.metadata = metadata
        self.timeout = timeout if timeout is not None else get_settings().store_timeout_seconds

    async def _bounded(self, operation: Awaitable[T], what: str) -> T:
        """Run one store call under the timeout; backend failures become 500s."""
        try:
            return await asyncio.wait_for(operation, timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error(f"Credential store timed out during {what} after {self.timeout}s")
            raise ServiceUnavailableError(f"{what} timed out")
        except (StorageError, ConnectionError, OSError) as e:
            logger.exception(f"Credential store failed during {what}")
            raise ServiceUnavailableError(f"{what} failed: {e}") from e

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    async def get_principal(self, principal_id: str) -> Principal | None:
        """Get principal by ID."""
        row = await self._bounded(
            self.metadata.get(Collections.USERS, principal_id), "principal lookup"
        )
        return Principal.model_validate(row) if row else None

    async def get_principal_by_email(self, email: str) -> Principal | None:
        """Get principal by email (case-insensitive)."""
        rows = await self._bounded(
            self.metadata.query(Collections.USERS, {"email": email.strip().lower()}, limit=1),
            "email lookup",
        )
        return Principal.model_validate(rows[0]) if rows else None

    async def lookup_role(self, principal_id: str) -> Role | None:
        """
        Current role of a principal, read straight from the raw store.

        This is the only role lookup outside the session token. It exists
        for the session validator to revalidate a token's role claim and
        must not be used to build policy predicates.
        """
        row = await self._bounded(
            self.metadata.get(Collections.USERS, principal_id), "role lookup"
        )
        return parse_role(row.get("role")) if row else None

    # -------------------------------------------------------------------------
    # Verification
    # -------------------------------------------------------------------------

    async def verify_password(self, email: str, password: str) -> Principal | Invalid:
        """Authenticate by email and password."""
        principal = await self.get_principal_by_email(email)

        if principal is None:
            verify_password(password, _dummy_hash())
            return Invalid(InvalidReason.UNKNOWN_IDENTITY)

        if not principal.password_hash:
            verify_password(password, _dummy_hash())
            return Invalid(InvalidReason.NO_CREDENTIAL)

        if not verify_password(password, principal.password_hash):
            return Invalid(InvalidReason.BAD_SECRET)

        return principal

    async def verify_pin(self, principal_id: str, pin: str) -> Principal | Invalid:
        """
        Authenticate a kid by principal ID and 4-digit PIN.

        The format check happens before any store access. A non-kid
        principal always fails, whatever PIN hash it may carry.
        """
        check_pin_format(pin)
        if not principal_id:
            raise ValidationError("Principal ID is required")

        principal = await self.get_principal(principal_id)

        if principal is None:
            verify_password(pin, _dummy_hash())
            return Invalid(InvalidReason.UNKNOWN_IDENTITY)

        if principal.role != Role.KID:
            verify_password(pin, _dummy_hash())
            return Invalid(InvalidReason.WRONG_ROLE)

        if not principal.pin_hash:
            verify_password(pin, _dummy_hash())
            return Invalid(InvalidReason.NO_CREDENTIAL)

        if not verify_password(pin, principal.pin_hash):
            return Invalid(InvalidReason.BAD_SECRET)

        return principal

    # -------------------------------------------------------------------------
    # Mutations (single-row writes)
    # -------------------------------------------------------------------------

    async def set_pin(self, principal_id: str, pin: str) -> None:
        """Hash and store a kid's PIN. Concurrent calls: last write wins."""
        check_pin_format(pin)

        principal = await self.get_principal(principal_id)
        if principal is None:
            raise ValidationError("Unknown principal")
        if principal.role != Role.KID:
            raise ValidationError("PIN can only be set for kid accounts")

        updates = {
            "pin_hash": hash_password(pin),
            "updated_at": utc_now().isoformat(),
        }
        await self._bounded(
            self.metadata.update(Collections.USERS, principal_id, updates), "PIN update"
        )
        logger.info(f"PIN updated for {principal_id}")

    async def create_principal(
        self,
        name: str,
        email: str,
        role: Role,
        password: str | None = None,
        pin: str | None = None,
        principal_id: str | None = None,
    ) -> Principal:
        """Provision a parent (with password) or a kid (optionally with PIN)."""
        if role == Role.PARENT and not password:
            raise ValidationError("Parent accounts need a password")
        if role == Role.KID and password:
            raise ValidationError("Kid accounts sign in with a PIN, not a password")
        if pin is not None:
            if role != Role.KID:
                raise ValidationError("PIN can only be set for kid accounts")
            check_pin_format(pin)

        email = email.strip().lower()
        if await self.get_principal_by_email(email):
            raise ValidationError("Email already registered")

        fields: dict[str, Any] = {
            "name": name,
            "email": email,
            "role": role,
            "password_hash": hash_password(password) if password else None,
            "pin_hash": hash_password(pin) if pin else None,
        }
        if principal_id:
            fields["id"] = principal_id
        principal = Principal(**fields)

        await self._bounded(
            self.metadata.save(Collections.USERS, principal.id, principal.model_dump(mode="json")),
            "principal create",
        )
        logger.info(f"Created {role.value} principal {principal.id}")
        return principal

    async def set_role(self, principal_id: str, role: Role) -> bool:
        """
        Administrative role change.

        Sessions issued under the old role stop resolving at their next
        revalidation, because their role claim no longer matches.
        """
        updated = await self._bounded(
            self.metadata.update(
                Collections.USERS,
                principal_id,
                {"role": role.value, "updated_at": utc_now().isoformat()},
            ),
            "role update",
        )
        if updated:
            logger.warning(f"Role of {principal_id} changed to {role.value}")
        return updated

    async def delete_principal(self, principal_id: str) -> bool:
        """Administrative delete, cascading to the principal's own rows."""
        for collection in Collections.OWNED_BY_PRINCIPAL:
            rows = await self._bounded(
                self.metadata.query(collection, {"user_id": principal_id}, limit=10_000),
                "cascade lookup",
            )
            for row in rows:
                await self._bounded(self.metadata.delete(collection, row["_id"]), "cascade delete")

        return await self._bounded(
            self.metadata.delete(Collections.USERS, principal_id), "principal delete"
        )
