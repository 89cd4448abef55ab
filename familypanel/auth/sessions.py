"""
Session issuer - one session shape for both login methods.

Password and PIN logins end in the same TokenPair, so refresh, expiry and
revocation behave identically for parents and kids.

The PIN path reuses the authority's link grant without its delivery step:
mint a single-use proof and redeem it right away, inside one call. There
is no public way to redeem a proof on its own.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, TypeVar

from familypanel.auth.credentials import CredentialStore, Invalid
from familypanel.auth.errors import (
    AuthenticationError,
    AuthenticationRequired,
    ServiceUnavailableError,
    SessionEstablishmentError,
)
from familypanel.auth.jwt import TokenAuthority, TokenError, TokenPair
from familypanel.config import Settings, get_settings
from familypanel.core.models import Principal
from familypanel.storage.base import StorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Session:
    """An established session: who it is for, and the tokens proving it."""

    principal: Principal
    tokens: TokenPair
    method: str  # "password" or "pin"


class SessionIssuer:
    """
    Turns a positive verification into a session.

    `login_with_password` / `login_with_pin` are what routes call: verify,
    then issue. `issue_from_password` / `issue_from_pin` only ever receive a
    principal that already passed verification.
    """

    def __init__(
        self,
        credentials: CredentialStore,
        authority: TokenAuthority,
        settings: Settings | None = None,
    ):
        self.credentials = credentials
        self.authority = authority
        self.settings = settings or get_settings()

    async def _bounded(self, operation: Awaitable[T], what: str) -> T:
        try:
            return await asyncio.wait_for(operation, timeout=self.settings.issue_timeout_seconds)
        except asyncio.TimeoutError:
            logger.error(f"Session issuance timed out during {what}")
            raise ServiceUnavailableError(f"{what} timed out")

    # -------------------------------------------------------------------------
    # Issuance
    # -------------------------------------------------------------------------

    async def issue_from_password(self, principal: Principal) -> Session:
        tokens = self.authority.grant_password(principal)
        logger.info(f"Session issued for {principal.id} via password")
        return Session(principal=principal, tokens=tokens, method="password")

    async def issue_from_pin(self, principal: Principal) -> Session:
        """Mint a link proof and redeem it immediately, as one operation."""
        try:
            tokens = await self._bounded(self._bridge(principal), "PIN session bridging")
        except (TokenError, StorageError) as e:
            logger.error(f"PIN session bridging failed for {principal.id}: {e}")
            raise SessionEstablishmentError(str(e)) from e

        logger.info(f"Session issued for {principal.id} via PIN")
        return Session(principal=principal, tokens=tokens, method="pin")

    async def _bridge(self, principal: Principal) -> TokenPair:
        proof = await self.authority.issue_link_proof(principal)
        return await self.authority.redeem_link_proof(proof)

    # -------------------------------------------------------------------------
    # Login flows (verify, then issue)
    # -------------------------------------------------------------------------

    async def login_with_password(self, email: str, password: str) -> Session:
        result = await self.credentials.verify_password(email, password)
        if isinstance(result, Invalid):
            logger.info(f"Password login rejected: {result.reason.value}")
            raise AuthenticationError(result.reason.value)
        return await self.issue_from_password(result)

    async def login_with_pin(self, principal_id: str, pin: str) -> Session:
        result = await self.credentials.verify_pin(principal_id, pin)
        if isinstance(result, Invalid):
            logger.info(f"PIN login rejected for {principal_id}: {result.reason.value}")
            raise AuthenticationError(result.reason.value)
        return await self.issue_from_pin(result)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def refresh(self, refresh_token: str) -> TokenPair:
        try:
            return await self.authority.refresh(refresh_token)
        except TokenError as e:
            raise AuthenticationRequired(str(e)) from e

    async def sign_out(self, access_token: str | None, refresh_token: str | None = None) -> None:
        """Revoke whatever tokens the client still holds."""
        if access_token:
            await self.authority.revoke_token(access_token, "access")
        if refresh_token:
            await self.authority.revoke_token(refresh_token, "refresh")
