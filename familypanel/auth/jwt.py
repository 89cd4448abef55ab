# =============================================================================
# JWT Token Authority
# =============================================================================
#
# The token-issuance primitive. Two grant shapes:
#   - password grant: principal already verified -> access + refresh tokens
#   - link grant: mint a single-use, short-lived proof, later redeemed for
#     tokens (built for out-of-band delivery; the PIN login redeems it
#     in-process, see sessions.py)
#
# Plus:
#   - resolve(): the revalidating path (signature, expiry, revocation,
#     principal still present, role claim still current)
#   - decode_token(): local-only decode, never used to admit a request
#   - refresh / revoke
#
# The role is a claim on every access token, so authorization never has to
# look it up in the users table.
#
# =============================================================================

from __future__ import annotations

import hashlib
import logging
import secrets
from datetime import datetime, timedelta, timezone

import jwt
from pydantic import BaseModel

from familypanel.auth.credentials import CredentialStore
from familypanel.config import Settings, get_settings
from familypanel.core.models import Principal
from familypanel.core.utils import generate_id, utc_now
from familypanel.storage.base import CacheStorage

logger = logging.getLogger(__name__)

REVOKED_PREFIX = "revoked:"
LINK_PROOF_PREFIX = "link_proof:"


# =============================================================================
# Models
# =============================================================================

class TokenPayload(BaseModel):
    """JWT token payload."""
    sub: str  # principal id
    exp: datetime
    iat: datetime
    type: str  # "access" or "refresh"
    jti: str  # unique token ID (for revocation)
    role: str | None = None
    email: str | None = None
    name: str | None = None

    @property
    def claims(self) -> dict:
        return self.model_dump()


class TokenPair(BaseModel):
    """Access and refresh token pair."""
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds until access token expires


# =============================================================================
# Token Errors
# =============================================================================

class TokenError(Exception):
    """Base exception for token errors."""
    pass


class TokenExpiredError(TokenError):
    """Token has expired."""
    pass


class TokenInvalidError(TokenError):
    """Token is invalid or malformed."""
    pass


class TokenRevokedError(TokenError):
    """Token was signed out."""
    pass


class LinkProofError(TokenError):
    """Link proof unknown, expired, or already redeemed."""
    pass


# =============================================================================
# Local decode
# =============================================================================

def decode_token(
    token: str,
    expected_type: str = "access",
    settings: Settings | None = None,
) -> TokenPayload:
    """
    Decode and validate a JWT locally (signature, expiry, type).

    This does not consult revocation or the principal's current role.
    Admission decisions go through TokenAuthority.resolve instead.

    Raises:
        TokenExpiredError: Token has expired
        TokenInvalidError: Token is invalid
    """
    settings = settings or get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["sub", "exp", "iat", "jti"]},
        )
    except jwt.ExpiredSignatureError:
        raise TokenExpiredError("Token has expired")
    except jwt.InvalidTokenError as e:
        raise TokenInvalidError(f"Invalid token: {e}")

    if payload.get("type") != expected_type:
        raise TokenInvalidError(f"Expected {expected_type} token, got {payload.get('type')}")

    return TokenPayload(
        sub=payload["sub"],
        exp=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        iat=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
        type=payload["type"],
        jti=payload["jti"],
        role=payload.get("role"),
        email=payload.get("email"),
        name=payload.get("name"),
    )


def _proof_key(proof: str) -> str:
    # Only the hash of a proof is ever stored
    return LINK_PROOF_PREFIX + hashlib.sha256(proof.encode("utf-8")).hexdigest()


def _remaining_seconds(payload: TokenPayload) -> int:
    # At least one second, so a token decoded just before expiry still gets a TTL
    return max(int((payload.exp - utc_now()).total_seconds()), 1)


# =============================================================================
# Authority
# =============================================================================

class TokenAuthority:
    """Issues, resolves, refreshes and revokes session tokens."""

    def __init__(
        self,
        cache: CacheStorage,
        credentials: CredentialStore,
        settings: Settings | None = None,
    ):
        self.cache = cache
        self.credentials = credentials
        self.settings = settings or get_settings()

    # -------------------------------------------------------------------------
    # Token creation
    # -------------------------------------------------------------------------

    def _encode(self, payload: dict) -> str:
        return jwt.encode(payload, self.settings.jwt_secret_key, algorithm=self.settings.jwt_algorithm)

    def create_access_token(self, principal: Principal) -> str:
        """Create a JWT access token carrying the principal's role claim."""
        now = utc_now()
        expire = now + timedelta(minutes=self.settings.jwt_access_token_expire_minutes)

        return self._encode({
            "sub": principal.id,
            "exp": expire,
            "iat": now,
            "type": "access",
            "jti": generate_id("tok"),
            "role": principal.role.value,
            "email": principal.email,
            "name": principal.name,
        })

    def create_refresh_token(self, principal: Principal) -> str:
        """Create a JWT refresh token (longer-lived)."""
        now = utc_now()
        expire = now + timedelta(days=self.settings.jwt_refresh_token_expire_days)

        return self._encode({
            "sub": principal.id,
            "exp": expire,
            "iat": now,
            "type": "refresh",
            "jti": generate_id("rtok"),
        })

    def grant_password(self, principal: Principal) -> TokenPair:
        """Direct grant for an already verified principal."""
        return TokenPair(
            access_token=self.create_access_token(principal),
            refresh_token=self.create_refresh_token(principal),
            expires_in=self.settings.jwt_access_token_expire_minutes * 60,
        )

    # -------------------------------------------------------------------------
    # Link grant
    # -------------------------------------------------------------------------

    async def issue_link_proof(self, principal: Principal) -> str:
        """Mint a single-use proof that can be exchanged for tokens once."""
        proof = secrets.token_urlsafe(32)
        await self.cache.set(
            _proof_key(proof),
            principal.id,
            ttl=self.settings.link_proof_ttl_seconds,
        )
        return proof

    async def redeem_link_proof(self, proof: str) -> TokenPair:
        """
        Exchange a link proof for tokens. The proof is consumed even if the
        exchange then fails, so it can never be replayed.
        """
        principal_id = await self.cache.pop(_proof_key(proof))
        if not principal_id:
            raise LinkProofError("Link proof is unknown, expired or already used")

        principal = await self.credentials.get_principal(principal_id)
        if principal is None:
            raise LinkProofError("Link proof principal no longer exists")

        return self.grant_password(principal)

    # -------------------------------------------------------------------------
    # Resolution
    # -------------------------------------------------------------------------

    async def resolve(self, token: str) -> TokenPayload:
        """
        Revalidate an access token against this authority.

        Beyond the local decode this checks revocation and that the
        principal still exists with the role the token claims.
        """
        payload = decode_token(token, expected_type="access", settings=self.settings)

        if await self.cache.exists(REVOKED_PREFIX + payload.jti):
            raise TokenRevokedError("Token has been revoked")

        current_role = await self.credentials.lookup_role(payload.sub)
        if current_role is None:
            raise TokenInvalidError("Principal no longer exists")
        if payload.role != current_role.value:
            logger.info(f"Rejected token {payload.jti}: role claim {payload.role} is stale for {payload.sub}")
            raise TokenInvalidError("Role claim is stale")

        return payload

    async def refresh(self, refresh_token: str) -> TokenPair:
        """
        Use a refresh token to get new access and refresh tokens.

        The old refresh token's ID is claimed as revoked before anything is
        issued, so of any number of concurrent calls exactly one succeeds.
        """
        payload = decode_token(refresh_token, expected_type="refresh", settings=self.settings)

        claimed = await self.cache.add(
            REVOKED_PREFIX + payload.jti, payload.sub, ttl=_remaining_seconds(payload)
        )
        if not claimed:
            logger.warning(f"Refresh token {payload.jti} for {payload.sub} presented again")
            raise TokenRevokedError("Refresh token has been revoked")

        principal = await self.credentials.get_principal(payload.sub)
        if principal is None:
            raise TokenInvalidError("Principal no longer exists")

        logger.info(f"Rotated refresh token {payload.jti} for {payload.sub}")
        return self.grant_password(principal)

    async def revoke(self, payload: TokenPayload) -> None:
        """Remember a token ID as revoked until the token would expire anyway."""
        await self.cache.set(REVOKED_PREFIX + payload.jti, payload.sub, ttl=_remaining_seconds(payload))
        logger.info(f"Revoked {payload.type} token {payload.jti} for {payload.sub}")

    async def revoke_token(self, token: str, expected_type: str = "access") -> bool:
        """Revoke an encoded token. Returns False if it was unusable already."""
        try:
            payload = decode_token(token, expected_type=expected_type, settings=self.settings)
        except TokenError:
            return False
        await self.revoke(payload)
        return True
