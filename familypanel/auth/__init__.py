"""
Authentication, sessions and row-level authorization.

Design principles:
1. Parents sign in with a password, kids with a PIN; both get the same session
2. Every request is resolved by the route guard, through the token authority
3. The caller's role travels as a token claim, so policies never look it up
4. Row rules are enforced at the storage boundary, not in route handlers
"""

from familypanel.auth.capabilities import PROTECTED_RESOURCES, Action, Role
from familypanel.auth.context import AuthContext, get_auth_context
from familypanel.auth.credentials import (
    CredentialStore,
    Invalid,
    InvalidReason,
    hash_password,
    verify_password,
)
from familypanel.auth.errors import (
    AuthenticationError,
    AuthError,
    AuthorizationError,
    InfrastructureError,
    PinFormatError,
    ServiceUnavailableError,
    SessionEstablishmentError,
    ValidationError,
)
from familypanel.auth.jwt import TokenAuthority, TokenPair, TokenPayload
from familypanel.auth.policies import (
    PolicyEngine,
    PolicyMigration,
    Rule,
    require_auth,
    require_role,
)
from familypanel.auth.routes import login_router
from familypanel.auth.routes import router as auth_router
from familypanel.auth.rules import HOUSEHOLD_POLICIES
from familypanel.auth.sessions import Session, SessionIssuer

__all__ = [
    # Context
    "AuthContext",
    "get_auth_context",
    "require_auth",
    "require_role",
    # Types
    "Action",
    "Role",
    "PROTECTED_RESOURCES",
    # Credentials and sessions
    "CredentialStore",
    "Invalid",
    "InvalidReason",
    "hash_password",
    "verify_password",
    "TokenAuthority",
    "TokenPair",
    "TokenPayload",
    "Session",
    "SessionIssuer",
    # Policies
    "PolicyEngine",
    "PolicyMigration",
    "Rule",
    "HOUSEHOLD_POLICIES",
    # Errors
    "AuthError",
    "AuthenticationError",
    "AuthorizationError",
    "InfrastructureError",
    "PinFormatError",
    "ServiceUnavailableError",
    "SessionEstablishmentError",
    "ValidationError",
    # Routers
    "auth_router",
    "login_router",
]
