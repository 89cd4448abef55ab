"""
Auth context - the "who is asking" for each request.

This is the lightweight object the route guard attaches to the request and
route handlers receive explicitly. There is no module-level current user:
whatever needs the caller's identity gets an AuthContext passed in.

The role here comes from the session token's claims (revalidated by the
guard), so the policy engine never has to look it up in the users table.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from fastapi import Request

from familypanel.auth.capabilities import Role, parse_role


@dataclass(frozen=True)
class AuthContext:
    """
    Authorization context for a request.

    Usage in routes:
        async def my_route(ctx: AuthContext = Depends(require_auth())):
            print(f"{ctx.principal_id} is a {ctx.role}")
    """

    # Who
    principal_id: str | None = None
    email: str | None = None
    name: str | None = None
    role: Role | None = None

    # Which session (token jti), reported with errors
    session_id: str | None = None

    @property
    def is_authenticated(self) -> bool:
        """Is there a signed-in principal with a known role?"""
        return self.principal_id is not None and self.role is not None

    @property
    def is_anonymous(self) -> bool:
        return not self.is_authenticated

    def owns(self, row: dict[str, Any], field_name: str = "user_id") -> bool:
        """Does the row's owner column point at this principal?"""
        return self.is_authenticated and row.get(field_name) == self.principal_id

    @classmethod
    def anonymous(cls) -> AuthContext:
        """Create an anonymous context (no principal)."""
        return cls()

    @classmethod
    def from_claims(cls, claims: dict[str, Any]) -> AuthContext:
        """Build a context from validated session token claims."""
        return cls(
            principal_id=claims.get("sub"),
            email=claims.get("email"),
            name=claims.get("name"),
            role=parse_role(claims.get("role")),
            session_id=claims.get("jti"),
        )


# =============================================================================
# Context Resolution
# =============================================================================


def get_auth_context(request: Request) -> AuthContext:
    """
    The context the route guard resolved for this request.

    Anonymous when the guard let the request through without a session
    (public route, or auth not configured yet).
    """
    return getattr(request.state, "auth", None) or AuthContext.anonymous()
