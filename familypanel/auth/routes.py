# =============================================================================
# Auth API Routes
# =============================================================================
#
# Endpoints:
#   GET  /login          - Login descriptor (methods, post-login target)
#   POST /login          - Password or PIN login, sets session cookies
#   POST /auth/refresh   - Rotate tokens
#   POST /auth/logout    - Revoke tokens, clear cookies
#   GET  /auth/me        - Current principal
#
# Login bodies:
#   {"email": ..., "password": ...}      parent
#   {"principalId": ..., "pin": "1234"}  kid
#
# Every failure is an AuthError; the app's exception handlers turn it into
# the JSON error shape.
#
# =============================================================================

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, Request, Response
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from familypanel.auth.context import AuthContext
from familypanel.auth.errors import AuthenticationRequired, ValidationError
from familypanel.auth.guard import get_session_token
from familypanel.auth.jwt import TokenPair
from familypanel.auth.policies import require_auth
from familypanel.auth.sessions import Session, SessionIssuer
from familypanel.config import Settings, get_settings
from familypanel.core.models import PrincipalResponse
from familypanel.core.utils import is_safe_redirect

logger = logging.getLogger(__name__)

login_router = APIRouter(tags=["auth"])
router = APIRouter(prefix="/auth", tags=["auth"])


# =============================================================================
# Request/Response Models
# =============================================================================

class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LoginRequest(CamelModel):
    email: str | None = None
    password: str | None = None
    principal_id: str | None = None
    pin: str | None = None
    redirect: str | None = None

    @property
    def method(self) -> str | None:
        # A half-filled PIN body is malformed, not a password attempt
        if self.principal_id is not None or self.pin is not None:
            if self.principal_id and self.pin is not None:
                return "pin"
            return None
        if self.email and self.password is not None:
            return "password"
        return None


class LoginResponse(CamelModel):
    session_established: bool = True
    redirect_to: str
    principal: PrincipalResponse


class LoginDescriptor(CamelModel):
    methods: list[str]
    redirect_to: str


class RefreshRequest(CamelModel):
    refresh_token: str | None = None


class RefreshResponse(CamelModel):
    session_established: bool = True
    expires_in: int


# =============================================================================
# Helpers
# =============================================================================

def get_session_issuer(request: Request) -> SessionIssuer:
    return request.app.state.sessions


def post_login_target(*candidates: str | None, settings: Settings | None = None) -> str:
    """First safe same-site path among the candidates, else the landing page."""
    settings = settings or get_settings()
    for candidate in candidates:
        if candidate and is_safe_redirect(candidate):
            return candidate
    return settings.default_landing_path


def set_session_cookies(response: Response, tokens: TokenPair, settings: Settings) -> None:
    response.set_cookie(
        key=settings.session_cookie_name,
        value=tokens.access_token,
        max_age=tokens.expires_in,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
    )
    response.set_cookie(
        key=settings.refresh_cookie_name,
        value=tokens.refresh_token,
        max_age=settings.jwt_refresh_token_expire_days * 24 * 60 * 60,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
    )


def clear_session_cookies(response: Response, settings: Settings) -> None:
    response.delete_cookie(settings.session_cookie_name)
    response.delete_cookie(settings.refresh_cookie_name)


# =============================================================================
# Login
# =============================================================================

@login_router.get("/login", response_model=LoginDescriptor)
async def login_page(request: Request, redirect: str | None = Query(default=None)):
    """
    What the login page needs: the accepted methods and where a successful
    login will land. Signed-in callers never get here (the guard sends them
    to the landing page).
    """
    settings = request.app.state.settings
    return LoginDescriptor(
        methods=["password", "pin"],
        redirect_to=post_login_target(redirect, settings=settings),
    )


@login_router.post("/login", response_model=LoginResponse)
async def login(
    data: LoginRequest,
    response: Response,
    redirect: str | None = Query(default=None),
    sessions: SessionIssuer = Depends(get_session_issuer),
):
    """
    Authenticate with a password or a PIN and establish a session.

    Both methods end in the same session cookies. Wrong credentials always
    get the same 401 body, whichever check failed.
    """
    settings = sessions.settings
    method = data.method

    session: Session
    if method == "password":
        session = await sessions.login_with_password(data.email, data.password)
    elif method == "pin":
        session = await sessions.login_with_pin(data.principal_id, data.pin)
    else:
        raise ValidationError("Email and password, or principal ID and PIN, are required")

    set_session_cookies(response, session.tokens, settings)
    return LoginResponse(
        redirect_to=post_login_target(data.redirect, redirect, settings=settings),
        principal=session.principal.public(),
    )


# =============================================================================
# Session lifecycle
# =============================================================================

@router.post("/refresh", response_model=RefreshResponse)
async def refresh(
    request: Request,
    response: Response,
    data: RefreshRequest | None = None,
    sessions: SessionIssuer = Depends(get_session_issuer),
):
    """Use the refresh token (body or cookie) to rotate both tokens."""
    settings = sessions.settings
    refresh_token = (data.refresh_token if data else None) or request.cookies.get(
        settings.refresh_cookie_name
    )
    if not refresh_token:
        raise AuthenticationRequired("No refresh token presented")

    tokens = await sessions.refresh(refresh_token)
    set_session_cookies(response, tokens, settings)
    return RefreshResponse(expires_in=tokens.expires_in)


@router.post("/logout")
async def logout(
    request: Request,
    response: Response,
    sessions: SessionIssuer = Depends(get_session_issuer),
):
    """Revoke the presented tokens. Succeeds even without a session."""
    settings = sessions.settings
    await sessions.sign_out(
        get_session_token(request, settings),
        request.cookies.get(settings.refresh_cookie_name),
    )
    clear_session_cookies(response, settings)
    return {"signedOut": True}


@router.get("/me", response_model=PrincipalResponse)
async def get_current_principal(
    request: Request,
    ctx: AuthContext = Depends(require_auth()),
):
    """The signed-in principal, read through the privileged credential path."""
    principal = await request.app.state.credentials.get_principal(ctx.principal_id)
    if principal is None:
        raise AuthenticationRequired("Principal no longer exists")
    return principal.public()
