"""
Route guard - runs before every handler.

Resolves the caller's session through the token authority's revalidating
path (never a local-only decode), attaches the resulting AuthContext to
`request.state.auth`, and applies the route rules:

    no principal  + protected route -> redirect to login (401 JSON for APIs)
    principal     + login page      -> redirect to the landing page
    no principal  + public route    -> pass through
    principal     + protected route -> pass through

If auth is not configured yet (no token secret, no authority on the app),
every request passes through unenforced. That is the build-time escape
hatch, not a security boundary.
"""

from __future__ import annotations

import logging
from urllib.parse import urlencode

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import JSONResponse, RedirectResponse, Response

from familypanel.auth.context import AuthContext
from familypanel.auth.errors import AuthenticationRequired, InfrastructureError
from familypanel.auth.jwt import TokenAuthority, TokenError
from familypanel.config import Settings, get_settings
from familypanel.integrations import sentry

logger = logging.getLogger(__name__)

PUBLIC_ROUTES = {
    "/",
    "/health",
    "/openapi.json",
    "/docs",
}
PUBLIC_PREFIXES = ("/auth/", "/static/", "/docs/")
STATIC_SUFFIXES = (".svg", ".png", ".jpg", ".jpeg", ".gif", ".webp", ".ico")


def get_session_token(request: Request, settings: Settings | None = None) -> str | None:
    """Extract the session token (Authorization header first, then cookie)."""
    settings = settings or get_settings()

    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None

    return request.cookies.get(settings.session_cookie_name) or None


def wants_json(request: Request) -> bool:
    """API fetches get 401 JSON; browser navigations get a redirect."""
    if request.url.path.startswith("/api/"):
        return True
    accept = request.headers.get("accept", "")
    return "application/json" in accept and "text/html" not in accept


class RouteGuard(BaseHTTPMiddleware):
    """Authentication gate for every inbound request."""

    def __init__(self, app, settings: Settings | None = None):
        super().__init__(app)
        self.settings = settings or get_settings()
        self._warned_unconfigured = False

    # -------------------------------------------------------------------------
    # Route classification
    # -------------------------------------------------------------------------

    def is_login_page(self, path: str) -> bool:
        login = self.settings.login_path
        return path == login or path.startswith(login + "/")

    def is_public(self, path: str) -> bool:
        return (
            path in PUBLIC_ROUTES
            or self.is_login_page(path)
            or path.startswith(PUBLIC_PREFIXES)
            or path.lower().endswith(STATIC_SUFFIXES)
        )

    def login_redirect(self, request: Request) -> RedirectResponse:
        target = request.url.path
        if request.url.query:
            target = f"{target}?{request.url.query}"
        query = urlencode({"redirect": target})
        return RedirectResponse(url=f"{self.settings.login_path}?{query}", status_code=302)

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    async def resolve(self, authority: TokenAuthority, token: str | None) -> AuthContext | None:
        """The principal behind a token, or None if there is none."""
        if not token:
            return None
        try:
            payload = await authority.resolve(token)
        except TokenError as e:
            logger.debug(f"Session token rejected: {e}")
            return None
        return AuthContext.from_claims(payload.claims)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        authority: TokenAuthority | None = getattr(request.app.state, "authority", None)
        if not self.settings.auth_configured or authority is None:
            if not self._warned_unconfigured:
                logger.warning("Auth is not configured; route guard is passing requests through")
                self._warned_unconfigured = True
            return await call_next(request)

        path = request.url.path
        public = self.is_public(path)

        try:
            ctx = await self.resolve(authority, get_session_token(request, self.settings))
        except InfrastructureError as e:
            logger.error(f"Session resolution failed for {path}: {e.detail}")
            if not public:
                return JSONResponse(e.to_dict(), status_code=e.status_code)
            ctx = None

        if ctx is None:
            if public:
                request.state.auth = AuthContext.anonymous()
                return await call_next(request)
            if wants_json(request):
                error = AuthenticationRequired()
                return JSONResponse(error.to_dict(), status_code=error.status_code)
            return self.login_redirect(request)

        if self.is_login_page(path) and request.method in ("GET", "HEAD"):
            return RedirectResponse(url=self.settings.default_landing_path, status_code=302)

        request.state.auth = ctx
        sentry.set_user(
            ctx.principal_id, role=ctx.role.value if ctx.role else None, session=ctx.session_id
        )
        return await call_next(request)
