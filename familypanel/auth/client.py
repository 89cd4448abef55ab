# =============================================================================
# Session Client
# =============================================================================
#
# Python client for the login API, for scripts, kiosks and tests.
#
# It keeps a local view of "who is signed in", driven by auth state events:
#   INITIAL_SESSION  - the client finished its initial load
#   SIGNED_IN        - a login succeeded
#   SIGNED_OUT       - tokens were revoked
#   TOKEN_REFRESHED  - tokens were rotated
#
# Events that arrive before INITIAL_SESSION are ignored. Acting on an early
# SIGNED_IN would show a signed-in state with no profile behind it.
#
# Usage:
#   async with SessionClient("http://localhost:8000") as client:
#       await client.initialize()
#       await client.sign_in("parent@example.com", "password123")
#       print(client.principal)
#
# =============================================================================

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Callable

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_fixed

from familypanel.core.models import PrincipalResponse

logger = logging.getLogger(__name__)

PROFILE_FETCH_ATTEMPTS = 3
PROFILE_FETCH_TIMEOUT = 5.0


class AuthEvent(str, Enum):
    INITIAL_SESSION = "INITIAL_SESSION"
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"


class SessionClientError(Exception):
    """A login API call failed."""

    def __init__(self, status_code: int, message: str, code: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.code = code

    @property
    def retryable(self) -> bool:
        """Infrastructure failures are worth retrying with the same credential."""
        return self.status_code >= 500

    @classmethod
    def from_response(cls, response: httpx.Response) -> SessionClientError:
        try:
            body = response.json()
        except ValueError:
            body = {}
        return cls(
            response.status_code,
            body.get("error", f"Request failed with status {response.status_code}"),
            body.get("code"),
        )


class ProfileUnavailable(Exception):
    """Profile endpoint answered with a server error."""


Listener = Callable[[AuthEvent, "PrincipalResponse | None"], Any]


class SessionClient:
    """Client-side session state over the login API."""

    def __init__(
        self,
        base_url: str,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        session_cookie_name: str = "session_token",
        timeout: float = PROFILE_FETCH_TIMEOUT,
    ):
        self._http = httpx.AsyncClient(base_url=base_url, transport=transport, timeout=timeout)
        self.session_cookie_name = session_cookie_name

        self.initialized = False
        self.loading = True
        self.principal: PrincipalResponse | None = None
        self._listeners: list[Listener] = []

    async def __aenter__(self) -> SessionClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    @property
    def has_session(self) -> bool:
        return self._http.cookies.get(self.session_cookie_name) is not None

    def on_change(self, listener: Listener) -> Callable[[], None]:
        """Subscribe to state changes. Returns an unsubscribe function."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    # -------------------------------------------------------------------------
    # State machine
    # -------------------------------------------------------------------------

    async def initialize(self) -> None:
        """Finish the initial load from whatever session the client holds."""
        await self.handle_event(AuthEvent.INITIAL_SESSION, self.has_session)

    async def handle_event(self, event: AuthEvent, has_session: bool) -> None:
        if not self.initialized:
            if event != AuthEvent.INITIAL_SESSION:
                logger.debug(f"Ignoring {event.value} during initialization")
                return
            self.initialized = True

        if has_session:
            try:
                self.principal = await self.fetch_profile()
            except (httpx.HTTPError, ProfileUnavailable) as e:
                logger.error(f"Profile fetch failed after {PROFILE_FETCH_ATTEMPTS} attempts: {e}")
                self.principal = None
        else:
            self.principal = None
        self.loading = False

        for listener in list(self._listeners):
            listener(event, self.principal)

    @retry(
        stop=stop_after_attempt(PROFILE_FETCH_ATTEMPTS),
        wait=wait_fixed(0.2),
        retry=retry_if_exception_type((httpx.TransportError, ProfileUnavailable)),
        reraise=True,
    )
    async def fetch_profile(self) -> PrincipalResponse | None:
        """The signed-in principal, or None if the session is not valid."""
        response = await self._http.get("/auth/me", headers={"Accept": "application/json"})
        if response.status_code in (401, 403):
            return None
        if response.status_code >= 500:
            raise ProfileUnavailable(f"Profile fetch returned {response.status_code}")
        response.raise_for_status()
        return PrincipalResponse.model_validate(response.json())

    # -------------------------------------------------------------------------
    # API calls
    # -------------------------------------------------------------------------

    async def _login(self, body: dict[str, Any], redirect: str | None) -> str:
        if redirect:
            body = {**body, "redirect": redirect}
        response = await self._http.post("/login", json=body)
        if response.status_code != 200:
            raise SessionClientError.from_response(response)

        await self.handle_event(AuthEvent.SIGNED_IN, True)
        return response.json()["redirectTo"]

    async def sign_in(self, email: str, password: str, redirect: str | None = None) -> str:
        """Parent login. Returns where to go next."""
        return await self._login({"email": email, "password": password}, redirect)

    async def sign_in_with_pin(self, principal_id: str, pin: str, redirect: str | None = None) -> str:
        """Kid login. Returns where to go next."""
        return await self._login({"principalId": principal_id, "pin": pin}, redirect)

    async def refresh(self) -> None:
        response = await self._http.post("/auth/refresh")
        if response.status_code != 200:
            raise SessionClientError.from_response(response)
        await self.handle_event(AuthEvent.TOKEN_REFRESHED, True)

    async def sign_out(self) -> None:
        response = await self._http.post("/auth/logout")
        if response.status_code != 200:
            raise SessionClientError.from_response(response)
        self._http.cookies.clear()
        await self.handle_event(AuthEvent.SIGNED_OUT, False)
