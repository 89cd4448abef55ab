"""
Auth error taxonomy.

Every failure that crosses the API boundary is one of these. Each carries
the HTTP status and a client-safe message; the internal detail stays in
the logs.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base exception for auth errors."""

    status_code: int = 500
    code: str = "error"
    public_message: str = "Something went wrong"

    def __init__(self, detail: str | None = None):
        super().__init__(detail or self.public_message)
        self.detail = detail or self.public_message

    def to_dict(self) -> dict[str, str]:
        return {"error": self.public_message, "code": self.code}


class ValidationError(AuthError):
    """Malformed input. Never reaches the credential store."""

    status_code = 400
    code = "invalid_request"
    public_message = "Invalid request"

    def to_dict(self) -> dict[str, str]:
        # Validation text is about the caller's own input, safe to echo
        return {"error": self.detail, "code": self.code}


class PinFormatError(ValidationError):
    """PIN is not exactly four decimal digits."""

    code = "invalid_pin_format"
    public_message = "PIN must be exactly 4 digits"

    def __init__(self, detail: str | None = None):
        super().__init__(detail or self.public_message)


class AuthenticationError(AuthError):
    """Wrong credential, unknown identity, or wrong role for the PIN path."""

    status_code = 401
    code = "invalid_credentials"
    public_message = "Invalid credentials"

    def to_dict(self) -> dict[str, str]:
        # Always the generic text, whatever the detail says
        return {"error": self.public_message, "code": self.code}


class AuthenticationRequired(AuthenticationError):
    """No resolvable session on a protected route."""

    code = "authentication_required"
    public_message = "Authentication required"


class AuthorizationError(AuthError):
    """Authenticated, but the policy denies."""

    status_code = 403
    code = "forbidden"
    public_message = "Permission denied"


class InfrastructureError(AuthError):
    """Store or issuance primitive failed. Details are logged, never returned."""

    status_code = 500
    code = "internal_error"
    public_message = "Something went wrong, please try again"
    retryable = True


class ServiceUnavailableError(InfrastructureError):
    """A bounded call timed out or its backend errored."""

    code = "service_unavailable"
    public_message = "Service unavailable, please try again"


class SessionEstablishmentError(InfrastructureError):
    """Credential was good but the session could not be created."""

    code = "session_establishment_failed"
    public_message = "Session establishment failed, please try again"


# =============================================================================
# Operational (policy definition) errors
# =============================================================================


class PolicyError(Exception):
    """Base exception for policy engine errors."""


class PolicyDefinitionError(PolicyError):
    """A migration would leave the policy set inconsistent."""


class PolicyRecursionError(PolicyError):
    """A rule re-entered the policy engine while being evaluated."""
