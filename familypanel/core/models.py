"""
Core data models for the family panel.

Principals are the people who can sign in. Chores and assignments are the
household rows the authorization layer gates; they carry no business logic
of their own.
"""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum

from pydantic import BaseModel, Field

from familypanel.core.utils import generate_id, utc_now


# =============================================================================
# Enums
# =============================================================================


class Role(str, Enum):
    """The one role a principal holds."""

    PARENT = "parent"  # Password login, manages the household
    KID = "kid"        # PIN login, sees own rows only


# =============================================================================
# Principal
# =============================================================================


class Principal(BaseModel):
    """
    A person with access to the system, as stored.

    Parents carry a password hash and kids a PIN hash. The two are mutually
    exclusive by convention only; the PIN path checks the role, not the
    presence of a hash.
    """

    id: str = Field(default_factory=lambda: generate_id("usr"))
    name: str
    email: str
    role: Role

    password_hash: str | None = None
    pin_hash: str | None = None

    screen_time_daily_minutes: int = 0

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def public(self) -> PrincipalResponse:
        return PrincipalResponse(
            id=self.id,
            name=self.name,
            email=self.email,
            role=self.role,
        )


class PrincipalResponse(BaseModel):
    """Principal data returned to clients (no credential material)."""

    id: str
    name: str
    email: str
    role: Role


# =============================================================================
# Household rows
# =============================================================================


class Chore(BaseModel):
    """A chore that can be assigned to kids."""

    id: str = Field(default_factory=lambda: generate_id("chore"))
    name: str
    description: str | None = None
    monetary_value_cents: int = 0
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class ChoreAssignment(BaseModel):
    """A chore assigned to one kid on one day."""

    id: str = Field(default_factory=lambda: generate_id("asg"))
    chore_id: str
    user_id: str  # owning kid
    assigned_date: date = Field(default_factory=lambda: utc_now().date())
    completed: bool = False
    completed_at: datetime | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
