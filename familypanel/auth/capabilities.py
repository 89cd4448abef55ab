"""
Roles, actions, and resources.

This defines WHAT can be asked of the policy engine, not HOW we check it.
The actual checking happens in policies.py.
"""

from enum import Enum

from familypanel.core.models import Role
from familypanel.storage.base import Collections


class Action(str, Enum):
    """Row-level action a rule is scoped to."""

    SELECT = "select"
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


# Every resource the household policies gate
PROTECTED_RESOURCES: tuple[str, ...] = (
    Collections.USERS,
    Collections.CHORES,
    Collections.CHORE_ASSIGNMENTS,
    Collections.INCENTIVE_TYPES,
    Collections.INCENTIVE_LOGS,
    Collections.SCREEN_TIME_SESSIONS,
    Collections.FAMILIES,
    Collections.FAMILY_MEMBERS,
)


def parse_role(value: Role | str | None) -> Role | None:
    """Coerce a claim value to a Role, or None if it is not one."""
    if value is None or isinstance(value, Role):
        return value
    try:
        return Role(value)
    except ValueError:
        return None


__all__ = ["Action", "PROTECTED_RESOURCES", "Role", "parse_role"]
