"""
Household row-level policies, as ordered migrations.

Role checks compare the caller's session claim; none of these rules reads
the users table, including the rules that gate the users table itself.
"""

from __future__ import annotations

from familypanel.auth.capabilities import Action, Role, parse_role
from familypanel.auth.context import AuthContext
from familypanel.auth.policies import (
    PolicyMigration,
    Rule,
    all_of,
    any_of,
    authenticated,
    owner_only,
    role_is,
)
from familypanel.storage.base import Collections

is_parent = role_is(Role.PARENT)
parent_or_owner = any_of(is_parent, owner_only("user_id"))


def keeps_own_role(ctx: AuthContext, row: dict) -> bool:
    """The row's role is the one the caller already holds."""
    return parse_role(row.get("role")) == ctx.role


def _parent_writes(resource: str, label: str) -> tuple[Rule, ...]:
    return (
        Rule(f"Parents can create {label}", resource, Action.INSERT, is_parent),
        Rule(f"Parents can update {label}", resource, Action.UPDATE, is_parent),
        Rule(f"Parents can delete {label}", resource, Action.DELETE, is_parent),
    )


INITIAL_ROW_LEVEL_SECURITY = PolicyMigration(
    version=1,
    name="initial_row_level_security",
    rules=(
        # users
        Rule("Parents can view all users", Collections.USERS, Action.SELECT, is_parent),
        Rule("Users can view own profile", Collections.USERS, Action.SELECT, owner_only("id")),
        Rule("Parents can create users", Collections.USERS, Action.INSERT, is_parent),
        Rule("Parents can update users", Collections.USERS, Action.UPDATE, is_parent),
        Rule(
            "Users can update own profile",
            Collections.USERS, Action.UPDATE, all_of(owner_only("id"), keeps_own_role),
        ),
        Rule("Parents can delete users", Collections.USERS, Action.DELETE, is_parent),

        # chores
        Rule("Anyone authenticated can view chores", Collections.CHORES, Action.SELECT, authenticated()),
        *_parent_writes(Collections.CHORES, "chores"),

        # chore_assignments
        Rule(
            "Parents can view all chore assignments",
            Collections.CHORE_ASSIGNMENTS, Action.SELECT, is_parent,
        ),
        Rule(
            "Kids can view their own chore assignments",
            Collections.CHORE_ASSIGNMENTS, Action.SELECT, owner_only("user_id"),
        ),
        Rule(
            "Parents can create chore assignments",
            Collections.CHORE_ASSIGNMENTS, Action.INSERT, is_parent,
        ),
        Rule(
            "Parents can update chore assignments",
            Collections.CHORE_ASSIGNMENTS, Action.UPDATE, is_parent,
        ),
        Rule(
            "Kids can complete their own chores",
            Collections.CHORE_ASSIGNMENTS, Action.UPDATE, owner_only("user_id"),
        ),
        Rule(
            "Parents can delete chore assignments",
            Collections.CHORE_ASSIGNMENTS, Action.DELETE, is_parent,
        ),

        # incentive_types
        Rule(
            "Anyone authenticated can view incentive types",
            Collections.INCENTIVE_TYPES, Action.SELECT, authenticated(),
        ),
        *_parent_writes(Collections.INCENTIVE_TYPES, "incentive types"),

        # incentive_logs
        Rule(
            "Parents and owners can view incentive logs",
            Collections.INCENTIVE_LOGS, Action.SELECT, parent_or_owner,
        ),
        Rule(
            "Parents and owners can create incentive logs",
            Collections.INCENTIVE_LOGS, Action.INSERT, parent_or_owner,
        ),
        Rule("Parents can update incentive logs", Collections.INCENTIVE_LOGS, Action.UPDATE, is_parent),
        Rule("Parents can delete incentive logs", Collections.INCENTIVE_LOGS, Action.DELETE, is_parent),

        # screen_time_sessions
        Rule(
            "Parents and owners can view screen time sessions",
            Collections.SCREEN_TIME_SESSIONS, Action.SELECT, parent_or_owner,
        ),
        Rule(
            "Parents and owners can create screen time sessions",
            Collections.SCREEN_TIME_SESSIONS, Action.INSERT, parent_or_owner,
        ),
        Rule(
            "Parents can update screen time sessions",
            Collections.SCREEN_TIME_SESSIONS, Action.UPDATE, is_parent,
        ),
        Rule(
            "Parents can delete screen time sessions",
            Collections.SCREEN_TIME_SESSIONS, Action.DELETE, is_parent,
        ),
    ),
)


FAMILY_RELATIONSHIPS = PolicyMigration(
    version=2,
    name="family_relationships",
    rules=(
        Rule("Family members can view their family", Collections.FAMILIES, Action.SELECT, authenticated()),
        *_parent_writes(Collections.FAMILIES, "families"),
        Rule(
            "Family members can view other members",
            Collections.FAMILY_MEMBERS, Action.SELECT, authenticated(),
        ),
        *_parent_writes(Collections.FAMILY_MEMBERS, "family members"),
    ),
)


# Kids end their own running screen time sessions
SCREEN_TIME_SELF_SERVICE = PolicyMigration(
    version=3,
    name="screen_time_self_service",
    rules=(
        Rule(
            "Parents can update screen time sessions",
            Collections.SCREEN_TIME_SESSIONS, Action.UPDATE, is_parent,
        ),
        Rule(
            "Kids can update their own screen time sessions",
            Collections.SCREEN_TIME_SESSIONS, Action.UPDATE, owner_only("user_id"),
        ),
    ),
)


HOUSEHOLD_POLICIES: tuple[PolicyMigration, ...] = (
    INITIAL_ROW_LEVEL_SECURITY,
    FAMILY_RELATIONSHIPS,
    SCREEN_TIME_SELF_SERVICE,
)
