"""
Policies - row-level authorization.

Every protected collection has, per action, a set of rules. A rule is a
pure predicate over (AuthContext, row); a row is permitted when any rule in
the active set for that (resource, action) permits it.

Design:
- Predicates see only the caller's claims and the row. They get no storage
  handle, so a rule cannot look the caller's role up in the table it gates.
- If evaluation re-enters the engine anyway, the inner call raises
  PolicyRecursionError and the outer decision is deny.
- No rule set for a (resource, action) -> deny.
- A predicate that raises -> deny.
- Rule sets change only through versioned migrations. A migration fully
  replaces the sets it names, in one swap; nothing is merged.

Enforcement happens in RowFilteredStorage (storage/filtered.py), not in
route handlers. The `require_auth` / `require_role` dependencies at the
bottom are for route-level gates only.
"""

from __future__ import annotations

import logging
from contextvars import ContextVar
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterable

from fastapi import Depends

from familypanel.auth.capabilities import Action, Role
from familypanel.auth.context import AuthContext, get_auth_context
from familypanel.auth.errors import (
    AuthenticationRequired,
    AuthorizationError,
    PolicyDefinitionError,
    PolicyRecursionError,
)

logger = logging.getLogger(__name__)

Predicate = Callable[[AuthContext, dict[str, Any]], bool]

_evaluating: ContextVar[bool] = ContextVar("policy_evaluating", default=False)


# =============================================================================
# Predicates
# =============================================================================


def authenticated() -> Predicate:
    """Any signed-in principal."""
    def check(ctx: AuthContext, row: dict[str, Any]) -> bool:
        return ctx.is_authenticated
    return check


def role_is(role: Role) -> Predicate:
    """The caller's role claim equals `role`. Never reads the users table."""
    def check(ctx: AuthContext, row: dict[str, Any]) -> bool:
        return ctx.is_authenticated and ctx.role == role
    return check


def owner_only(field_name: str = "user_id") -> Predicate:
    """The row's owner column is the caller."""
    def check(ctx: AuthContext, row: dict[str, Any]) -> bool:
        return ctx.owns(row, field_name)
    return check


def any_of(*predicates: Predicate) -> Predicate:
    def check(ctx: AuthContext, row: dict[str, Any]) -> bool:
        return any(p(ctx, row) for p in predicates)
    return check


def all_of(*predicates: Predicate) -> Predicate:
    def check(ctx: AuthContext, row: dict[str, Any]) -> bool:
        return all(p(ctx, row) for p in predicates)
    return check


# =============================================================================
# Rules and rule sets
# =============================================================================


@dataclass(frozen=True)
class Rule:
    """A named predicate for one resource and one action."""

    name: str
    resource: str
    action: Action
    predicate: Predicate

    @property
    def key(self) -> tuple[str, Action]:
        return (self.resource, self.action)


class RuleSetState(str, Enum):
    """Lifecycle of the rules a migration defines."""

    DEFINED = "defined"
    ACTIVE = "active"
    SUPERSEDED = "superseded"


@dataclass
class RuleSet:
    """All rules for one (resource, action), as defined by one migration."""

    resource: str
    action: Action
    rules: tuple[Rule, ...]
    version: int
    state: RuleSetState = RuleSetState.DEFINED


@dataclass(frozen=True)
class PolicyMigration:
    """
    An ordered, versioned change to the active policy.

    For every (resource, action) it mentions, the migration's rules become
    the whole rule set. Pairs it does not mention are left alone.
    """

    version: int
    name: str
    rules: tuple[Rule, ...]
    # Pairs whose rule set is explicitly replaced; covered by `rules`
    # unless a pair is named here with no rules, which is rejected.
    replaces: tuple[tuple[str, Action], ...] = ()

    def rule_sets(self) -> dict[tuple[str, Action], tuple[Rule, ...]]:
        grouped: dict[tuple[str, Action], list[Rule]] = {key: [] for key in self.replaces}
        for rule in self.rules:
            grouped.setdefault(rule.key, []).append(rule)
        return {key: tuple(rules) for key, rules in grouped.items()}


@dataclass(frozen=True)
class Decision:
    """Outcome of one evaluation. Falsy when denied."""

    allowed: bool
    reason: str
    rule: str | None = None

    def __bool__(self) -> bool:
        return self.allowed


# =============================================================================
# Engine
# =============================================================================


class PolicyEngine:
    """
    Holds the active rule sets and evaluates them.

    Usage:
        engine = PolicyEngine()
        engine.apply_all(HOUSEHOLD_POLICIES)
        engine.evaluate(ctx, "chores", Action.SELECT, row)
    """

    def __init__(self, migrations: Iterable[PolicyMigration] | None = None):
        self._active: dict[tuple[str, Action], RuleSet] = {}
        self._superseded: list[RuleSet] = []
        self.version = 0
        if migrations:
            self.apply_all(migrations)

    # -------------------------------------------------------------------------
    # Definition
    # -------------------------------------------------------------------------

    def apply(self, migration: PolicyMigration) -> None:
        """
        Apply one migration atomically.

        The new mapping is built aside and swapped in with one assignment,
        so no evaluation ever sees a pair with its old rules dropped and
        its new rules not yet added.
        """
        if migration.version <= self.version:
            raise PolicyDefinitionError(
                f"Migration {migration.version} ({migration.name}) is not newer "
                f"than applied version {self.version}"
            )

        new_sets = migration.rule_sets()
        if not new_sets:
            raise PolicyDefinitionError(f"Migration {migration.name} defines no rules")

        staged = dict(self._active)
        defined: list[RuleSet] = []
        for (resource, action), rules in new_sets.items():
            if not rules:
                raise PolicyDefinitionError(
                    f"Migration {migration.name} would leave {resource}/{action.value} "
                    f"with no rules"
                )
            rule_set = RuleSet(resource, action, rules, migration.version)
            staged[(resource, action)] = rule_set
            defined.append(rule_set)

        replaced = [self._active[key] for key in new_sets if key in self._active]

        self._active = staged
        self.version = migration.version

        for rule_set in replaced:
            rule_set.state = RuleSetState.SUPERSEDED
            self._superseded.append(rule_set)
        for rule_set in defined:
            rule_set.state = RuleSetState.ACTIVE

        logger.info(
            f"Applied policy migration {migration.version} ({migration.name}): "
            f"{len(defined)} rule sets, {len(replaced)} superseded"
        )

    def apply_all(self, migrations: Iterable[PolicyMigration]) -> None:
        for migration in sorted(migrations, key=lambda m: m.version):
            self.apply(migration)

    def rule_set(self, resource: str, action: Action) -> RuleSet | None:
        return self._active.get((resource, action))

    @property
    def superseded(self) -> list[RuleSet]:
        return list(self._superseded)

    # -------------------------------------------------------------------------
    # Evaluation
    # -------------------------------------------------------------------------

    def evaluate(
        self,
        ctx: AuthContext,
        resource: str,
        action: Action,
        row: dict[str, Any],
    ) -> Decision:
        """Decide whether `ctx` may perform `action` on `row`."""
        if _evaluating.get():
            raise PolicyRecursionError(
                f"Policy evaluation re-entered while checking {resource}/{action.value}"
            )

        token = _evaluating.set(True)
        try:
            return self._evaluate(ctx, resource, action, row)
        finally:
            _evaluating.reset(token)

    def _evaluate(
        self,
        ctx: AuthContext,
        resource: str,
        action: Action,
        row: dict[str, Any],
    ) -> Decision:
        rule_set = self._active.get((resource, action))
        if rule_set is None:
            return Decision(False, f"no rules defined for {resource}/{action.value}")

        for rule in rule_set.rules:
            try:
                if rule.predicate(ctx, row):
                    return Decision(True, "permitted", rule.name)
            except PolicyRecursionError as e:
                logger.error(f"Rule '{rule.name}' re-entered the policy engine: {e}")
                return Decision(False, "recursive rule evaluation", rule.name)
            except Exception:
                logger.exception(f"Rule '{rule.name}' failed on {resource}/{action.value}")
                return Decision(False, "rule evaluation error", rule.name)

        return Decision(False, "no rule permits")

    def permits(
        self,
        ctx: AuthContext,
        resource: str,
        action: Action,
        row: dict[str, Any],
    ) -> bool:
        return self.evaluate(ctx, resource, action, row).allowed

    def filter_rows(
        self,
        ctx: AuthContext,
        resource: str,
        rows: Iterable[dict[str, Any]],
        action: Action = Action.SELECT,
    ) -> list[dict[str, Any]]:
        """Keep the rows `ctx` may see."""
        return [row for row in rows if self.permits(ctx, resource, action, row)]


# =============================================================================
# Route-level requirements (FastAPI dependencies)
# =============================================================================


def require_auth() -> Callable:
    """
    Just require a signed-in principal.

    Usage:
        @router.get("/me")
        async def me(ctx: AuthContext = Depends(require_auth())):
            ...
    """
    def dependency(ctx: AuthContext = Depends(get_auth_context)) -> AuthContext:
        if ctx.is_anonymous:
            raise AuthenticationRequired()
        return ctx

    return dependency


def require_role(role: Role) -> Callable:
    """Require a signed-in principal holding `role` (403 otherwise)."""
    def dependency(ctx: AuthContext = Depends(require_auth())) -> AuthContext:
        if ctx.role != role:
            raise AuthorizationError(f"Requires {role.value} role")
        return ctx

    return dependency
