"""
Row-filtered storage - the policy engine's enforcement point.

Request-scoped code gets one of these, bound to the caller's AuthContext,
instead of the raw MetadataStorage. Reads only return rows the caller may
see; writes the caller may not make raise AuthorizationError. Callers never
re-check permissions on what comes back.

Rows the caller may not see behave as if they did not exist.
"""

from __future__ import annotations

import logging
from typing import Any

from familypanel.auth.capabilities import Action
from familypanel.auth.context import AuthContext
from familypanel.auth.errors import AuthorizationError
from familypanel.auth.policies import PolicyEngine
from familypanel.storage.base import MetadataStorage

logger = logging.getLogger(__name__)

SCAN_PAGE_SIZE = 500


class RowFilteredStorage:
    """MetadataStorage-shaped view of the store for one principal."""

    def __init__(self, metadata: MetadataStorage, engine: PolicyEngine, ctx: AuthContext):
        self._metadata = metadata
        self.engine = engine
        self.ctx = ctx

    def _check(self, collection: str, action: Action, row: dict[str, Any]) -> None:
        decision = self.engine.evaluate(self.ctx, collection, action, row)
        if not decision:
            logger.info(
                f"Denied {action.value} on {collection}/{row.get('id', row.get('_id'))} "
                f"for {self.ctx.principal_id}: {decision.reason}"
            )
            raise AuthorizationError(f"{action.value} on {collection} denied")

    def _visible(self, collection: str, row: dict[str, Any]) -> bool:
        return self.engine.permits(self.ctx, collection, Action.SELECT, row)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get(self, collection: str, id: str) -> dict[str, Any] | None:
        row = await self._metadata.get(collection, id)
        if row is None or not self._visible(collection, row):
            return None
        return row

    async def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """Query, filter by policy, then paginate over the visible rows."""
        visible: list[dict[str, Any]] = []
        scanned = 0
        while len(visible) < offset + limit:
            page = await self._metadata.query(
                collection, filters, limit=SCAN_PAGE_SIZE, offset=scanned
            )
            visible.extend(row for row in page if self._visible(collection, row))
            scanned += len(page)
            if len(page) < SCAN_PAGE_SIZE:
                break
        return visible[offset:offset + limit]

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def save(self, collection: str, id: str, data: dict[str, Any]) -> None:
        """Insert (or replace a row the caller may update)."""
        existing = await self._metadata.get(collection, id)
        if existing is None:
            self._check(collection, Action.INSERT, {**data, "id": id})
        else:
            if not self._visible(collection, existing):
                raise AuthorizationError(f"save on {collection} denied")
            self._check(collection, Action.UPDATE, existing)
            self._check(collection, Action.UPDATE, {**data, "id": id})
        await self._metadata.save(collection, id, data)

    async def update(self, collection: str, id: str, updates: dict[str, Any]) -> bool:
        """
        Partial update. The caller must be allowed to update the row as it
        is and as it would be, so a kid cannot hand their row to someone
        else.
        """
        existing = await self._metadata.get(collection, id)
        if existing is None or not self._visible(collection, existing):
            return False
        self._check(collection, Action.UPDATE, existing)
        self._check(collection, Action.UPDATE, {**existing, **updates})
        return await self._metadata.update(collection, id, updates)

    async def delete(self, collection: str, id: str) -> bool:
        existing = await self._metadata.get(collection, id)
        if existing is None or not self._visible(collection, existing):
            return False
        self._check(collection, Action.DELETE, existing)
        return await self._metadata.delete(collection, id)
