"""
Household routes - chores, assignments and kids.

Every read and write goes through RowFilteredStorage, so what a caller gets
back is already limited to what the policies allow. Handlers never re-check
ownership themselves.
"""

from __future__ import annotations

import logging
from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel

from familypanel.auth.capabilities import Role
from familypanel.auth.context import AuthContext
from familypanel.auth.policies import require_auth, require_role
from familypanel.core.models import Chore, ChoreAssignment, PrincipalResponse
from familypanel.core.utils import utc_now
from familypanel.storage.base import Collections
from familypanel.storage.filtered import RowFilteredStorage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["household"])


def get_row_storage(
    request: Request,
    ctx: AuthContext = Depends(require_auth()),
) -> RowFilteredStorage:
    """The caller's policy-filtered view of the store."""
    return RowFilteredStorage(request.app.state.storage.metadata, request.app.state.policies, ctx)


# =============================================================================
# Request/Response Models
# =============================================================================


class ChoresResponse(BaseModel):
    chores: list[Chore]


class AssignmentsResponse(BaseModel):
    assignments: list[ChoreAssignment]


class AssignmentResponse(BaseModel):
    assignment: ChoreAssignment


class KidsResponse(BaseModel):
    kids: list[PrincipalResponse]


class SetPinRequest(BaseModel):
    pin: str


# =============================================================================
# Chores
# =============================================================================


@router.get("/chores", response_model=ChoresResponse)
async def list_chores(data: RowFilteredStorage = Depends(get_row_storage)):
    rows = await data.query(Collections.CHORES, limit=1000)
    return ChoresResponse(chores=[Chore.model_validate(r) for r in rows])


# =============================================================================
# Chore assignments
# =============================================================================


@router.get("/chore-assignments", response_model=AssignmentsResponse)
async def list_assignments(
    user_id: str | None = Query(default=None, alias="userId"),
    assigned_date: date | None = Query(default=None, alias="date"),
    data: RowFilteredStorage = Depends(get_row_storage),
):
    """
    Assignments the caller can see, optionally narrowed to one kid or day.

    A kid asking for another kid's assignments gets an empty list.
    """
    filters: dict[str, str] = {}
    if user_id:
        filters["user_id"] = user_id
    if assigned_date:
        filters["assigned_date"] = assigned_date.isoformat()

    rows = await data.query(Collections.CHORE_ASSIGNMENTS, filters or None, limit=1000)
    return AssignmentsResponse(assignments=[ChoreAssignment.model_validate(r) for r in rows])


@router.get("/chore-assignments/{assignment_id}", response_model=AssignmentResponse)
async def get_assignment(
    assignment_id: str,
    data: RowFilteredStorage = Depends(get_row_storage),
):
    row = await data.get(Collections.CHORE_ASSIGNMENTS, assignment_id)
    if row is None:
        raise HTTPException(status_code=404, detail="Assignment not found")
    return AssignmentResponse(assignment=ChoreAssignment.model_validate(row))


async def _set_completed(data: RowFilteredStorage, assignment_id: str, completed: bool) -> ChoreAssignment:
    now = utc_now()
    updates = {
        "completed": completed,
        "completed_at": now.isoformat() if completed else None,
        "updated_at": now.isoformat(),
    }
    if not await data.update(Collections.CHORE_ASSIGNMENTS, assignment_id, updates):
        raise HTTPException(status_code=404, detail="Assignment not found")

    row = await data.get(Collections.CHORE_ASSIGNMENTS, assignment_id)
    logger.info(
        f"Assignment {assignment_id} marked {'complete' if completed else 'incomplete'} "
        f"by {data.ctx.principal_id}"
    )
    return ChoreAssignment.model_validate(row)


@router.patch("/chore-assignments/{assignment_id}/complete", response_model=AssignmentResponse)
async def complete_assignment(
    assignment_id: str,
    data: RowFilteredStorage = Depends(get_row_storage),
):
    """Mark done. The assigned kid or any parent."""
    return AssignmentResponse(assignment=await _set_completed(data, assignment_id, True))


@router.patch("/chore-assignments/{assignment_id}/uncomplete", response_model=AssignmentResponse)
async def uncomplete_assignment(
    assignment_id: str,
    data: RowFilteredStorage = Depends(get_row_storage),
):
    return AssignmentResponse(assignment=await _set_completed(data, assignment_id, False))


# =============================================================================
# Users (parents only)
# =============================================================================


@router.get("/users/kids", response_model=KidsResponse)
async def list_kids(
    ctx: AuthContext = Depends(require_role(Role.PARENT)),
    data: RowFilteredStorage = Depends(get_row_storage),
):
    rows = await data.query(Collections.USERS, {"role": Role.KID.value}, limit=1000)
    kids = [
        PrincipalResponse(id=r["id"], name=r["name"], email=r["email"], role=r["role"])
        for r in rows
    ]
    return KidsResponse(kids=kids)


@router.put("/users/{principal_id}/pin")
async def set_kid_pin(
    principal_id: str,
    body: SetPinRequest,
    request: Request,
    ctx: AuthContext = Depends(require_role(Role.PARENT)),
):
    """Set or reset a kid's PIN. The PIN must be exactly four digits."""
    await request.app.state.credentials.set_pin(principal_id, body.pin)
    logger.info(f"PIN for {principal_id} set by {ctx.principal_id}")
    return {"success": True}
