"""Check-in review routes."""

from typing import Annotated
from uuid import UUID

import asyncpg
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from nest.api.deps import get_base_url, require_admin
from nest.core.database import get_db
from nest.core.responses import not_found_response, success_response
from nest.services.gear_events import review_checkin

router = APIRouter(prefix="/checkins", tags=["Check-ins"])


class RejectCheckinRequest(BaseModel):
    reason: str | None = Field(None, max_length=1000)


@router.post("/{checkin_id}/approve")
async def approve_checkin_route(
    checkin_id: UUID,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    admin: Annotated[dict, Depends(require_admin)],
    base_url: Annotated[str, Depends(get_base_url)],
):
    result = await review_checkin(conn, checkin_id, True, admin=admin, base_url=base_url)
    if result is None:
        not_found_response("Check-in")
    if result["already"]:
        return success_response(message="Already approved")
    return success_response(data={"notifications": result["notifications"]}, message="Check-in approved")


@router.post("/{checkin_id}/reject")
async def reject_checkin_route(
    checkin_id: UUID,
    request: RejectCheckinRequest,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    admin: Annotated[dict, Depends(require_admin)],
    base_url: Annotated[str, Depends(get_base_url)],
):
    result = await review_checkin(
        conn, checkin_id, False, reason=request.reason, admin=admin, base_url=base_url
    )
    if result is None:
        not_found_response("Check-in")
    if result["already"]:
        return success_response(message="Already rejected")
    return success_response(data={"notifications": result["notifications"]}, message="Check-in rejected")
