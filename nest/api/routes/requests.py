"""Gear request decision routes."""

from typing import Annotated
from uuid import UUID

import asyncpg
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from nest.api.deps import get_base_url, get_current_user, require_admin
from nest.core.database import get_db
from nest.core.responses import not_found_response, success_response
from nest.services.gear_events import (
    approve_gear_request,
    notify_request_submitted,
    reject_gear_request,
)

router = APIRouter(prefix="/requests", tags=["Gear Requests"])


class RejectRequest(BaseModel):
    reason: str | None = Field(None, max_length=1000)


@router.post("/{request_id}/submitted")
async def request_submitted(
    request_id: UUID,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: Annotated[dict, Depends(get_current_user)],
    base_url: Annotated[str, Depends(get_base_url)],
):
    """Acknowledge a newly created request and alert the admins."""
    result = await notify_request_submitted(conn, request_id, base_url=base_url)
    if result is None:
        not_found_response("Request")
    return success_response(data=result)


@router.post("/{request_id}/approve")
async def approve_request(
    request_id: UUID,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    admin: Annotated[dict, Depends(require_admin)],
    base_url: Annotated[str, Depends(get_base_url)],
):
    """
    Approve a gear request and set its due date from the expected duration.

    **Response:**
    ```json
    {"success": true, "data": {"due_date": "2025-01-12T10:00:00+00:00", "notifications": {...}}}
    ```
    """
    result = await approve_gear_request(conn, request_id, admin=admin, base_url=base_url)
    if result is None:
        not_found_response("Request")
    if result["already"]:
        return success_response(data={"due_date": result["due_date"]}, message="Already approved")
    return success_response(
        data={"due_date": result["due_date"], "notifications": result["notifications"]},
        message="Request approved",
    )


@router.post("/{request_id}/reject")
async def reject_request(
    request_id: UUID,
    request: RejectRequest,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    admin: Annotated[dict, Depends(require_admin)],
    base_url: Annotated[str, Depends(get_base_url)],
):
    result = await reject_gear_request(
        conn, request_id, reason=request.reason, admin=admin, base_url=base_url
    )
    if result is None:
        not_found_response("Request")
    if result["already"]:
        return success_response(message="Already rejected")
    return success_response(data={"notifications": result["notifications"]}, message="Request rejected")
