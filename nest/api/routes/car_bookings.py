"""Car booking review routes."""

from typing import Annotated
from uuid import UUID

import asyncpg
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from nest.api.deps import get_base_url, require_admin
from nest.core.database import get_db
from nest.core.responses import not_found_response, success_response
from nest.services.gear_events import review_car_booking

router = APIRouter(prefix="/car-bookings", tags=["Car Bookings"])


class RejectBookingRequest(BaseModel):
    reason: str | None = Field(None, max_length=1000)


@router.post("/{booking_id}/approve")
async def approve_car_booking_route(
    booking_id: UUID,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    admin: Annotated[dict, Depends(require_admin)],
    base_url: Annotated[str, Depends(get_base_url)],
):
    result = await review_car_booking(conn, booking_id, True, admin=admin, base_url=base_url)
    if result is None:
        not_found_response("Car booking")
    if result["already"]:
        return success_response(message="Already approved")
    return success_response(data={"notifications": result["notifications"]}, message="Car booking approved")


@router.post("/{booking_id}/reject")
async def reject_car_booking_route(
    booking_id: UUID,
    request: RejectBookingRequest,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    admin: Annotated[dict, Depends(require_admin)],
    base_url: Annotated[str, Depends(get_base_url)],
):
    result = await review_car_booking(
        conn, booking_id, False, reason=request.reason, admin=admin, base_url=base_url
    )
    if result is None:
        not_found_response("Car booking")
    if result["already"]:
        return success_response(message="Already rejected")
    return success_response(data={"notifications": result["notifications"]}, message="Car booking rejected")
