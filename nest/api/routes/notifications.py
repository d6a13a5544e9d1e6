"""Notification routes: in-app inbox, account events and scheduled sweeps."""

from typing import Annotated
from uuid import UUID

import asyncpg
from fastapi import APIRouter, Depends, HTTPException, Query, status

from nest.api.deps import get_base_url, get_current_user, verify_cron_secret
from nest.core.database import get_db
from nest.core.responses import paginated_response, success_response
from nest.services.account_events import send_login_alert, send_welcome
from nest.services.notifications import (
    count_user_notifications,
    get_unread_count,
    get_user_notifications,
    mark_all_read,
    mark_notification_read,
)
from nest.services.sweeps import run_overdue_sweep, run_reservation_reminders, send_good_morning

router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.get("")
async def get_notifications(
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: Annotated[dict, Depends(get_current_user)],
    unread_only: bool = Query(False, description="Show only unread notifications"),
    page: int = Query(1, ge=1, description="Page number"),
    limit: int = Query(50, ge=1, le=100, description="Items per page"),
):
    """
    Get the current user's notifications, newest first.

    **Response:**
    ```json
    {
        "success": true,
        "data": {
            "data": [
                {
                    "id": "…",
                    "type": "Approval",
                    "title": "Gear request approved",
                    "message": "Your request for Canon R5 has been approved.",
                    "is_read": false,
                    "link": "/user/my-requests",
                    "metadata": {"requestId": "…"},
                    "created_at": "2025-01-05T10:00:00Z"
                }
            ],
            "pagination": {"page": 1, "limit": 50, "total": 1, "total_pages": 1},
            "unread_count": 1
        }
    }
    ```
    """
    user_id = current_user["id"]
    notifications = await get_user_notifications(
        conn,
        user_id=user_id,
        unread_only=unread_only,
        limit=limit,
        offset=(page - 1) * limit,
    )
    total = await count_user_notifications(conn, user_id, unread_only=unread_only)
    unread_count = await get_unread_count(conn, user_id)

    return paginated_response(
        notifications, page=page, limit=limit, total=total, unread_count=unread_count
    )


@router.get("/unread-count")
async def unread_count(
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: Annotated[dict, Depends(get_current_user)],
):
    count = await get_unread_count(conn, current_user["id"])
    return success_response(data={"unread_count": count})


@router.put("/read-all", response_model=dict)
async def mark_all_read_route(
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: Annotated[dict, Depends(get_current_user)],
):
    """Mark all of the current user's notifications as read."""
    count = await mark_all_read(conn, current_user["id"])
    return success_response(data={"count": count}, message="All notifications marked as read")


@router.put("/{notification_id}/read", response_model=dict)
async def mark_read(
    notification_id: UUID,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: Annotated[dict, Depends(get_current_user)],
):
    success = await mark_notification_read(
        conn, notification_id=notification_id, user_id=current_user["id"]
    )

    if not success:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found"
        )

    return success_response(message="Notification marked as read")


@router.post("/login")
async def login_alert(
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: Annotated[dict, Depends(get_current_user)],
    base_url: Annotated[str, Depends(get_base_url)],
):
    """Record a login alert for the caller (in-app, email and push)."""
    summary = await send_login_alert(conn, current_user, base_url=base_url)
    return success_response(data=summary, message="Login notification sent")


@router.post("/welcome")
async def welcome(
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: Annotated[dict, Depends(get_current_user)],
    base_url: Annotated[str, Depends(get_base_url)],
):
    summary = await send_welcome(conn, current_user, base_url=base_url)
    return success_response(data=summary, message="Welcome notification sent")


@router.post("/overdue-sweep", dependencies=[Depends(verify_cron_secret)])
async def overdue_sweep(
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    base_url: Annotated[str, Depends(get_base_url)],
):
    """
    Notify holders of overdue gear. Safe to call more than once a day.

    **Response:**
    ```json
    {"success": true, "data": {"sent": 2, "skipped": 1, "errors": []}}
    ```
    """
    result = await run_overdue_sweep(conn, base_url=base_url)
    return success_response(data=result, message="Overdue notifications processed")


@router.post("/reservation-reminders", dependencies=[Depends(verify_cron_secret)])
async def reservation_reminders(
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    base_url: Annotated[str, Depends(get_base_url)],
):
    result = await run_reservation_reminders(conn, base_url=base_url)
    return success_response(data=result, message="Reservation reminders processed")


@router.get("/good-morning", dependencies=[Depends(verify_cron_secret)])
async def good_morning(
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    base_url: Annotated[str, Depends(get_base_url)],
):
    result = await send_good_morning(conn, base_url=base_url)
    return success_response(
        data=result, message=f"Good morning notifications queued for {result['queued']} users"
    )
