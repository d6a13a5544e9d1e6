"""Announcement routes."""

from typing import Annotated

import asyncpg
from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from nest.api.deps import get_base_url, require_admin
from nest.core.database import get_db
from nest.core.responses import success_response
from nest.services.announcements import publish_announcement

router = APIRouter(prefix="/announcements", tags=["Announcements"])


class AnnouncementCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    content: str = Field(..., min_length=1)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_announcement_route(
    request: AnnouncementCreateRequest,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    admin: Annotated[dict, Depends(require_admin)],
    base_url: Annotated[str, Depends(get_base_url)],
):
    """
    Publish an announcement to every active user.

    **Response:**
    ```json
    {
        "success": true,
        "data": {
            "announcement": {"id": "…", "title": "Studio closed Friday"},
            "stats": {"notifications_sent": 40, "emails_sent": 38, "pushes_queued": 40, "errors": []}
        }
    }
    ```
    """
    result = await publish_announcement(
        conn, request.title, request.content, admin, base_url=base_url
    )
    announcement = result.pop("announcement")
    return success_response(
        data={"announcement": announcement, "stats": result},
        message="Announcement created",
    )
