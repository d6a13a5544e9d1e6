"""Current-user notification settings routes."""

from typing import Annotated, Any

import asyncpg
from fastapi import APIRouter, Body, Depends, status

from nest.api.deps import get_current_user
from nest.core.database import get_db
from nest.core.logging_config import get_logger
from nest.core.responses import error_response, not_found_response, success_response
from nest.services.preferences import (
    get_notification_preferences,
    update_notification_preferences,
    validate_preference_update,
)

router = APIRouter(prefix="/users", tags=["Users"])
logger = get_logger(__name__)


@router.get("/me/notification-preferences", response_model=dict)
async def get_notification_preferences_route(
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: Annotated[dict, Depends(get_current_user)],
):
    """
    Get the current user's effective notification preferences.

    Keys the user never set are reported as enabled.

    **Response:**
    ```json
    {
        "success": true,
        "data": {
            "in_app": {"gear_approvals": true, "...": true},
            "email": {"gear_checkins": false, "...": true},
            "push": {"system_notifications": true, "...": true}
        }
    }
    ```
    """
    preferences = await get_notification_preferences(conn, current_user["id"])
    if preferences is None:
        not_found_response("Profile")
    return success_response(data=preferences)


@router.put("/me/notification-preferences", response_model=dict)
async def update_notification_preferences_route(
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: Annotated[dict, Depends(get_current_user)],
    updates: Annotated[dict[str, Any], Body()],
):
    """
    Partially update notification preferences.

    **Request Body:**
    ```json
    {"email": {"gear_checkins": false}, "push": {"system_notifications": false}}
    ```
    """
    errors = validate_preference_update(updates)
    if errors:
        error_response(
            "Invalid notification preferences",
            errors=errors,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        )

    preferences = await update_notification_preferences(conn, current_user["id"], updates)
    if preferences is None:
        not_found_response("Profile")

    logger.info(f"Notification preferences updated for user: {current_user['id']}")
    return success_response(data=preferences, message="Preferences updated")
