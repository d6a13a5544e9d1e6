"""Web Push subscription, send and worker routes."""

from typing import Annotated, Any
from uuid import UUID

import asyncpg
from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field, field_validator

from nest.api.deps import get_base_url, get_current_user, require_admin, verify_cron_secret
from nest.core.config import get_settings
from nest.core.database import get_db
from nest.core.logging_config import get_logger
from nest.core.responses import error_response, success_response
from nest.services.push_queue import enqueue_push
from nest.services.push_tokens import delete_user_push_token, has_push_token, register_push_token
from nest.services.push_worker import process_push_queue
from nest.services.web_push import (
    PushConfigurationError,
    PushDeliveryError,
    parse_subscription,
)

router = APIRouter(prefix="/push", tags=["Push"])
logger = get_logger(__name__)
settings = get_settings()


class PushSubscriptionRequest(BaseModel):
    """Browser PushSubscription JSON."""

    subscription: dict[str, Any]
    client_info: dict[str, Any] | None = None

    @field_validator("subscription")
    @classmethod
    def validate_subscription(cls, v: dict[str, Any]) -> dict[str, Any]:
        try:
            parse_subscription(v)
        except PushDeliveryError as e:
            raise ValueError(str(e)) from e
        return v


class PushUnsubscribeRequest(BaseModel):
    """Only the endpoint is required so malformed stored rows can still be removed."""

    subscription: dict[str, Any]

    @field_validator("subscription")
    @classmethod
    def validate_endpoint(cls, v: dict[str, Any]) -> dict[str, Any]:
        if not v.get("endpoint"):
            raise ValueError("Subscription must include an endpoint")
        return v


class PushSendRequest(BaseModel):
    user_id: UUID
    title: str = Field(..., min_length=1, max_length=200)
    body: str = Field(..., min_length=1, max_length=1000)
    data: dict[str, Any] | None = None


@router.get("/vapid-public-key")
async def vapid_public_key():
    if not settings.VAPID_PUBLIC_KEY:
        error_response(
            "Push notifications are not configured",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )
    return success_response(data={"public_key": settings.VAPID_PUBLIC_KEY})


@router.post("/subscribe", status_code=status.HTTP_201_CREATED)
async def subscribe(
    request: PushSubscriptionRequest,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: Annotated[dict, Depends(get_current_user)],
):
    """Register (or re-register) this browser for push."""
    token = await register_push_token(
        conn, current_user["id"], request.subscription, request.client_info
    )
    logger.info(f"Push subscription registered for user: {current_user['id']}")
    return success_response(data={"id": token["id"] if token else None}, message="Subscribed")


@router.post("/unsubscribe")
async def unsubscribe(
    request: PushUnsubscribeRequest,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: Annotated[dict, Depends(get_current_user)],
):
    removed = await delete_user_push_token(conn, current_user["id"], request.subscription)
    return success_response(data={"removed": removed}, message="Unsubscribed")


@router.get("/subscription")
async def subscription_status(
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: Annotated[dict, Depends(get_current_user)],
):
    subscribed = await has_push_token(conn, current_user["id"])
    return success_response(data={"subscribed": subscribed})


@router.post("/send")
async def send_push(
    request: PushSendRequest,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    admin: Annotated[dict, Depends(require_admin)],
    base_url: Annotated[str, Depends(get_base_url)],
):
    """Queue a push notification for one user (admin only)."""
    result = await enqueue_push(
        conn, request.user_id, request.title, request.body, request.data, base_url=base_url
    )
    if not result["success"]:
        error_response(
            "Failed to queue push notification",
            errors={"queue": result["error"]},
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
    logger.info(f"Push queued for user {request.user_id} by admin {admin['id']}")
    return success_response(data={"job_id": result["job_id"]}, message="Push notification queued")


@router.get("/worker", dependencies=[Depends(verify_cron_secret)])
async def push_worker(
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
):
    """
    Process one batch of pending push jobs.

    Invoked on a schedule and after each enqueue. Terminal jobs are never
    touched, so repeated calls are safe.

    **Response:**
    ```json
    {"processed": 3, "sent": 2, "failed": 1}
    ```
    """
    try:
        return await process_push_queue(conn)
    except PushConfigurationError as e:
        logger.error(f"Push worker misconfigured: {e}")
        error_response(str(e), status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)
