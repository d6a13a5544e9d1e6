"""In-app notification service functions."""

from datetime import datetime
from typing import Any
from uuid import UUID

import asyncpg

from nest.core.logging_config import delivery_logger, get_logger
from nest.services.preferences import CHANNEL_IN_APP

logger = get_logger(__name__)

NOTIFICATION_COLUMNS = """
    id, user_id, type, title, message, is_read, link, metadata,
    category, priority, created_at, updated_at
"""


async def create_notification(
    conn: asyncpg.Connection,
    user_id: UUID,
    notification_type: str,
    title: str,
    message: str,
    metadata: dict[str, Any] | None = None,
    link: str | None = None,
    category: str | None = None,
    priority: str | None = None,
) -> dict | None:
    """Insert one in-app notification. Database errors propagate to the caller."""
    result = await conn.fetchrow(
        f"""
        INSERT INTO notifications
            (user_id, type, title, message, metadata, link, category, priority)
        VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
        RETURNING {NOTIFICATION_COLUMNS}
        """,
        user_id,
        notification_type,
        title,
        message,
        metadata or {},
        link,
        category,
        priority,
    )
    return dict(result) if result else None


async def create_notifications_for_users(
    conn: asyncpg.Connection,
    user_ids: list[UUID],
    notification_type: str,
    title: str,
    message: str,
    metadata: dict[str, Any] | None = None,
    link: str | None = None,
    category: str | None = None,
    priority: str | None = None,
) -> dict[str, Any]:
    """
    Fan one notification out to many recipients.

    Each insert is independent: a failure for one recipient is recorded and
    the remaining recipients are still processed.

    Returns:
        ``{"created": int, "failed": int, "errors": list[str]}``
    """
    created = 0
    errors: list[str] = []

    for user_id in user_ids:
        try:
            await create_notification(
                conn,
                user_id=user_id,
                notification_type=notification_type,
                title=title,
                message=message,
                metadata=metadata,
                link=link,
                category=category,
                priority=priority,
            )
            created += 1
            delivery_logger.log_attempt(
                CHANNEL_IN_APP, user_id, True, event=notification_type
            )
        except Exception as e:
            errors.append(f"Notification for {user_id}: {e}")
            delivery_logger.log_attempt(
                CHANNEL_IN_APP, user_id, False, event=notification_type, error=str(e)
            )

    return {"created": created, "failed": len(errors), "errors": errors}


async def has_notification_since(
    conn: asyncpg.Connection,
    user_id: UUID,
    notification_type: str,
    since: datetime,
    booking_id: str | None = None,
) -> bool:
    """Check whether a notification of this type was already recorded since ``since``."""
    if booking_id is not None:
        result = await conn.fetchval(
            """
            SELECT EXISTS (
                SELECT 1 FROM notifications
                WHERE user_id = $1 AND type = $2 AND created_at >= $3
                  AND metadata->>'bookingId' = $4
            )
            """,
            user_id,
            notification_type,
            since,
            str(booking_id),
        )
    else:
        result = await conn.fetchval(
            """
            SELECT EXISTS (
                SELECT 1 FROM notifications
                WHERE user_id = $1 AND type = $2 AND created_at >= $3
            )
            """,
            user_id,
            notification_type,
            since,
        )
    return bool(result)


async def get_user_notifications(
    conn: asyncpg.Connection,
    user_id: UUID,
    unread_only: bool = False,
    limit: int = 50,
    offset: int = 0,
) -> list[dict]:
    """Get notifications for a user, newest first."""
    unread_clause = "AND is_read = FALSE" if unread_only else ""
    results = await conn.fetch(
        f"""
        SELECT {NOTIFICATION_COLUMNS}
        FROM notifications
        WHERE user_id = $1 {unread_clause}
        ORDER BY created_at DESC LIMIT $2 OFFSET $3
        """,
        user_id,
        limit,
        offset,
    )
    return [dict(row) for row in results]


async def count_user_notifications(
    conn: asyncpg.Connection, user_id: UUID, unread_only: bool = False
) -> int:
    unread_clause = "AND is_read = FALSE" if unread_only else ""
    result = await conn.fetchval(
        f"SELECT COUNT(*) FROM notifications WHERE user_id = $1 {unread_clause}",
        user_id,
    )
    return result or 0


async def get_unread_count(conn: asyncpg.Connection, user_id: UUID) -> int:
    """Get count of unread notifications for a user."""
    return await count_user_notifications(conn, user_id, unread_only=True)


async def mark_notification_read(
    conn: asyncpg.Connection,
    notification_id: UUID,
    user_id: UUID,
) -> bool:
    """Mark a notification as read. Scoped to its recipient."""
    result = await conn.execute(
        """
        UPDATE notifications
        SET is_read = TRUE, updated_at = CURRENT_TIMESTAMP
        WHERE id = $1 AND user_id = $2
        """,
        notification_id,
        user_id,
    )
    return int(result.split()[-1]) > 0


async def mark_all_read(conn: asyncpg.Connection, user_id: UUID) -> int:
    """Mark all notifications as read for a user."""
    result = await conn.execute(
        """
        UPDATE notifications
        SET is_read = TRUE, updated_at = CURRENT_TIMESTAMP
        WHERE user_id = $1 AND is_read = FALSE
        """,
        user_id,
    )
    return int(result.split()[-1])
