"""Announcement creation with fan-out to every active user."""

from typing import Any
from uuid import UUID

import asyncpg

from nest.core.logging_config import get_logger
from nest.services.dispatch import dispatch_to_users
from nest.services.notifications import create_notifications_for_users
from nest.services.preferences import CHANNEL_IN_APP, resolve_channels
from nest.services.users import display_name, list_active_users

logger = get_logger(__name__)

ANNOUNCEMENT_EVENT = "announcements"
PUSH_BODY_LIMIT = 120


async def create_announcement(
    conn: asyncpg.Connection, title: str, content: str, author_id: UUID
) -> dict[str, Any] | None:
    result = await conn.fetchrow(
        """
        INSERT INTO announcements (title, content, created_by)
        VALUES ($1, $2, $3)
        RETURNING id, title, content, created_by, created_at
        """,
        title,
        content,
        author_id,
    )
    return dict(result) if result else None


def _preview(content: str) -> str:
    if len(content) <= PUSH_BODY_LIMIT:
        return content
    return content[: PUSH_BODY_LIMIT - 3].rstrip() + "..."


async def publish_announcement(
    conn: asyncpg.Connection,
    title: str,
    content: str,
    author: dict[str, Any],
    base_url: str | None = None,
) -> dict[str, Any]:
    """
    Store an announcement and notify every active user.

    The announcement row is the business action. Per-recipient delivery
    failures are collected in ``errors`` and never undo it.

    Returns:
        dict with ``announcement``, ``notifications_sent``, ``emails_sent``,
        ``pushes_queued`` and ``errors``
    """
    announcement = await create_announcement(conn, title, content, author["id"])
    announcement_id = str(announcement["id"])
    author_name = display_name(author, "Admin")
    logger.info(f"Announcement {announcement_id} created by {author['id']}")

    errors: list[str] = []
    try:
        users = await list_active_users(conn)
    except Exception as e:
        logger.error(f"Could not load announcement recipients: {e}")
        return {
            "announcement": announcement,
            "notifications_sent": 0,
            "emails_sent": 0,
            "pushes_queued": 0,
            "errors": [f"Recipients: {e}"],
        }

    in_app_ids = [
        user["id"] for user in users if CHANNEL_IN_APP in resolve_channels(user, ANNOUNCEMENT_EVENT)
    ]
    in_app = await create_notifications_for_users(
        conn,
        in_app_ids,
        notification_type="Announcement",
        title=f"📢 {title}",
        message=_preview(content),
        metadata={"announcementId": announcement_id},
        link="/announcements",
        category="Announcement",
    )
    errors.extend(in_app["errors"])

    summary = await dispatch_to_users(
        conn,
        users,
        ANNOUNCEMENT_EVENT,
        lambda user: {
            "email": {
                "template": "announcement",
                "params": {
                    "user_name": display_name(user),
                    "announcement_title": title,
                    "announcement_content": content,
                    "author_name": author_name,
                    "announcement_id": announcement_id,
                },
            },
            "push": {
                "title": f"📢 {title}",
                "body": _preview(content),
                "data": {"type": "announcement", "announcement_id": announcement_id, "url": "/announcements"},
            },
        },
        base_url=base_url,
    )
    errors.extend(summary["errors"])

    return {
        "announcement": announcement,
        "notifications_sent": in_app["created"],
        "emails_sent": summary["email"]["sent"],
        "pushes_queued": summary["push"]["sent"],
        "errors": errors,
    }
