"""Login alert and welcome notifications for the current user."""

from datetime import UTC, datetime
from typing import Any

import asyncpg

from nest.services.chat_webhook import ChatEventType, notify_chat
from nest.services.dispatch import dispatch_to_user
from nest.services.email_templates import format_date
from nest.services.users import display_name


async def send_login_alert(
    conn: asyncpg.Connection,
    profile: dict[str, Any],
    login_time: datetime | None = None,
    base_url: str | None = None,
) -> dict[str, Any]:
    login_time = login_time or datetime.now(UTC)
    message = (
        f"A new login to your account was detected on {format_date(login_time)}. "
        "If this wasn't you, please contact support."
    )
    return await dispatch_to_user(
        conn,
        profile,
        "security_alerts",
        {
            "in_app": {
                "type": "Login Alert",
                "title": "New Login Detected",
                "message": message,
                "category": "Security",
                "link": "/user/settings",
            },
            "email": {
                "template": "login_alert",
                "params": {"user_name": display_name(profile), "login_time": login_time},
            },
            "push": {
                "title": "New Login Detected",
                "body": message,
                "data": {"url": "/user/settings", "type": "login_alert"},
            },
        },
        base_url=base_url,
    )


async def send_welcome(
    conn: asyncpg.Connection, profile: dict[str, Any], base_url: str | None = None
) -> dict[str, Any]:
    """Welcome a newly signed-up user and tell the team chat about them."""
    user_name = display_name(profile)
    summary = await dispatch_to_user(
        conn,
        profile,
        "system_notifications",
        {
            "in_app": {
                "type": "Welcome",
                "title": "Welcome to Nest by Eden Oasis!",
                "message": "Your account is ready. Browse available gear and submit your first request.",
                "link": "/user/dashboard",
                "category": "System",
            },
            "email": {"template": "welcome", "params": {"user_name": user_name}},
        },
        base_url=base_url,
    )
    notify_chat(
        ChatEventType.USER_SIGNUP,
        {"user_name": user_name, "user_email": profile.get("email")},
    )
    return summary
