"""
Best-effort event messages to the team chat webhook.

Posts happen in detached tasks; failures are logged and never reach the
caller.
"""

import asyncio
from datetime import datetime
from enum import Enum
from typing import Any, Callable

import httpx

from nest.core.config import get_settings
from nest.core.logging_config import get_logger

logger = get_logger(__name__)
settings = get_settings()

WEBHOOK_TIMEOUT_SECONDS = 5.0

_background_tasks: set[asyncio.Task] = set()


class ChatEventType(str, Enum):
    USER_REQUEST = "USER_REQUEST"
    USER_SIGNUP = "USER_SIGNUP"
    ADMIN_APPROVE_REQUEST = "ADMIN_APPROVE_REQUEST"
    ADMIN_REJECT_REQUEST = "ADMIN_REJECT_REQUEST"
    ADMIN_APPROVE_CHECKIN = "ADMIN_APPROVE_CHECKIN"
    ADMIN_REJECT_CHECKIN = "ADMIN_REJECT_CHECKIN"
    GEAR_OVERDUE = "GEAR_OVERDUE"
    CAR_BOOKING_APPROVED = "CAR_BOOKING_APPROVED"
    CAR_BOOKING_REJECTED = "CAR_BOOKING_REJECTED"


def _timestamp(value: Any = None) -> str:
    if isinstance(value, datetime):
        return f"{value:%b} {value.day}, {value:%Y, %I:%M %p}"
    if value:
        return str(value)
    return _timestamp(datetime.now())


def _items(payload: dict[str, Any]) -> str:
    return ", ".join(payload.get("gear_names") or []) or "N/A"


def _person(payload: dict[str, Any], prefix: str) -> str:
    return f"{payload.get(f'{prefix}_name', 'Unknown')} ({payload.get(f'{prefix}_email', 'N/A')})"


MESSAGE_TEMPLATES: dict[ChatEventType, Callable[[dict[str, Any]], list[str]]] = {
    ChatEventType.USER_REQUEST: lambda p: [
        "**[Request Submitted]**",
        f"- **User:** {_person(p, 'user')}",
        f"- **Items:** {_items(p)}",
        f"- **Reason:** {p.get('reason', 'N/A')}",
        f"- **Destination:** {p.get('destination', 'N/A')}",
        f"- **Duration:** {p.get('duration', 'N/A')}",
    ],
    ChatEventType.USER_SIGNUP: lambda p: [
        "**[New User Signup]**",
        f"- **User:** {_person(p, 'user')}",
    ],
    ChatEventType.ADMIN_APPROVE_REQUEST: lambda p: [
        "**[Request Approved]**",
        f"- **Admin:** {_person(p, 'admin')}",
        f"- **User:** {_person(p, 'user')}",
        f"- **Items:** {_items(p)}",
        f"- **Due:** {_timestamp(p.get('due_date'))}",
    ],
    ChatEventType.ADMIN_REJECT_REQUEST: lambda p: [
        "**[Request Rejected]**",
        f"- **Admin:** {_person(p, 'admin')}",
        f"- **User:** {_person(p, 'user')}",
        f"- **Items:** {_items(p)}",
        f"- **Reason:** {p.get('reason', 'N/A')}",
    ],
    ChatEventType.ADMIN_APPROVE_CHECKIN: lambda p: [
        "**[Check-in Approved]**",
        f"- **Admin:** {_person(p, 'admin')}",
        f"- **User:** {_person(p, 'user')}",
        f"- **Items:** {_items(p)}",
    ],
    ChatEventType.ADMIN_REJECT_CHECKIN: lambda p: [
        "**[Check-in Rejected]**",
        f"- **Admin:** {_person(p, 'admin')}",
        f"- **User:** {_person(p, 'user')}",
        f"- **Items:** {_items(p)}",
        f"- **Reason:** {p.get('reason', 'N/A')}",
    ],
    ChatEventType.GEAR_OVERDUE: lambda p: [
        "**[Gear Overdue]**",
        f"- **User:** {_person(p, 'user')}",
        f"- **Items:** {_items(p)}",
        f"- **Due:** {_timestamp(p.get('due_date'))}",
        f"- **Overdue by:** {p.get('overdue_days', '?')} days",
    ],
    ChatEventType.CAR_BOOKING_APPROVED: lambda p: [
        "**[Car Booking Approved]**",
        f"- **Admin:** {_person(p, 'admin')}",
        f"- **User:** {_person(p, 'user')}",
        f"- **Date:** {p.get('date_of_use', 'N/A')} ({p.get('time_slot', 'N/A')})",
    ],
    ChatEventType.CAR_BOOKING_REJECTED: lambda p: [
        "**[Car Booking Rejected]**",
        f"- **Admin:** {_person(p, 'admin')}",
        f"- **User:** {_person(p, 'user')}",
        f"- **Date:** {p.get('date_of_use', 'N/A')}",
        f"- **Reason:** {p.get('reason', 'N/A')}",
    ],
}


def render_chat_message(event_type: ChatEventType, payload: dict[str, Any]) -> str:
    lines = MESSAGE_TEMPLATES[ChatEventType(event_type)](payload)
    lines.append(f"- **Timestamp:** {_timestamp(payload.get('timestamp'))}")
    return "\n".join(lines)


def webhook_url() -> str | None:
    """Production uses the main webhook; elsewhere only the dev webhook is used."""
    if settings.ENVIRONMENT == "production":
        return settings.GOOGLE_CHAT_WEBHOOK_URL or settings.GOOGLE_CHAT_WEBHOOK_URL_DEV or None
    return settings.GOOGLE_CHAT_WEBHOOK_URL_DEV or None


async def _post(url: str, message: str) -> None:
    try:
        async with httpx.AsyncClient(timeout=WEBHOOK_TIMEOUT_SECONDS) as client:
            response = await client.post(url, json={"text": message})
            response.raise_for_status()
    except Exception as e:
        logger.error(f"Chat webhook error: {e}")


def notify_chat(event_type: ChatEventType, payload: dict[str, Any]) -> asyncio.Task | None:
    """
    Post an event message without waiting for it.

    Returns the detached task, or None when the message was not sent.
    """
    url = webhook_url()
    if not url:
        logger.debug(f"Chat webhook not configured, skipping {event_type}")
        return None

    try:
        message = render_chat_message(event_type, payload)
    except (KeyError, ValueError):
        logger.error(f"No chat template for event type: {event_type}")
        return None

    task = asyncio.create_task(_post(url, message))
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task
