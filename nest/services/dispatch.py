"""
Multi-channel fan-out for one domain event.

For each recipient the enabled channels are resolved once, then the in-app
row and the push job are written on the request's connection (one at a time)
and all emails are sent together at the end. Nothing here raises on a
delivery failure; outcomes are counted and returned.
"""

import asyncio
from typing import Any, Callable, Iterable

import asyncpg

from nest.core.logging_config import delivery_logger, get_logger
from nest.services.email import email_service
from nest.services.notifications import create_notification
from nest.services.preferences import (
    CHANNEL_EMAIL,
    CHANNEL_IN_APP,
    CHANNEL_PUSH,
    CHANNELS,
    channel_available,
    resolve_channels,
)
from nest.services.push_queue import enqueue_push, trigger_push_worker

logger = get_logger(__name__)

# A message maps channel -> payload:
#   in_app: {"type", "title", "message", "metadata"?, "link"?, "category"?, "priority"?}
#   email:  {"template", "params"}
#   push:   {"title", "body", "data"?}
Message = dict[str, dict[str, Any]]


def empty_summary() -> dict[str, Any]:
    summary: dict[str, Any] = {
        channel: {"sent": 0, "failed": 0, "skipped": 0} for channel in CHANNELS
    }
    summary["errors"] = []
    return summary


def _record(
    summary: dict[str, Any], channel: str, user_id: Any, error: str | None
) -> None:
    if error is None:
        summary[channel]["sent"] += 1
    else:
        summary[channel]["failed"] += 1
        summary["errors"].append(f"{channel} for {user_id}: {error}")


def _skip(
    summary: dict[str, Any], channel: str, user_id: Any, reason: str, event_key: str
) -> None:
    summary[channel]["skipped"] += 1
    delivery_logger.log_skip(channel, user_id, reason, event=event_key)


async def dispatch_to_users(
    conn: asyncpg.Connection,
    profiles: Iterable[dict[str, Any] | None],
    event_key: str,
    build: Callable[[dict[str, Any]], Message],
    base_url: str | None = None,
    force_in_app: bool = False,
) -> dict[str, Any]:
    """
    Deliver one event to many recipients over their enabled channels.

    Args:
        conn: Database connection
        profiles: Recipient profiles (``id``, ``email``, ``notification_preferences``)
        event_key: Preference key governing this event
        build: Returns the per-channel message for one recipient
        base_url: Origin for the push worker ping
        force_in_app: Write the in-app row even when the recipient turned
            in-app off. Sweeps rely on that row to skip repeat sends.

    Returns:
        ``{"in_app" | "email" | "push": {"sent", "failed", "skipped"}, "errors": [...]}``
    """
    summary = empty_summary()
    emails: list[tuple[Any, str, str, dict[str, Any]]] = []
    pushes_queued = False

    for profile in profiles:
        if not profile:
            continue
        user_id = profile["id"]
        message = build(profile)
        channels = resolve_channels(profile, event_key)

        in_app = message.get(CHANNEL_IN_APP)
        if in_app:
            if CHANNEL_IN_APP in channels or force_in_app:
                try:
                    await create_notification(
                        conn,
                        user_id=user_id,
                        notification_type=in_app["type"],
                        title=in_app["title"],
                        message=in_app["message"],
                        metadata=in_app.get("metadata"),
                        link=in_app.get("link"),
                        category=in_app.get("category"),
                        priority=in_app.get("priority"),
                    )
                    delivery_logger.log_attempt(CHANNEL_IN_APP, user_id, True, event=event_key)
                    _record(summary, CHANNEL_IN_APP, user_id, None)
                except Exception as e:
                    delivery_logger.log_attempt(
                        CHANNEL_IN_APP, user_id, False, event=event_key, error=str(e)
                    )
                    _record(summary, CHANNEL_IN_APP, user_id, str(e))
            else:
                _skip(summary, CHANNEL_IN_APP, user_id, "disabled by preference", event_key)

        push = message.get(CHANNEL_PUSH)
        if push:
            if CHANNEL_PUSH in channels:
                result = await enqueue_push(
                    conn,
                    user_id,
                    push.get("title"),
                    push.get("body"),
                    push.get("data"),
                    trigger_worker=False,
                )
                if result["success"]:
                    pushes_queued = True
                _record(summary, CHANNEL_PUSH, user_id, result["error"])
            else:
                _skip(summary, CHANNEL_PUSH, user_id, "disabled by preference", event_key)

        email = message.get(CHANNEL_EMAIL)
        if email:
            if CHANNEL_EMAIL in channels:
                emails.append((user_id, profile["email"], email["template"], email.get("params") or {}))
            else:
                reason = (
                    "disabled by preference"
                    if channel_available(profile, CHANNEL_EMAIL)
                    else "no email address"
                )
                _skip(summary, CHANNEL_EMAIL, user_id, reason, event_key)

    if pushes_queued:
        trigger_push_worker(base_url)

    if emails:
        results = await asyncio.gather(
            *(
                email_service.send_templated_email(template, address, params)
                for _, address, template, params in emails
            )
        )
        for (user_id, _, _, _), result in zip(emails, results):
            _record(summary, CHANNEL_EMAIL, user_id, None if result["success"] else result["error"])

    return summary


async def dispatch_to_user(
    conn: asyncpg.Connection,
    profile: dict[str, Any] | None,
    event_key: str,
    message: Message,
    base_url: str | None = None,
    force_in_app: bool = False,
) -> dict[str, Any]:
    """Single-recipient form of ``dispatch_to_users``."""
    if not profile:
        logger.warning(f"No recipient profile for {event_key} notification")
        return empty_summary()
    return await dispatch_to_users(
        conn,
        [profile],
        event_key,
        lambda _: message,
        base_url=base_url,
        force_in_app=force_in_app,
    )


async def send_to_addresses(
    addresses: Iterable[str], template: str, params: dict[str, Any]
) -> dict[str, Any]:
    """Email fixed addresses (fleet mailbox and the like), outside any preference."""
    return await email_service.send_bulk(
        template, [{"email": address} for address in addresses if address], lambda _: params
    )
