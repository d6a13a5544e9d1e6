"""
Notification preference resolution.

Preferences live on ``profiles.notification_preferences`` as a nested mapping
``channel -> event_key -> bool``. Anything the user has not explicitly turned
off is on: only a stored boolean ``False`` disables a channel for an event.
"""

import json
from typing import Any
from uuid import UUID

import asyncpg

CHANNEL_IN_APP = "in_app"
CHANNEL_EMAIL = "email"
CHANNEL_PUSH = "push"

CHANNELS: tuple[str, ...] = (CHANNEL_IN_APP, CHANNEL_EMAIL, CHANNEL_PUSH)

EVENT_KEYS: tuple[str, ...] = (
    "gear_requests",
    "gear_approvals",
    "gear_rejections",
    "gear_checkins",
    "gear_checkouts",
    "overdue_reminders",
    "reservation_reminders",
    "due_date_reminders",
    "maintenance_alerts",
    "system_notifications",
    "announcements",
    "car_bookings",
    "security_alerts",
)


def _coerce_preferences(preferences: Any) -> dict[str, Any]:
    """Accept the column as a dict, a JSON string, or nothing."""
    if not preferences:
        return {}
    if isinstance(preferences, str):
        try:
            preferences = json.loads(preferences)
        except (json.JSONDecodeError, TypeError):
            return {}
    if not isinstance(preferences, dict):
        return {}
    return preferences


def should_notify(preferences: Any, channel: str, event_key: str) -> bool:
    """
    Decide whether ``channel`` is enabled for ``event_key``.

    Pure function over already-fetched data. Returns False only when the
    stored value is exactly the boolean ``False``; missing channels, missing
    keys and non-boolean values all resolve to enabled.
    """
    channel_prefs = _coerce_preferences(preferences).get(channel)
    if not isinstance(channel_prefs, dict):
        return True
    return channel_prefs.get(event_key) is not False


def channel_available(profile: dict | None, channel: str) -> bool:
    """A recipient without a profile, or email without an address, cannot be reached."""
    if not profile:
        return False
    if channel == CHANNEL_EMAIL:
        return bool((profile.get("email") or "").strip())
    return True


def resolve_channels(profile: dict | None, event_key: str) -> set[str]:
    """Return the set of channels a recipient should receive ``event_key`` on."""
    if not profile:
        return set()
    preferences = profile.get("notification_preferences")
    return {
        channel
        for channel in CHANNELS
        if channel_available(profile, channel)
        and should_notify(preferences, channel, event_key)
    }


def default_preferences() -> dict[str, dict[str, bool]]:
    """Full preference mapping with every channel and event enabled."""
    return {channel: {key: True for key in EVENT_KEYS} for channel in CHANNELS}


def merge_preferences(stored: Any) -> dict[str, dict[str, bool]]:
    """Overlay stored values on the defaults, using the same coercion as should_notify."""
    merged = default_preferences()
    stored_prefs = _coerce_preferences(stored)
    for channel, events in merged.items():
        for key in events:
            events[key] = should_notify(stored_prefs, channel, key)
    return merged


def validate_preference_update(updates: dict[str, Any]) -> dict[str, str]:
    """Return field errors for unknown channels, unknown keys or non-boolean values."""
    errors: dict[str, str] = {}
    for channel, events in updates.items():
        if channel not in CHANNELS:
            errors[channel] = "Unknown notification channel"
            continue
        if not isinstance(events, dict):
            errors[channel] = "Expected a mapping of event keys to booleans"
            continue
        for key, value in events.items():
            field = f"{channel}.{key}"
            if key not in EVENT_KEYS:
                errors[field] = "Unknown notification event"
            elif not isinstance(value, bool):
                errors[field] = "Expected a boolean"
    return errors


async def get_notification_preferences(
    conn: asyncpg.Connection, user_id: UUID
) -> dict[str, dict[str, bool]] | None:
    """Load a user's effective preferences, or None if the profile does not exist."""
    row = await conn.fetchrow(
        "SELECT notification_preferences FROM profiles WHERE id = $1",
        user_id,
    )
    if row is None:
        return None
    return merge_preferences(row["notification_preferences"])


async def update_notification_preferences(
    conn: asyncpg.Connection,
    user_id: UUID,
    updates: dict[str, dict[str, bool]],
) -> dict[str, dict[str, bool]] | None:
    """Partially update stored preferences and return the effective result."""
    row = await conn.fetchrow(
        "SELECT notification_preferences FROM profiles WHERE id = $1",
        user_id,
    )
    if row is None:
        return None

    stored = _coerce_preferences(row["notification_preferences"])
    for channel, events in updates.items():
        channel_prefs = stored.get(channel)
        if not isinstance(channel_prefs, dict):
            channel_prefs = {}
        channel_prefs.update(events)
        stored[channel] = channel_prefs

    await conn.execute(
        """
        UPDATE profiles
        SET notification_preferences = $1, updated_at = CURRENT_TIMESTAMP
        WHERE id = $2
        """,
        stored,
        user_id,
    )
    return merge_preferences(stored)
