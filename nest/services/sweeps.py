"""
Scheduled notification sweeps: overdue gear, reservation reminders and the
morning broadcast.

Overdue and reminder sweeps are safe to run more than once a day. Each
recipient (and booking, for reminders) is skipped when a notification of the
same type already exists since UTC midnight. The in-app row is always written
as that marker, even for recipients who turned the in-app channel off.
"""

from collections import defaultdict
from datetime import UTC, date, datetime, timedelta
from typing import Any

import asyncpg

from nest.core.logging_config import get_logger
from nest.services.chat_webhook import ChatEventType, notify_chat
from nest.services.dispatch import dispatch_to_user, dispatch_to_users
from nest.services.email_templates import format_date
from nest.services.gear_events import notify_admins
from nest.services.notifications import has_notification_since
from nest.services.users import display_name, get_profile, list_active_users

logger = get_logger(__name__)

OVERDUE_TYPE = "Overdue"
RESERVATION_REMINDER_TYPE = "reservation_reminder"
DUE_REMINDER_TYPE = "reservation_due_reminder"

CHECKED_OUT_STATUSES = ["Checked Out", "Partially Checked Out"]
START_REMINDER_DAYS = (0, 1, 3)
DUE_REMINDER_DAYS = (0, 1, 2)


def start_of_utc_day(now: datetime) -> datetime:
    now = now.astimezone(UTC) if now.tzinfo else now.replace(tzinfo=UTC)
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def _as_date(value: date | datetime) -> date:
    if isinstance(value, datetime):
        return (value.astimezone(UTC) if value.tzinfo else value).date()
    return value


def days_until(target: date | datetime, today: datetime) -> int:
    return (_as_date(target) - today.date()).days


def _when(days: int, noun: str) -> str:
    if days == 0:
        return f"{noun} today"
    if days == 1:
        return f"{noun} tomorrow"
    return f"{noun} in {days} days"


def _empty_result() -> dict[str, Any]:
    return {"sent": 0, "skipped": 0, "errors": []}


# -- Overdue -----------------------------------------------------------------


async def find_overdue_gear(conn: asyncpg.Connection, now: datetime) -> list[dict[str, Any]]:
    results = await conn.fetch(
        """
        SELECT id, name, due_date, checked_out_to
        FROM gears
        WHERE status = ANY($1::text[]) AND due_date < $2
        ORDER BY due_date
        """,
        CHECKED_OUT_STATUSES,
        now,
    )
    return [dict(row) for row in results]


def group_overdue_by_holder(gears: list[dict[str, Any]]) -> dict[Any, dict[str, list]]:
    """Group overdue gear by the user holding it; unassigned gear is dropped."""
    holders: dict[Any, dict[str, list]] = defaultdict(lambda: {"gear_names": [], "due_dates": []})
    for gear in gears:
        holder = gear.get("checked_out_to")
        if not holder:
            continue
        holders[holder]["gear_names"].append(gear["name"])
        holders[holder]["due_dates"].append(gear["due_date"])
    return dict(holders)


async def _notify_overdue_holder(
    conn: asyncpg.Connection,
    profile: dict[str, Any],
    gear_names: list[str],
    earliest_due: datetime,
    overdue_days: int,
    now: datetime,
    base_url: str | None,
) -> dict[str, Any]:
    user_id = profile["id"]
    user_name = display_name(profile)
    items = ", ".join(gear_names)

    summary = await dispatch_to_user(
        conn,
        profile,
        "overdue_reminders",
        {
            "in_app": {
                "type": OVERDUE_TYPE,
                "title": "Overdue Gear Notification",
                "message": f"Overdue gear: {items}",
                "metadata": {"gearNames": gear_names, "overdueDays": overdue_days},
                "link": "/user/check-in",
                "category": "System",
                "priority": "High",
            },
            "email": {
                "template": "overdue_reminder",
                "params": {
                    "user_name": user_name,
                    "gear_list": gear_names,
                    "due_date": earliest_due,
                    "overdue_days": overdue_days,
                },
            },
            "push": {
                "title": "Gear Overdue",
                "body": f"{items} is overdue by {overdue_days} day(s). Please return it as soon as possible.",
                "data": {"type": "overdue", "url": "/user/check-in"},
            },
        },
        base_url=base_url,
        force_in_app=True,
    )

    await conn.execute(
        """
        UPDATE gear_requests
        SET status = 'Overdue', updated_at = CURRENT_TIMESTAMP
        WHERE user_id = $1 AND status = ANY($2::text[]) AND due_date < $3
        """,
        user_id,
        ["Approved", *CHECKED_OUT_STATUSES],
        now,
    )

    await notify_admins(
        conn,
        "overdue_reminders",
        f"Overdue Gear Alert: {user_name}",
        f"{user_name} ({profile.get('email') or 'no email'}) has overdue gear.",
        {
            "Items": items,
            "Earliest due date": format_date(earliest_due),
            "Days overdue": overdue_days,
        },
        base_url=base_url,
    )

    notify_chat(
        ChatEventType.GEAR_OVERDUE,
        {
            "user_name": user_name,
            "user_email": profile.get("email"),
            "gear_names": gear_names,
            "due_date": earliest_due,
            "overdue_days": overdue_days,
        },
    )
    return summary


async def run_overdue_sweep(
    conn: asyncpg.Connection, now: datetime | None = None, base_url: str | None = None
) -> dict[str, Any]:
    """
    Notify every holder of overdue gear at most once per UTC day.

    Returns:
        ``{"sent": int, "skipped": int, "errors": list[str]}``
    """
    now = now or datetime.now(UTC)
    today = start_of_utc_day(now)
    result = _empty_result()

    holders = group_overdue_by_holder(await find_overdue_gear(conn, now))
    if not holders:
        logger.info("Overdue sweep: no overdue gear")
        return result

    for user_id, gear in holders.items():
        try:
            profile = await get_profile(conn, user_id)
            if not profile:
                result["skipped"] += 1
                continue
            if await has_notification_since(conn, user_id, OVERDUE_TYPE, today):
                result["skipped"] += 1
                continue

            earliest_due = min(gear["due_dates"])
            overdue_days = max((now - earliest_due).days, 0)
            summary = await _notify_overdue_holder(
                conn, profile, gear["gear_names"], earliest_due, overdue_days, now, base_url
            )
            result["sent"] += 1
            result["errors"].extend(summary["errors"])
        except Exception as e:
            logger.error(f"Overdue sweep failed for user {user_id}: {e}", exc_info=True)
            result["errors"].append(f"User {user_id}: {e}")

    logger.info(
        f"Overdue sweep: {result['sent']} notified, {result['skipped']} skipped, "
        f"{len(result['errors'])} errors"
    )
    return result


# -- Reservation reminders ---------------------------------------------------


async def find_bookings_between(
    conn: asyncpg.Connection, column: str, start: datetime, end: datetime
) -> list[dict[str, Any]]:
    """Approved calendar bookings whose ``column`` (start_date/end_date) falls in [start, end)."""
    if column not in ("start_date", "end_date"):
        raise ValueError(f"Unsupported booking column: {column}")
    results = await conn.fetch(
        f"""
        SELECT b.id, b.user_id, b.start_date, b.end_date, g.name AS gear_name
        FROM gear_calendar_bookings b
        LEFT JOIN gears g ON g.id = b.gear_id
        WHERE b.status = 'Approved' AND b.{column} >= $1 AND b.{column} < $2
        ORDER BY b.{column}
        """,
        start,
        end,
    )
    return [dict(row) for row in results]


def _start_message(booking: dict[str, Any], user_name: str, days: int) -> dict[str, Any]:
    gear_name = booking.get("gear_name") or "equipment"
    label = {0: "Today", 1: "Tomorrow"}.get(days, f"{days} days")
    return {
        "in_app": {
            "type": RESERVATION_REMINDER_TYPE,
            "title": f"Reservation Reminder: {label}",
            "message": f"Your reservation for {gear_name} {_when(days, 'starts')}.",
            "metadata": {"bookingId": str(booking["id"]), "gearName": gear_name, "daysUntilStart": days},
            "link": "/user/calendar",
            "category": "Reminder",
        },
        "email": {
            "template": "reservation_reminder",
            "params": {
                "user_name": user_name,
                "gear_name": gear_name,
                "start_date": booking["start_date"],
                "end_date": booking["end_date"],
                "days_until_start": days,
            },
        },
        "push": {
            "title": f"Reservation {_when(days, 'starts').capitalize()}",
            "body": f"Your reservation for {gear_name} {_when(days, 'starts')}.",
            "data": {"booking_id": str(booking["id"]), "type": RESERVATION_REMINDER_TYPE},
        },
    }


def _due_message(booking: dict[str, Any], user_name: str, days: int) -> dict[str, Any]:
    gear_name = booking.get("gear_name") or "equipment"
    return {
        "in_app": {
            "type": DUE_REMINDER_TYPE,
            "title": f"Return Reminder: {gear_name}",
            "message": f"Your reservation for {gear_name} {_when(days, 'ends')}. Please plan to return it.",
            "metadata": {"bookingId": str(booking["id"]), "gearName": gear_name, "daysUntilDue": days},
            "link": "/user/check-in",
            "category": "Reminder",
        },
        "email": {
            "template": "reservation_due_reminder",
            "params": {
                "user_name": user_name,
                "gear_name": gear_name,
                "end_date": booking["end_date"],
                "days_until_due": days,
            },
        },
        "push": {
            "title": f"Return {_when(days, 'due').capitalize()}",
            "body": f"Your reservation for {gear_name} {_when(days, 'ends')}.",
            "data": {"booking_id": str(booking["id"]), "type": DUE_REMINDER_TYPE},
        },
    }


async def _send_booking_reminders(
    conn: asyncpg.Connection,
    bookings: list[dict[str, Any]],
    date_column: str,
    reminder_days: tuple[int, ...],
    notification_type: str,
    event_key: str,
    build,
    today: datetime,
    base_url: str | None,
) -> dict[str, Any]:
    result = _empty_result()
    for booking in bookings:
        days = days_until(booking[date_column], today)
        if days not in reminder_days:
            continue
        try:
            if await has_notification_since(
                conn, booking["user_id"], notification_type, today, booking_id=str(booking["id"])
            ):
                result["skipped"] += 1
                continue
            profile = await get_profile(conn, booking["user_id"])
            if not profile:
                result["skipped"] += 1
                continue

            summary = await dispatch_to_user(
                conn,
                profile,
                event_key,
                build(booking, display_name(profile), days),
                base_url=base_url,
                force_in_app=True,
            )
            result["sent"] += 1
            result["errors"].extend(summary["errors"])
        except Exception as e:
            logger.error(f"Reminder failed for booking {booking['id']}: {e}", exc_info=True)
            result["errors"].append(f"Booking {booking['id']}: {e}")
    return result


async def run_reservation_reminders(
    conn: asyncpg.Connection, now: datetime | None = None, base_url: str | None = None
) -> dict[str, Any]:
    """
    Remind users of approved bookings that start in 0, 1 or 3 days and that
    end in 0, 1 or 2 days.

    Returns:
        ``{"reservation_reminders": {...}, "due_reminders": {...}}``, each
        ``{"sent", "skipped", "errors"}``
    """
    now = now or datetime.now(UTC)
    today = start_of_utc_day(now)

    starting = await find_bookings_between(
        conn, "start_date", today, today + timedelta(days=max(START_REMINDER_DAYS) + 1)
    )
    start_result = await _send_booking_reminders(
        conn,
        starting,
        "start_date",
        START_REMINDER_DAYS,
        RESERVATION_REMINDER_TYPE,
        "reservation_reminders",
        _start_message,
        today,
        base_url,
    )

    ending = await find_bookings_between(
        conn, "end_date", today, today + timedelta(days=max(DUE_REMINDER_DAYS) + 1)
    )
    due_result = await _send_booking_reminders(
        conn,
        ending,
        "end_date",
        DUE_REMINDER_DAYS,
        DUE_REMINDER_TYPE,
        "due_date_reminders",
        _due_message,
        today,
        base_url,
    )

    logger.info(
        f"Reservation reminders: {start_result['sent']} start, {due_result['sent']} due"
    )
    return {"reservation_reminders": start_result, "due_reminders": due_result}


# -- Morning broadcast -------------------------------------------------------


GOOD_MORNING_TITLE = "Good Morning! 🌅"
GOOD_MORNING_BODY = "Have a productive day at Nest by Eden Oasis. Remember to check your gear and tasks."


async def send_good_morning(
    conn: asyncpg.Connection, base_url: str | None = None
) -> dict[str, Any]:
    """Queue one push per active user who has not turned off system pushes."""
    users = await list_active_users(conn)
    summary = await dispatch_to_users(
        conn,
        users,
        "system_notifications",
        lambda _: {
            "push": {
                "title": GOOD_MORNING_TITLE,
                "body": GOOD_MORNING_BODY,
                "data": {"type": "good_morning"},
            }
        },
        base_url=base_url,
    )
    return {
        "queued": summary["push"]["sent"],
        "skipped": summary["push"]["skipped"],
        "errors": summary["errors"],
    }
