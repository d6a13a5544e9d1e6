"""
Gear request, check-in and car booking status changes and their notifications.

The status update is committed first. Notification fan-out afterwards runs
under ``_after_commit`` and never changes the outcome reported to the caller.
"""

from datetime import UTC, datetime, timedelta
from typing import Any, Awaitable
from uuid import UUID

import asyncpg

from nest.core.config import get_settings
from nest.core.logging_config import get_logger
from nest.services.chat_webhook import ChatEventType, notify_chat
from nest.services.dispatch import dispatch_to_user, dispatch_to_users, send_to_addresses
from nest.services.email_templates import format_date
from nest.services.users import display_name, get_profile, list_active_admins

logger = get_logger(__name__)
settings = get_settings()

DURATION_DELTAS = {
    "24hours": timedelta(hours=24),
    "48hours": timedelta(hours=48),
    "72hours": timedelta(hours=72),
    "1 week": timedelta(days=7),
    "2 weeks": timedelta(days=14),
    "Month": timedelta(days=30),
    "1year": timedelta(days=365),
}
DEFAULT_DURATION = timedelta(days=7)

STATUS_APPROVED = "Approved"
STATUS_REJECTED = "Rejected"
CHECKIN_COMPLETED = "Completed"


def calculate_due_date(duration: str | None, now: datetime | None = None) -> datetime:
    """Due date for a request approved at ``now`` (UTC); unknown durations get a week."""
    now = now or datetime.now(UTC)
    return now + DURATION_DELTAS.get(duration or "", DEFAULT_DURATION)


def gear_label(gear_list: list[dict[str, Any]]) -> str:
    names = []
    for gear in gear_list:
        quantity = gear.get("quantity") or 1
        names.append(f"{gear['name']} (x{quantity})" if quantity > 1 else gear["name"])
    return ", ".join(names) or "equipment"


def _actor(admin: dict[str, Any] | None) -> dict[str, Any]:
    return {
        "admin_name": display_name(admin, "Admin"),
        "admin_email": (admin or {}).get("email") or "N/A",
    }


async def _after_commit(label: str, notifications: Awaitable[Any]) -> Any:
    """Await post-commit notifications; failures are logged, never raised."""
    try:
        return await notifications
    except Exception as e:
        logger.error(f"{label} notifications failed: {e}", exc_info=True)
        return None


async def notify_admins(
    conn: asyncpg.Connection,
    event_key: str,
    title: str,
    message: str,
    details: dict[str, Any],
    in_app_type: str | None = None,
    link: str = "/admin/manage-requests",
    base_url: str | None = None,
) -> dict[str, Any]:
    """Send an ``admin_alert`` email (and optionally an in-app row) to every active admin."""
    admins = await list_active_admins(conn)

    def build(_admin: dict[str, Any]) -> dict[str, Any]:
        built: dict[str, Any] = {
            "email": {
                "template": "admin_alert",
                "params": {"title": title, "message": message, "details": details},
            }
        }
        if in_app_type:
            built["in_app"] = {
                "type": in_app_type,
                "title": title,
                "message": message,
                "link": link,
                "category": "admin",
            }
        return built

    return await dispatch_to_users(conn, admins, event_key, build, base_url=base_url)


# -- Gear requests -----------------------------------------------------------


async def get_gear_request(
    conn: asyncpg.Connection, request_id: UUID
) -> dict[str, Any] | None:
    result = await conn.fetchrow(
        """
        SELECT id, user_id, status, reason, destination, expected_duration,
               due_date, approved_at, admin_notes, created_at
        FROM gear_requests
        WHERE id = $1
        """,
        request_id,
    )
    return dict(result) if result else None


async def get_request_gear_list(
    conn: asyncpg.Connection, request_id: UUID
) -> list[dict[str, Any]]:
    """Requested gear names with quantities summed per name."""
    results = await conn.fetch(
        """
        SELECT g.name, SUM(GREATEST(COALESCE(rg.quantity, 1), 1))::int AS quantity
        FROM gear_request_gears rg
        JOIN gears g ON g.id = rg.gear_id
        WHERE rg.gear_request_id = $1
        GROUP BY g.name
        ORDER BY g.name
        """,
        request_id,
    )
    return [dict(row) for row in results]


async def _send_request_submitted(
    conn: asyncpg.Connection, request: dict[str, Any], base_url: str | None
) -> dict[str, Any]:
    request_id = request["id"]
    requester = await get_profile(conn, request["user_id"])
    gear_list = await get_request_gear_list(conn, request_id)
    user_name = display_name(requester, "User")
    label = gear_label(gear_list)

    requester_summary = await dispatch_to_user(
        conn,
        requester,
        "gear_requests",
        {
            "email": {
                "template": "request_received",
                "params": {"user_name": user_name, "gear_list": gear_list, "request_id": str(request_id)},
            }
        },
        base_url=base_url,
    )

    admin_summary = await notify_admins(
        conn,
        "gear_requests",
        f"New gear request from {user_name}",
        f"{user_name} requested {label}.",
        {
            "Request": str(request_id),
            "Items": label,
            "Reason": request.get("reason") or "-",
            "Destination": request.get("destination") or "-",
            "Duration": request.get("expected_duration") or "-",
        },
        in_app_type="Request",
        base_url=base_url,
    )

    notify_chat(
        ChatEventType.USER_REQUEST,
        {
            "user_name": user_name,
            "user_email": (requester or {}).get("email"),
            "gear_names": [g["name"] for g in gear_list],
            "reason": request.get("reason"),
            "destination": request.get("destination"),
            "duration": request.get("expected_duration"),
        },
    )
    return {"requester": requester_summary, "admins": admin_summary}


async def notify_request_submitted(
    conn: asyncpg.Connection, request_id: UUID, base_url: str | None = None
) -> dict[str, Any] | None:
    """
    Acknowledge a new gear request to its requester and alert the admins.

    Returns:
        Delivery summaries, or None if the request does not exist
    """
    request = await get_gear_request(conn, request_id)
    if not request:
        return None
    summaries = await _after_commit(
        f"Request {request_id} submitted", _send_request_submitted(conn, request, base_url)
    )
    return summaries or {}


async def _send_request_decision(
    conn: asyncpg.Connection,
    request: dict[str, Any],
    approved: bool,
    reason: str | None,
    due_date: datetime | None,
    admin: dict[str, Any] | None,
    base_url: str | None,
) -> dict[str, Any]:
    request_id = request["id"]
    requester = await get_profile(conn, request["user_id"])
    gear_list = await get_request_gear_list(conn, request_id)
    user_name = display_name(requester, "User")
    label = gear_label(gear_list)
    suffix = f": {reason}" if reason else "."

    if approved:
        event_key = "gear_approvals"
        message = {
            "in_app": {
                "type": "Approval",
                "title": "Gear request approved",
                "message": f"Your request for {label} has been approved. Due back {format_date(due_date)}.",
                "metadata": {"requestId": str(request_id), "dueDate": due_date.isoformat()},
                "link": "/user/my-requests",
            },
            "email": {
                "template": "request_approved",
                "params": {"user_name": user_name, "gear_list": gear_list, "due_date": due_date},
            },
            "push": {
                "title": "Gear Request Approved!",
                "body": f"Your request for {label} has been approved.",
                "data": {"request_id": str(request_id), "type": "request_approval"},
            },
        }
        admin_title = f"Gear Request Approved - {user_name}"
        details = {"User": user_name, "Equipment": label, "Due Date": format_date(due_date)}
        chat_event = ChatEventType.ADMIN_APPROVE_REQUEST
    else:
        event_key = "gear_rejections"
        message = {
            "in_app": {
                "type": "Rejection",
                "title": "Gear request rejected",
                "message": f"Your request for {label} was rejected{suffix}",
                "metadata": {"requestId": str(request_id)},
                "link": "/user/my-requests",
            },
            "email": {
                "template": "request_rejected",
                "params": {"user_name": user_name, "gear_list": gear_list, "reason": reason},
            },
            "push": {
                "title": "Gear Request Rejected",
                "body": f"Your request for {label} was rejected{suffix}",
                "data": {"request_id": str(request_id), "type": "request_rejection"},
            },
        }
        admin_title = f"Gear Request Rejected - {user_name}"
        details = {"User": user_name, "Equipment": label, "Reason": reason or "-"}
        chat_event = ChatEventType.ADMIN_REJECT_REQUEST

    summary = await dispatch_to_user(conn, requester, event_key, message, base_url=base_url)
    await notify_admins(
        conn,
        event_key,
        admin_title,
        f"A gear request has been {'approved' if approved else 'rejected'}.",
        details,
        base_url=base_url,
    )

    notify_chat(
        chat_event,
        {
            **_actor(admin),
            "user_name": user_name,
            "user_email": (requester or {}).get("email"),
            "gear_names": [g["name"] for g in gear_list],
            "due_date": due_date,
            "reason": reason,
        },
    )
    return summary


async def approve_gear_request(
    conn: asyncpg.Connection,
    request_id: UUID,
    admin: dict[str, Any] | None = None,
    base_url: str | None = None,
) -> dict[str, Any] | None:
    """
    Approve a request, then notify the requester and the admins.

    Returns:
        ``{"already": bool, "due_date", "notifications"}`` or None if not found
    """
    request = await get_gear_request(conn, request_id)
    if not request:
        return None
    if request["status"] == STATUS_APPROVED:
        return {"already": True, "due_date": request.get("due_date"), "notifications": None}

    due_date = calculate_due_date(request.get("expected_duration"))
    await conn.execute(
        """
        UPDATE gear_requests
        SET status = $2, approved_at = CURRENT_TIMESTAMP, due_date = $3,
            updated_at = CURRENT_TIMESTAMP
        WHERE id = $1
        """,
        request_id,
        STATUS_APPROVED,
        due_date,
    )
    logger.info(f"Gear request {request_id} approved, due {due_date.isoformat()}")

    summary = await _after_commit(
        f"Request {request_id} approval",
        _send_request_decision(conn, request, True, None, due_date, admin, base_url),
    )
    return {"already": False, "due_date": due_date, "notifications": summary}


async def reject_gear_request(
    conn: asyncpg.Connection,
    request_id: UUID,
    reason: str | None = None,
    admin: dict[str, Any] | None = None,
    base_url: str | None = None,
) -> dict[str, Any] | None:
    request = await get_gear_request(conn, request_id)
    if not request:
        return None
    if request["status"] == STATUS_REJECTED:
        return {"already": True, "notifications": None}

    await conn.execute(
        """
        UPDATE gear_requests
        SET status = $2, admin_notes = $3, updated_at = CURRENT_TIMESTAMP
        WHERE id = $1
        """,
        request_id,
        STATUS_REJECTED,
        reason,
    )
    logger.info(f"Gear request {request_id} rejected")

    summary = await _after_commit(
        f"Request {request_id} rejection",
        _send_request_decision(conn, request, False, reason, None, admin, base_url),
    )
    return {"already": False, "notifications": summary}


# -- Check-ins ---------------------------------------------------------------


async def get_checkin(conn: asyncpg.Connection, checkin_id: UUID) -> dict[str, Any] | None:
    result = await conn.fetchrow(
        """
        SELECT c.id, c.user_id, c.gear_id, c.status, c.checkin_date, g.name AS gear_name
        FROM checkins c
        LEFT JOIN gears g ON g.id = c.gear_id
        WHERE c.id = $1
        """,
        checkin_id,
    )
    return dict(result) if result else None


async def _send_checkin_decision(
    conn: asyncpg.Connection,
    checkin: dict[str, Any],
    approved: bool,
    reason: str | None,
    admin: dict[str, Any] | None,
    base_url: str | None,
) -> dict[str, Any]:
    checkin_id = checkin["id"]
    requester = await get_profile(conn, checkin["user_id"])
    user_name = display_name(requester, "User")
    gear_name = checkin.get("gear_name") or "equipment"
    metadata = {"checkinId": str(checkin_id), "gearName": gear_name}

    if approved:
        message = {
            "in_app": {
                "type": "Check-in",
                "title": "Check-in approved",
                "message": f"Your check-in for {gear_name} has been approved.",
                "metadata": metadata,
                "link": "/user/check-in",
            },
            "email": {
                "template": "checkin_approved",
                "params": {
                    "user_name": user_name,
                    "gear_list": [gear_name],
                    "checkin_date": checkin.get("checkin_date") or datetime.now(UTC),
                },
            },
            "push": {
                "title": "Your Check-in Was Approved!",
                "body": f"Your check-in for {gear_name} has been approved. Thank you for returning the equipment.",
                "data": {"checkin_id": str(checkin_id), "type": "checkin_approval"},
            },
        }
        chat_event = ChatEventType.ADMIN_APPROVE_CHECKIN
    else:
        suffix = f": {reason}" if reason else "."
        message = {
            "in_app": {
                "type": "Check-in",
                "title": "Check-in rejected",
                "message": f"Your check-in for {gear_name} was rejected{suffix}",
                "metadata": metadata,
                "link": "/user/check-in",
            },
            "email": {
                "template": "checkin_rejected",
                "params": {"user_name": user_name, "gear_list": [gear_name], "reason": reason},
            },
            "push": {
                "title": "Check-in Rejected",
                "body": f"Your check-in for {gear_name} was rejected{suffix}",
                "data": {"checkin_id": str(checkin_id), "type": "checkin_rejection"},
            },
        }
        chat_event = ChatEventType.ADMIN_REJECT_CHECKIN

    summary = await dispatch_to_user(conn, requester, "gear_checkins", message, base_url=base_url)

    outcome = "approved" if approved else "rejected"
    details = {"User": user_name, "Item": gear_name, "Status": outcome.capitalize()}
    if reason:
        details["Reason"] = reason
    await notify_admins(
        conn,
        "gear_checkins",
        f"Check-in {outcome.capitalize()} - {user_name}",
        f"A check-in has been {outcome}.",
        details,
        base_url=base_url,
    )

    notify_chat(
        chat_event,
        {
            **_actor(admin),
            "user_name": user_name,
            "user_email": (requester or {}).get("email"),
            "gear_names": [gear_name],
            "reason": reason,
        },
    )
    return summary


async def review_checkin(
    conn: asyncpg.Connection,
    checkin_id: UUID,
    approved: bool,
    reason: str | None = None,
    admin: dict[str, Any] | None = None,
    base_url: str | None = None,
) -> dict[str, Any] | None:
    """
    Approve or reject a check-in and notify its owner (event key ``gear_checkins``).

    Returns:
        ``{"already": bool, "notifications"}`` or None if not found
    """
    checkin = await get_checkin(conn, checkin_id)
    if not checkin:
        return None

    status = CHECKIN_COMPLETED if approved else STATUS_REJECTED
    if checkin["status"] == status:
        return {"already": True, "notifications": None}

    await conn.execute(
        """
        UPDATE checkins
        SET status = $2, notes = COALESCE($3, notes), updated_at = CURRENT_TIMESTAMP
        WHERE id = $1
        """,
        checkin_id,
        status,
        reason,
    )

    summary = await _after_commit(
        f"Check-in {checkin_id} review",
        _send_checkin_decision(conn, checkin, approved, reason, admin, base_url),
    )
    return {"already": False, "notifications": summary}


# -- Car bookings ------------------------------------------------------------


async def get_car_booking(conn: asyncpg.Connection, booking_id: UUID) -> dict[str, Any] | None:
    result = await conn.fetchrow(
        """
        SELECT id, requester_id, employee_name, date_of_use, time_slot, status
        FROM car_bookings
        WHERE id = $1
        """,
        booking_id,
    )
    return dict(result) if result else None


async def _send_car_booking_decision(
    conn: asyncpg.Connection,
    booking: dict[str, Any],
    approved: bool,
    reason: str | None,
    admin: dict[str, Any] | None,
    base_url: str | None,
) -> dict[str, Any]:
    booking_id = booking["id"]
    requester = None
    if booking.get("requester_id"):
        requester = await get_profile(conn, booking["requester_id"])
    user_name = booking.get("employee_name") or display_name(requester, "User")
    when = f"{booking['date_of_use']} ({booking['time_slot']})"
    outcome = "approved" if approved else "rejected"
    suffix = "." if approved or not reason else f": {reason}"
    verb = "has been approved" if approved else "was rejected"

    summary = await dispatch_to_user(
        conn,
        requester,
        "car_bookings",
        {
            "in_app": {
                "type": "Approval" if approved else "Rejection",
                "title": f"Car booking {outcome}",
                "message": f"Your car booking for {when} {verb}{suffix}",
                "metadata": {"bookingId": str(booking_id)},
                "link": "/user/car-booking",
            },
            "email": {
                "template": "car_booking_approved" if approved else "car_booking_rejected",
                "params": {
                    "user_name": user_name,
                    "date_of_use": booking["date_of_use"],
                    "time_slot": booking["time_slot"],
                    "reason": reason,
                },
            },
            "push": {
                "title": f"Car Booking {outcome.capitalize()}",
                "body": f"Your car booking for {when} {verb}{suffix}",
                "data": {"booking_id": str(booking_id), "type": f"car_booking_{outcome}"},
            },
        },
        base_url=base_url,
    )

    if settings.CAR_BOOKINGS_EMAIL_TO:
        details = {"Name": user_name, "Date": booking["date_of_use"], "Time": booking["time_slot"]}
        if not approved:
            details["Reason"] = reason or ""
        await send_to_addresses(
            [settings.CAR_BOOKINGS_EMAIL_TO],
            "admin_alert",
            {
                "title": f"Car booking {outcome}: {user_name}",
                "message": f"{outcome.capitalize()} car booking.",
                "details": details,
            },
        )

    notify_chat(
        ChatEventType.CAR_BOOKING_APPROVED if approved else ChatEventType.CAR_BOOKING_REJECTED,
        {
            **_actor(admin),
            "user_name": user_name,
            "user_email": (requester or {}).get("email"),
            "date_of_use": booking["date_of_use"],
            "time_slot": booking["time_slot"],
            "reason": reason,
        },
    )
    return summary


async def review_car_booking(
    conn: asyncpg.Connection,
    booking_id: UUID,
    approved: bool,
    reason: str | None = None,
    admin: dict[str, Any] | None = None,
    base_url: str | None = None,
) -> dict[str, Any] | None:
    """Approve or reject a car booking and notify the requester (``car_bookings``)."""
    booking = await get_car_booking(conn, booking_id)
    if not booking:
        return None

    status = STATUS_APPROVED if approved else STATUS_REJECTED
    if booking["status"] == status:
        return {"already": True, "notifications": None}

    admin_id = (admin or {}).get("id")
    if approved:
        await conn.execute(
            """
            UPDATE car_bookings
            SET status = $2, approved_by = $3, approved_at = CURRENT_TIMESTAMP,
                updated_at = CURRENT_TIMESTAMP
            WHERE id = $1
            """,
            booking_id,
            status,
            admin_id,
        )
    else:
        await conn.execute(
            """
            UPDATE car_bookings
            SET status = $2, rejected_by = $3, rejection_reason = $4,
                updated_at = CURRENT_TIMESTAMP
            WHERE id = $1
            """,
            booking_id,
            status,
            admin_id,
            reason,
        )

    summary = await _after_commit(
        f"Car booking {booking_id} review",
        _send_car_booking_decision(conn, booking, approved, reason, admin, base_url),
    )
    return {"already": False, "notifications": summary}
