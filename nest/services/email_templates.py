"""Transactional email templates.

Every template takes keyword parameters and returns ``(subject, html, text)``.
"""

from datetime import datetime
from html import escape
from typing import Any, Callable

from nest.core.config import settings

APP_NAME = "Nest by Eden Oasis"

_BASE_STYLE = (
    "font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Arial, sans-serif;"
    " max-width: 600px; margin: 0 auto; background-color: #ffffff;"
)


class UnknownTemplateError(KeyError):
    pass


def format_date(value: Any) -> str:
    """Render an ISO string or datetime as e.g. 'Monday, March 3, 2025 at 02:15 PM'."""
    if not value:
        return "N/A"
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return value
    if isinstance(value, datetime):
        return f"{value:%A, %B} {value.day}, {value:%Y at %I:%M %p}"
    return str(value)


def _gear_names(gear_list: Any) -> list[str]:
    if not gear_list:
        return []
    if isinstance(gear_list, str):
        return [name.strip() for name in gear_list.split(",") if name.strip()]
    names = []
    for gear in gear_list:
        if isinstance(gear, dict):
            name = gear.get("name") or "Equipment"
            quantity = gear.get("quantity")
            names.append(f"{name} (x{quantity})" if quantity and quantity > 1 else name)
        else:
            names.append(str(gear))
    return names


def _gear_list_html(gear_list: Any) -> str:
    names = _gear_names(gear_list)
    if not names:
        return "<p><em>No gear specified</em></p>"
    items = "".join(f"<li>{escape(name)}</li>" for name in names)
    return f"<ul>{items}</ul>"


def _layout(heading: str, body_html: str, action_path: str | None = None,
            action_label: str | None = None) -> str:
    action = ""
    if action_path and action_label:
        action = (
            f'<p><a href="{settings.APP_URL.rstrip("/")}{action_path}" '
            f'style="background:#667eea;color:#fff;padding:12px 24px;'
            f'border-radius:6px;text-decoration:none;">{escape(action_label)}</a></p>'
        )
    return f"""
    <!DOCTYPE html>
    <html>
      <body>
        <div style="{_BASE_STYLE}">
          <div style="background:#667eea;color:#fff;padding:30px 40px;text-align:center;">
            <h1 style="margin:0;font-size:24px;">{escape(heading)}</h1>
          </div>
          <div style="padding:40px;line-height:1.6;color:#333;">
            {body_html}
            {action}
          </div>
          <div style="background:#f7fafc;padding:20px 40px;text-align:center;">
            <p>Thank you for using <strong>{APP_NAME}</strong></p>
          </div>
        </div>
      </body>
    </html>
    """


def _greeting(user_name: str | None) -> str:
    return f"Hi {escape(user_name or 'there')},"


def request_received(user_name=None, gear_list=None, request_id=None, **_):
    names = ", ".join(_gear_names(gear_list)) or "your equipment"
    subject = "📝 Equipment Request Received - Under Review"
    html = _layout(
        "Request Received",
        f"<h2>{_greeting(user_name)}</h2>"
        "<p>We have received your equipment request. An admin will review it shortly.</p>"
        f"{_gear_list_html(gear_list)}",
        "/user/my-requests",
        "View My Requests",
    )
    text = f"{_greeting(user_name)}\n\nWe have received your request for {names}."
    return subject, html, text


def request_approved(user_name=None, gear_list=None, due_date=None, **_):
    subject = "🎉 Your Gear Request Has Been Approved - Ready for Pickup!"
    html = _layout(
        "Request Approved!",
        f"<h2>{_greeting(user_name)}</h2>"
        "<p><strong>Great news!</strong> Your gear request has been approved and is ready for pickup.</p>"
        f"{_gear_list_html(gear_list)}"
        f"<p><strong>Due Date:</strong> {escape(format_date(due_date))}</p>",
        "/user/my-requests",
        "View Request Details",
    )
    text = (
        f"{_greeting(user_name)}\n\nYour gear request has been approved.\n"
        f"Items: {', '.join(_gear_names(gear_list))}\nDue: {format_date(due_date)}"
    )
    return subject, html, text


def request_rejected(user_name=None, gear_list=None, reason=None, **_):
    reason = reason or "No specific reason provided"
    subject = "📋 Gear Request Update - Status Changed"
    html = _layout(
        "Request Update",
        f"<h2>{_greeting(user_name)}</h2>"
        "<p>Your gear request has been reviewed and cannot be approved at this time.</p>"
        f"{_gear_list_html(gear_list)}"
        f"<p><strong>Reason:</strong> {escape(reason)}</p>",
        "/user/my-requests",
        "View Request Details",
    )
    text = f"{_greeting(user_name)}\n\nYour gear request was not approved.\nReason: {reason}"
    return subject, html, text


def checkin_approved(user_name=None, gear_list=None, checkin_date=None, **_):
    subject = "✅ Equipment Check-in Approved - Thank You!"
    html = _layout(
        "Check-in Approved",
        f"<h2>{_greeting(user_name)}</h2>"
        "<p>Your equipment check-in has been approved. Thank you for returning it.</p>"
        f"{_gear_list_html(gear_list)}"
        f"<p><strong>Check-in Date:</strong> {escape(format_date(checkin_date))}</p>",
        "/user/history",
        "View History",
    )
    text = (
        f"{_greeting(user_name)}\n\nYour check-in for "
        f"{', '.join(_gear_names(gear_list))} has been approved."
    )
    return subject, html, text


def checkin_rejected(user_name=None, gear_list=None, reason=None, **_):
    reason = reason or "No specific reason provided"
    subject = "⚠️ Equipment Check-in Update - Action Required"
    html = _layout(
        "Check-in Needs Attention",
        f"<h2>{_greeting(user_name)}</h2>"
        "<p>Your equipment check-in could not be approved.</p>"
        f"{_gear_list_html(gear_list)}"
        f"<p><strong>Reason:</strong> {escape(reason)}</p>",
        "/user/check-in",
        "Review Check-in",
    )
    text = f"{_greeting(user_name)}\n\nYour check-in was rejected.\nReason: {reason}"
    return subject, html, text


def _days_label(days: int, today: str, tomorrow: str) -> str:
    if days == 0:
        return today
    if days == 1:
        return tomorrow
    return f"in {days} days"


def reservation_reminder(user_name=None, gear_name=None, start_date=None,
                         end_date=None, days_until_start=0, **_):
    gear_name = gear_name or "equipment"
    when = _days_label(days_until_start, "today", "tomorrow")
    subject = f"⏰ Reservation Reminder: {gear_name} ({when})"
    html = _layout(
        "Reservation Reminder",
        f"<h2>{_greeting(user_name)}</h2>"
        f"<p>Your reservation for <strong>{escape(gear_name)}</strong> starts {escape(when)}.</p>"
        f"<p><strong>Start:</strong> {escape(format_date(start_date))}<br>"
        f"<strong>End:</strong> {escape(format_date(end_date))}</p>",
        "/user/calendar",
        "View Reservation",
    )
    text = f"{_greeting(user_name)}\n\nYour reservation for {gear_name} starts {when}."
    return subject, html, text


def reservation_due_reminder(user_name=None, gear_name=None, end_date=None,
                             days_until_due=0, **_):
    gear_name = gear_name or "Equipment"
    when = _days_label(days_until_due, "Today", "Tomorrow")
    subject = f"📅 Return {when}: {gear_name}"
    html = _layout(
        "Return Reminder",
        f"<h2>{_greeting(user_name)}</h2>"
        f"<p>Your reservation for <strong>{escape(gear_name)}</strong> ends "
        f"{escape(when.lower())}. Please prepare to return the equipment.</p>"
        f"<p><strong>Due:</strong> {escape(format_date(end_date))}</p>",
        "/user/check-in",
        "Check-in Equipment",
    )
    text = f"{_greeting(user_name)}\n\nYour reservation for {gear_name} ends {when.lower()}."
    return subject, html, text


def overdue_reminder(user_name=None, gear_list=None, due_date=None, overdue_days=1, **_):
    plural = "s" if overdue_days != 1 else ""
    subject = f"⏰ Equipment Overdue - {overdue_days} Day{plural} Late"
    html = _layout(
        "Equipment Overdue",
        f"<h2>{_greeting(user_name)}</h2>"
        f"<p><strong>Urgent:</strong> You have equipment that is {overdue_days} day{plural} overdue.</p>"
        f"{_gear_list_html(gear_list)}"
        f"<p><strong>Original Due Date:</strong> {escape(format_date(due_date))}</p>",
        "/user/check-in",
        "Check-in Equipment Now",
    )
    text = (
        f"{_greeting(user_name)}\n\nEquipment overdue by {overdue_days} day{plural}: "
        f"{', '.join(_gear_names(gear_list))}"
    )
    return subject, html, text


def welcome(user_name=None, **_):
    subject = f"👋 Welcome to {APP_NAME}"
    html = _layout(
        "Welcome to Nest!",
        f"<h2>Hello{(' ' + escape(user_name)) if user_name else ''},</h2>"
        "<p>We're excited to have you on board. Start managing your assets and equipment with ease.</p>",
    )
    text = f"Hello{(' ' + user_name) if user_name else ''},\n\nWelcome to {APP_NAME}."
    return subject, html, text


def announcement(user_name=None, announcement_title="", announcement_content="",
                 author_name=None, announcement_id=None, **_):
    subject = f"📢 New Announcement: {announcement_title}"
    html = _layout(
        "New Announcement",
        f"<h2>{_greeting(user_name)}</h2>"
        f"<h3>{escape(announcement_title)}</h3>"
        f"<p>{escape(announcement_content)}</p>"
        f"<p><em>Posted by {escape(author_name or 'Administrator')}</em></p>",
        f"/user/announcements?announcement={announcement_id}" if announcement_id else None,
        "Read Announcement",
    )
    text = f"{announcement_title}\n\n{announcement_content}\n\n- {author_name or 'Administrator'}"
    return subject, html, text


def login_alert(user_name=None, login_time=None, **_):
    subject = "🔐 New Login Detected"
    html = _layout(
        "New Login Detected",
        f"<h2>{_greeting(user_name)}</h2>"
        f"<p>A new login to your account was detected on {escape(format_date(login_time))}.</p>"
        "<p>If this wasn't you, please contact support.</p>",
        "/user/settings",
        "Review Settings",
    )
    text = f"A new login to your account was detected on {format_date(login_time)}."
    return subject, html, text


def admin_alert(title="", message="", details=None, **_):
    rows = ""
    if details:
        rows = "<ul>" + "".join(
            f"<li><strong>{escape(str(k))}:</strong> {escape(str(v))}</li>"
            for k, v in details.items()
        ) + "</ul>"
    subject = title
    html = _layout(title, f"<p>{escape(message)}</p>{rows}", "/admin/dashboard", "Open Dashboard")
    text = f"{title}\n\n{message}"
    if details:
        text += "\n" + "\n".join(f"{k}: {v}" for k, v in details.items())
    return subject, html, text


def car_booking_approved(user_name=None, date_of_use=None, time_slot=None, **_):
    subject = f"🚗 Car Booking Approved: {date_of_use}"
    html = _layout(
        "Car Booking Approved",
        f"<h2>{_greeting(user_name)}</h2>"
        f"<p>Your car booking for {escape(str(date_of_use))} ({escape(str(time_slot))}) has been approved.</p>",
        "/user/car-booking",
        "View Booking",
    )
    text = f"Your car booking for {date_of_use} ({time_slot}) has been approved."
    return subject, html, text


def car_booking_rejected(user_name=None, date_of_use=None, time_slot=None, reason=None, **_):
    reason = reason or "No specific reason provided"
    subject = f"🚗 Car Booking Update: {date_of_use}"
    html = _layout(
        "Car Booking Update",
        f"<h2>{_greeting(user_name)}</h2>"
        f"<p>Your car booking for {escape(str(date_of_use))} ({escape(str(time_slot))}) was not approved.</p>"
        f"<p><strong>Reason:</strong> {escape(reason)}</p>",
        "/user/car-booking",
        "View Booking",
    )
    text = f"Your car booking for {date_of_use} ({time_slot}) was rejected. Reason: {reason}"
    return subject, html, text


TEMPLATES: dict[str, Callable[..., tuple[str, str, str]]] = {
    "request_received": request_received,
    "request_approved": request_approved,
    "request_rejected": request_rejected,
    "checkin_approved": checkin_approved,
    "checkin_rejected": checkin_rejected,
    "reservation_reminder": reservation_reminder,
    "reservation_due_reminder": reservation_due_reminder,
    "overdue_reminder": overdue_reminder,
    "welcome": welcome,
    "announcement": announcement,
    "login_alert": login_alert,
    "admin_alert": admin_alert,
    "car_booking_approved": car_booking_approved,
    "car_booking_rejected": car_booking_rejected,
}


def render_template(template_name: str, params: dict[str, Any]) -> tuple[str, str, str]:
    """Render a named template, raising UnknownTemplateError for unknown names."""
    template = TEMPLATES.get(template_name)
    if template is None:
        raise UnknownTemplateError(template_name)
    return template(**params)
