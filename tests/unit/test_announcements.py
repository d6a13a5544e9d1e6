"""
Unit tests for announcement publishing and account event notifications.
"""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

from nest.services import account_events, announcements
from nest.services.account_events import send_login_alert, send_welcome
from nest.services.announcements import publish_announcement
from nest.services.dispatch import empty_summary


class TestPublishAnnouncement:
    async def test_fan_out_respects_in_app_preference(self, mock_conn, monkeypatch, profile_factory):
        announcement_id = uuid4()
        mock_conn.fetchrow.return_value = {"id": announcement_id, "title": "Studio closed"}
        opted_in = profile_factory()
        opted_out = profile_factory(preferences={"in_app": {"announcements": False}})
        monkeypatch.setattr(announcements, "list_active_users", AsyncMock(return_value=[opted_in, opted_out]))
        create_many = AsyncMock(return_value={"created": 1, "failed": 0, "errors": []})
        monkeypatch.setattr(announcements, "create_notifications_for_users", create_many)
        summary = empty_summary()
        summary["email"]["sent"] = 2
        summary["push"]["sent"] = 1
        summary["errors"] = ["push for x: db down"]
        dispatch = AsyncMock(return_value=summary)
        monkeypatch.setattr(announcements, "dispatch_to_users", dispatch)

        result = await publish_announcement(
            mock_conn, "Studio closed", "Closed Friday for maintenance.", {"id": uuid4(), "full_name": "Efua"}
        )

        assert create_many.call_args[0][1] == [opted_in["id"]]
        assert create_many.call_args.kwargs["metadata"] == {"announcementId": str(announcement_id)}
        assert result["notifications_sent"] == 1
        assert result["emails_sent"] == 2
        assert result["pushes_queued"] == 1
        assert result["errors"] == ["push for x: db down"]

        build = dispatch.call_args[0][3]
        message = build(opted_in)
        assert set(message) == {"email", "push"}
        assert message["email"]["params"]["author_name"] == "Efua"

    async def test_long_content_preview(self, mock_conn, monkeypatch):
        mock_conn.fetchrow.return_value = {"id": uuid4()}
        monkeypatch.setattr(announcements, "list_active_users", AsyncMock(return_value=[]))
        create_many = AsyncMock(return_value={"created": 0, "failed": 0, "errors": []})
        monkeypatch.setattr(announcements, "create_notifications_for_users", create_many)
        dispatch = AsyncMock(return_value=empty_summary())
        monkeypatch.setattr(announcements, "dispatch_to_users", dispatch)

        await publish_announcement(mock_conn, "Title", "x" * 500, {"id": uuid4()})

        preview = create_many.call_args.kwargs["message"]
        assert len(preview) == announcements.PUSH_BODY_LIMIT
        assert preview.endswith("...")


class TestAccountEvents:
    async def test_login_alert_channels(self, mock_conn, monkeypatch, profile_factory):
        dispatch = AsyncMock(return_value=empty_summary())
        monkeypatch.setattr(account_events, "dispatch_to_user", dispatch)
        profile = profile_factory()

        await send_login_alert(mock_conn, profile, login_time=datetime(2025, 3, 3, 14, 15, tzinfo=UTC))

        _, recipient, event_key, message = dispatch.call_args[0]
        assert recipient is profile
        assert event_key == "security_alerts"
        assert set(message) == {"in_app", "email", "push"}
        assert message["email"]["template"] == "login_alert"
        assert "Monday, March 3, 2025 at 02:15 PM" in message["in_app"]["message"]

    async def test_welcome_posts_to_chat(self, mock_conn, monkeypatch, profile_factory):
        dispatch = AsyncMock(return_value=empty_summary())
        chat = MagicMock()
        monkeypatch.setattr(account_events, "dispatch_to_user", dispatch)
        monkeypatch.setattr(account_events, "notify_chat", chat)

        await send_welcome(mock_conn, profile_factory(full_name="Yaw"))

        assert dispatch.call_args[0][2] == "system_notifications"
        event_type, payload = chat.call_args[0]
        assert event_type == account_events.ChatEventType.USER_SIGNUP
        assert payload["user_name"] == "Yaw"
