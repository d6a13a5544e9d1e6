"""
Unit tests for in-app notification service functions.
"""

from datetime import UTC, datetime
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest

from nest.services import notifications
from nest.services.notifications import (
    create_notification,
    create_notifications_for_users,
    has_notification_since,
    mark_all_read,
    mark_notification_read,
)


class TestCreateNotification:
    async def test_insert_parameters(self, mock_conn):
        """Metadata defaults to an empty mapping."""
        user_id = uuid4()
        mock_conn.fetchrow.return_value = {"id": uuid4(), "user_id": user_id}

        result = await create_notification(
            mock_conn, user_id, "Approval", "Approved", "Your request was approved"
        )

        assert result["user_id"] == user_id
        args = mock_conn.fetchrow.call_args[0]
        assert args[1:] == (user_id, "Approval", "Approved", "Your request was approved", {}, None, None, None)


class TestFanOut:
    """Test that one failing recipient does not stop the rest."""

    async def test_failure_isolated(self, mock_conn, monkeypatch):
        user_ids = [uuid4() for _ in range(5)]
        written = []

        async def fake_create(conn, user_id, **kwargs):
            if user_id == user_ids[2]:
                raise RuntimeError("insert failed")
            written.append(user_id)
            return {"id": uuid4(), "user_id": user_id}

        monkeypatch.setattr(notifications, "create_notification", fake_create)

        result = await create_notifications_for_users(
            mock_conn, user_ids, "Announcement", "Studio closed", "Closed on Friday"
        )

        assert result["created"] == 4
        assert result["failed"] == 1
        assert len(result["errors"]) == 1
        assert str(user_ids[2]) in result["errors"][0]
        assert written == [uid for i, uid in enumerate(user_ids) if i != 2]

    async def test_empty_recipients(self, mock_conn):
        result = await create_notifications_for_users(mock_conn, [], "Announcement", "t", "m")
        assert result == {"created": 0, "failed": 0, "errors": []}


class TestIdempotencyLookup:
    async def test_without_booking(self, mock_conn):
        mock_conn.fetchval.return_value = True
        since = datetime(2025, 1, 5, tzinfo=UTC)

        assert await has_notification_since(mock_conn, uuid4(), "Overdue", since) is True
        query = mock_conn.fetchval.call_args[0][0]
        assert "bookingId" not in query

    async def test_with_booking(self, mock_conn):
        mock_conn.fetchval.return_value = False
        booking_id = uuid4()

        result = await has_notification_since(
            mock_conn, uuid4(), "reservation_reminder", datetime.now(UTC), booking_id=booking_id
        )

        assert result is False
        args = mock_conn.fetchval.call_args[0]
        assert "bookingId" in args[0]
        assert args[-1] == str(booking_id)


class TestReadState:
    @pytest.mark.parametrize("status, expected", [("UPDATE 1", True), ("UPDATE 0", False)])
    async def test_mark_read(self, mock_conn, status, expected):
        mock_conn.execute = AsyncMock(return_value=status)
        assert await mark_notification_read(mock_conn, uuid4(), uuid4()) is expected

    async def test_mark_all_read_count(self, mock_conn):
        mock_conn.execute = AsyncMock(return_value="UPDATE 7")
        assert await mark_all_read(mock_conn, uuid4()) == 7
