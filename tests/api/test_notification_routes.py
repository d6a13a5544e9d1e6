"""
Notification, preference and decision route tests.
"""

from unittest.mock import AsyncMock
from uuid import uuid4

import pytest

from nest.api.routes import notifications as notification_routes
from nest.api.routes import requests as request_routes
from nest.api.routes import users as user_routes
from nest.services.dispatch import empty_summary


class TestInbox:
    """Test the in-app inbox endpoints."""

    async def test_list(self, async_client, as_user, monkeypatch):
        rows = [{"id": str(uuid4()), "type": "Approval", "title": "Approved", "is_read": False}]
        monkeypatch.setattr(notification_routes, "get_user_notifications", AsyncMock(return_value=rows))
        monkeypatch.setattr(notification_routes, "count_user_notifications", AsyncMock(return_value=1))
        monkeypatch.setattr(notification_routes, "get_unread_count", AsyncMock(return_value=1))

        response = await async_client.get("/notifications", params={"page": 1, "limit": 10})

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["data"] == rows
        assert data["pagination"] == {"page": 1, "limit": 10, "total": 1, "total_pages": 1}
        assert data["unread_count"] == 1

    async def test_mark_read_not_found(self, async_client, as_user, monkeypatch):
        monkeypatch.setattr(notification_routes, "mark_notification_read", AsyncMock(return_value=False))

        response = await async_client.put(f"/notifications/{uuid4()}/read")

        assert response.status_code == 404
        assert response.json()["message"] == "Notification not found"

    async def test_mark_all_read(self, async_client, as_user, monkeypatch):
        mark_all = AsyncMock(return_value=4)
        monkeypatch.setattr(notification_routes, "mark_all_read", mark_all)

        response = await async_client.put("/notifications/read-all")

        assert response.status_code == 200
        assert response.json()["data"] == {"count": 4}
        assert mark_all.call_args[0][1] == as_user["id"]


class TestAccountEvents:
    async def test_login_alert(self, async_client, as_user, monkeypatch):
        send = AsyncMock(return_value=empty_summary())
        monkeypatch.setattr(notification_routes, "send_login_alert", send)

        response = await async_client.post("/notifications/login")

        assert response.status_code == 200
        assert send.call_args[0][1] == as_user
        assert send.call_args.kwargs["base_url"] == "http://testserver"


class TestSweepEndpoints:
    """Scheduled endpoints are guarded by the cron secret."""

    async def test_overdue_sweep(self, async_client, monkeypatch, cron_secret):
        sweep = AsyncMock(return_value={"sent": 2, "skipped": 1, "errors": []})
        monkeypatch.setattr(notification_routes, "run_overdue_sweep", sweep)

        unauthorized = await async_client.post("/notifications/overdue-sweep")
        response = await async_client.post(
            "/notifications/overdue-sweep", headers={"Authorization": f"Bearer {cron_secret}"}
        )

        assert unauthorized.status_code == 401
        assert response.status_code == 200
        assert response.json()["data"] == {"sent": 2, "skipped": 1, "errors": []}
        sweep.assert_awaited_once()

    async def test_good_morning(self, async_client, monkeypatch):
        monkeypatch.setattr(
            notification_routes,
            "send_good_morning",
            AsyncMock(return_value={"queued": 5, "skipped": 1, "errors": []}),
        )

        response = await async_client.get("/notifications/good-morning")

        assert response.status_code == 200
        assert response.json()["message"] == "Good morning notifications queued for 5 users"


class TestPreferences:
    async def test_get(self, async_client, as_user, monkeypatch):
        monkeypatch.setattr(
            user_routes,
            "get_notification_preferences",
            AsyncMock(return_value={"email": {"gear_checkins": False}}),
        )

        response = await async_client.get("/users/me/notification-preferences")

        assert response.status_code == 200
        assert response.json()["data"]["email"]["gear_checkins"] is False

    async def test_update_rejects_unknown_keys(self, async_client, as_user, monkeypatch):
        update = AsyncMock()
        monkeypatch.setattr(user_routes, "update_notification_preferences", update)

        response = await async_client.put(
            "/users/me/notification-preferences", json={"email": {"gear_checkins": "off"}}
        )

        assert response.status_code == 422
        assert "email.gear_checkins" in response.json()["errors"]
        update.assert_not_called()

    async def test_update(self, async_client, as_user, monkeypatch):
        update = AsyncMock(return_value={"email": {"gear_checkins": False}})
        monkeypatch.setattr(user_routes, "update_notification_preferences", update)

        response = await async_client.put(
            "/users/me/notification-preferences", json={"email": {"gear_checkins": False}}
        )

        assert response.status_code == 200
        assert update.call_args[0][2] == {"email": {"gear_checkins": False}}


class TestRequestDecisions:
    async def test_approve_requires_admin(self, async_client, as_user):
        response = await async_client.post(f"/requests/{uuid4()}/approve")
        assert response.status_code == 403

    async def test_approve_twice(self, async_client, as_admin, monkeypatch):
        monkeypatch.setattr(
            request_routes,
            "approve_gear_request",
            AsyncMock(return_value={"already": True, "due_date": None, "notifications": None}),
        )

        response = await async_client.post(f"/requests/{uuid4()}/approve")

        assert response.status_code == 200
        assert response.json()["message"] == "Already approved"

    @pytest.mark.parametrize("action", ["approve", "reject"])
    async def test_not_found(self, async_client, as_admin, monkeypatch, action):
        monkeypatch.setattr(request_routes, "approve_gear_request", AsyncMock(return_value=None))
        monkeypatch.setattr(request_routes, "reject_gear_request", AsyncMock(return_value=None))

        kwargs = {"json": {"reason": "No"}} if action == "reject" else {}
        response = await async_client.post(f"/requests/{uuid4()}/{action}", **kwargs)

        assert response.status_code == 404


class TestHealth:
    async def test_database_down(self, async_client, monkeypatch):
        from nest import main

        class BrokenPool:
            async def __aenter__(self):
                raise ConnectionError("no database")

            async def __aexit__(self, *exc):
                return False

        monkeypatch.setattr(main, "get_db_connection", lambda: BrokenPool())

        response = await async_client.get("/health")

        assert response.status_code == 503
        assert response.json()["data"]["checks"]["database"]["status"] == "unhealthy"
