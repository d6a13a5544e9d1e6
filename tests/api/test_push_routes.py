"""
Push route tests: worker endpoint, cron guard and subscriptions.
"""

from unittest.mock import AsyncMock
from uuid import uuid4

import pytest

from nest.api.routes import push as push_routes
from nest.services.web_push import PushConfigurationError

SUBSCRIPTION = {
    "endpoint": "https://fcm.googleapis.com/fcm/send/abc123",
    "keys": {"p256dh": "key", "auth": "secret"},
}


class TestWorkerEndpoint:
    """Test GET /push/worker."""

    async def test_returns_raw_summary(self, async_client, monkeypatch):
        monkeypatch.setattr(
            push_routes,
            "process_push_queue",
            AsyncMock(return_value={"processed": 3, "sent": 2, "failed": 1}),
        )

        response = await async_client.get("/push/worker")

        assert response.status_code == 200
        assert response.json() == {"processed": 3, "sent": 2, "failed": 1}

    async def test_versioned_path(self, async_client, monkeypatch):
        monkeypatch.setattr(
            push_routes,
            "process_push_queue",
            AsyncMock(return_value={"processed": 0, "sent": 0, "failed": 0}),
        )

        response = await async_client.get("/v1/push/worker")

        assert response.status_code == 200

    async def test_cron_secret_required(self, async_client, monkeypatch, cron_secret):
        process = AsyncMock(return_value={"processed": 0, "sent": 0, "failed": 0})
        monkeypatch.setattr(push_routes, "process_push_queue", process)

        missing = await async_client.get("/push/worker")
        wrong = await async_client.get("/push/worker", headers={"Authorization": "Bearer nope"})
        ok = await async_client.get(
            "/push/worker", headers={"Authorization": f"Bearer {cron_secret}"}
        )

        assert missing.status_code == 401
        assert wrong.status_code == 401
        assert missing.json()["success"] is False
        assert ok.status_code == 200
        process.assert_awaited_once()

    async def test_vapid_missing(self, async_client, monkeypatch):
        monkeypatch.setattr(
            push_routes,
            "process_push_queue",
            AsyncMock(side_effect=PushConfigurationError("VAPID keys not configured")),
        )

        response = await async_client.get("/push/worker")

        assert response.status_code == 500
        body = response.json()
        assert body["success"] is False
        assert body["message"] == "VAPID keys not configured"


class TestSubscriptions:
    async def test_public_key(self, async_client, vapid_keys):
        response = await async_client.get("/push/vapid-public-key")

        assert response.status_code == 200
        assert response.json()["data"]["public_key"] == "test-public-key"

    async def test_public_key_unconfigured(self, async_client, monkeypatch, test_settings):
        monkeypatch.setattr(test_settings, "VAPID_PUBLIC_KEY", "")

        response = await async_client.get("/push/vapid-public-key")

        assert response.status_code == 503

    async def test_subscribe(self, async_client, as_user, monkeypatch):
        token_id = uuid4()
        register = AsyncMock(return_value={"id": token_id})
        monkeypatch.setattr(push_routes, "register_push_token", register)

        response = await async_client.post(
            "/push/subscribe",
            json={"subscription": SUBSCRIPTION, "client_info": {"userAgent": "Firefox"}},
        )

        assert response.status_code == 201
        assert response.json()["data"]["id"] == str(token_id)
        _, user_id, subscription, client_info = register.call_args[0]
        assert user_id == as_user["id"]
        assert subscription == SUBSCRIPTION
        assert client_info == {"userAgent": "Firefox"}

    async def test_subscribe_requires_endpoint(self, async_client, as_user):
        response = await async_client.post(
            "/push/subscribe", json={"subscription": {"keys": {}}}
        )

        assert response.status_code == 422
        assert response.json()["message"] == "Validation failed"

    @pytest.mark.parametrize(
        "keys",
        ["oops", {"p256dh": "key"}, {"p256dh": 123, "auth": "secret"}, {"p256dh": "", "auth": "secret"}],
    )
    async def test_subscribe_requires_usable_keys(self, async_client, as_user, monkeypatch, keys):
        register = AsyncMock()
        monkeypatch.setattr(push_routes, "register_push_token", register)

        response = await async_client.post(
            "/push/subscribe",
            json={"subscription": {"endpoint": SUBSCRIPTION["endpoint"], "keys": keys}},
        )

        assert response.status_code == 422
        register.assert_not_called()

    async def test_unsubscribe_needs_only_endpoint(self, async_client, as_user, monkeypatch):
        """Rows stored before keys were checked can still be removed."""
        delete = AsyncMock(return_value=True)
        monkeypatch.setattr(push_routes, "delete_user_push_token", delete)
        stale = {"endpoint": SUBSCRIPTION["endpoint"], "keys": "oops"}

        response = await async_client.post("/push/unsubscribe", json={"subscription": stale})

        assert response.status_code == 200
        assert response.json()["data"] == {"removed": True}
        assert delete.call_args[0][2] == stale


class TestAdminSend:
    async def test_requires_admin(self, async_client, as_user):
        response = await async_client.post(
            "/push/send", json={"user_id": str(uuid4()), "title": "Hi", "body": "There"}
        )

        assert response.status_code == 403

    async def test_queues_job(self, async_client, as_admin, monkeypatch):
        job_id = uuid4()
        enqueue = AsyncMock(return_value={"success": True, "error": None, "job_id": job_id})
        monkeypatch.setattr(push_routes, "enqueue_push", enqueue)
        user_id = uuid4()

        response = await async_client.post(
            "/push/send", json={"user_id": str(user_id), "title": "Hi", "body": "There"}
        )

        assert response.status_code == 200
        assert response.json()["data"]["job_id"] == str(job_id)
        assert enqueue.call_args[0][1] == user_id
        assert enqueue.call_args.kwargs["base_url"] == "http://testserver"

    @pytest.mark.parametrize("payload", [{"title": "Hi", "body": "There"}, {"user_id": "x", "title": "", "body": "b"}])
    async def test_invalid_payload(self, async_client, as_admin, payload):
        response = await async_client.post("/push/send", json=payload)
        assert response.status_code == 422
