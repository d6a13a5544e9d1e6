"""
Unit tests for the push queue worker.

Queue and subscription rows live in an in-memory store; web push delivery is
replaced by a fake that answers per endpoint.
"""

import json
from uuid import uuid4

import pytest

from nest.services import push_worker
from nest.services.push_worker import NO_TOKENS_ERROR, process_push_queue
from nest.services.web_push import PushConfigurationError, PushDeliveryError, PushGoneError


@pytest.fixture
def deliveries(monkeypatch):
    """
    Fake ``send_web_push``. Map an endpoint to a status code to make it fail,
    or to an exception to raise as is; unmapped endpoints succeed. Every call
    is recorded.
    """

    class FakePushService:
        def __init__(self):
            self.responses: dict[str, int] = {}
            self.exceptions: dict[str, Exception] = {}
            self.calls: list[tuple[str, dict]] = []

        async def send(self, subscription, payload):
            endpoint = subscription["endpoint"]
            self.calls.append((endpoint, payload))
            if endpoint in self.exceptions:
                raise self.exceptions[endpoint]
            status = self.responses.get(endpoint)
            if status in (404, 410):
                raise PushGoneError(f"Push failed: {status}", status_code=status)
            if status is not None:
                raise PushDeliveryError(f"Push failed: {status}", status_code=status)

    service = FakePushService()
    monkeypatch.setattr(push_worker, "send_web_push", service.send)
    return service


class TestProcessPushQueue:
    """Test job state transitions."""

    async def test_sent(self, mock_conn, push_store, deliveries, vapid_keys):
        user_id = uuid4()
        push_store.add_token(user_id, "https://push.example.com/a")
        job = push_store.add_job(user_id, title="Request approved", data={"url": "/user/my-requests"})

        result = await process_push_queue(mock_conn)

        assert result == {"processed": 1, "sent": 1, "failed": 0}
        stored = push_store.jobs[job["id"]]
        assert stored["status"] == "sent"
        assert stored["retry_count"] == 1
        assert stored["sent_at"] is not None
        _, payload = deliveries.calls[0]
        assert payload == {"title": "Request approved", "body": "Test body", "data": {"url": "/user/my-requests"}}

    async def test_retries_until_max(self, mock_conn, push_store, deliveries, vapid_keys):
        """A transient 500 is retried; the third failed attempt is terminal."""
        user_id = uuid4()
        push_store.add_token(user_id, "https://push.example.com/a")
        deliveries.responses["https://push.example.com/a"] = 500
        job = push_store.add_job(user_id, max_retries=3)

        first = await process_push_queue(mock_conn)
        assert first == {"processed": 1, "sent": 0, "failed": 0}
        assert push_store.jobs[job["id"]]["status"] == "pending"
        assert push_store.jobs[job["id"]]["retry_count"] == 1

        await process_push_queue(mock_conn)
        assert push_store.jobs[job["id"]]["status"] == "pending"
        assert push_store.jobs[job["id"]]["retry_count"] == 2

        third = await process_push_queue(mock_conn)
        stored = push_store.jobs[job["id"]]
        assert third == {"processed": 1, "sent": 0, "failed": 1}
        assert stored["status"] == "failed"
        assert stored["retry_count"] == 3
        assert stored["error_message"].startswith("Max retries (3) reached")

        # Terminal jobs are never picked up again
        assert await process_push_queue(mock_conn) == {"processed": 0, "sent": 0, "failed": 0}
        assert len(deliveries.calls) == 3

    async def test_gone_subscription_deleted(self, mock_conn, push_store, deliveries, vapid_keys):
        """A 410 removes the subscription and fails the job without retrying."""
        user_id = uuid4()
        push_store.add_token(user_id, "https://push.example.com/stale")
        deliveries.responses["https://push.example.com/stale"] = 410
        job = push_store.add_job(user_id)

        result = await process_push_queue(mock_conn)

        assert result == {"processed": 1, "sent": 0, "failed": 1}
        assert push_store.tokens == []
        stored = push_store.jobs[job["id"]]
        assert stored["status"] == "failed"
        assert stored["error_message"] == NO_TOKENS_ERROR
        assert stored["retry_count"] == 1

    async def test_one_device_failing_does_not_block_others(
        self, mock_conn, push_store, deliveries, vapid_keys
    ):
        user_id = uuid4()
        push_store.add_token(user_id, "https://push.example.com/stale")
        good = push_store.add_token(user_id, "https://push.example.com/good")
        push_store.add_token(user_id, "https://push.example.com/flaky")
        deliveries.responses["https://push.example.com/stale"] = 404
        deliveries.responses["https://push.example.com/flaky"] = 503
        job = push_store.add_job(user_id)

        result = await process_push_queue(mock_conn)

        assert result["sent"] == 1
        assert push_store.jobs[job["id"]]["status"] == "sent"
        assert len(deliveries.calls) == 3
        remaining = {row["token"] for row in push_store.tokens}
        assert good in remaining
        assert len(remaining) == 2

    async def test_malformed_subscription_does_not_block_others(
        self, mock_conn, push_store, deliveries, vapid_keys
    ):
        """A stored subscription with unusable keys is a failed device, not a failed job."""
        user_id = uuid4()
        push_store.add_token(user_id, "https://push.example.com/good")
        push_store.tokens.append(
            {
                "id": uuid4(),
                "user_id": user_id,
                "token": json.dumps({"endpoint": "https://push.example.com/bad", "keys": "oops"}),
            }
        )
        job = push_store.add_job(user_id)

        result = await process_push_queue(mock_conn)

        assert result == {"processed": 1, "sent": 1, "failed": 0}
        assert push_store.jobs[job["id"]]["status"] == "sent"
        assert [endpoint for endpoint, _ in deliveries.calls] == ["https://push.example.com/good"]

    async def test_unexpected_device_error_does_not_block_others(
        self, mock_conn, push_store, deliveries, vapid_keys
    ):
        user_id = uuid4()
        push_store.add_token(user_id, "https://push.example.com/good")
        push_store.add_token(user_id, "https://push.example.com/broken")
        deliveries.exceptions["https://push.example.com/broken"] = AttributeError(
            "'str' object has no attribute 'get'"
        )
        job = push_store.add_job(user_id)

        result = await process_push_queue(mock_conn)

        assert result == {"processed": 1, "sent": 1, "failed": 0}
        stored = push_store.jobs[job["id"]]
        assert stored["status"] == "sent"
        assert stored["retry_count"] == 1
        assert len(deliveries.calls) == 2

    async def test_zero_max_retries_fails_after_first_attempt(
        self, mock_conn, push_store, deliveries, vapid_keys
    ):
        user_id = uuid4()
        push_store.add_token(user_id, "https://push.example.com/a")
        deliveries.responses["https://push.example.com/a"] = 500
        job = push_store.add_job(user_id, max_retries=0)

        result = await process_push_queue(mock_conn)

        assert result == {"processed": 1, "sent": 0, "failed": 1}
        assert push_store.jobs[job["id"]]["error_message"].startswith("Max retries (0) reached")

    async def test_missing_max_retries_uses_setting(
        self, mock_conn, push_store, deliveries, vapid_keys, monkeypatch, test_settings
    ):
        monkeypatch.setattr(test_settings, "PUSH_MAX_RETRIES", 1)
        user_id = uuid4()
        push_store.add_token(user_id, "https://push.example.com/a")
        deliveries.responses["https://push.example.com/a"] = 500
        job = push_store.add_job(user_id, max_retries=None)

        await process_push_queue(mock_conn)

        assert push_store.jobs[job["id"]]["error_message"].startswith("Max retries (1) reached")

    async def test_no_tokens_does_not_consume_retry(
        self, mock_conn, push_store, deliveries, vapid_keys
    ):
        job = push_store.add_job(uuid4())

        result = await process_push_queue(mock_conn)

        assert result == {"processed": 1, "sent": 0, "failed": 1}
        stored = push_store.jobs[job["id"]]
        assert stored["status"] == "failed"
        assert stored["error_message"] == NO_TOKENS_ERROR
        assert stored["retry_count"] == 0
        assert deliveries.calls == []

    async def test_claimed_elsewhere_skipped(
        self, mock_conn, push_store, deliveries, vapid_keys, monkeypatch
    ):
        user_id = uuid4()
        push_store.add_token(user_id, "https://push.example.com/a")
        push_store.add_job(user_id)

        async def lost_claim(conn, job_id):
            return None

        monkeypatch.setattr(push_worker, "claim_job", lost_claim)

        result = await process_push_queue(mock_conn)

        assert result == {"processed": 0, "sent": 0, "failed": 0}
        assert deliveries.calls == []

    async def test_job_error_isolated(
        self, mock_conn, push_store, deliveries, vapid_keys, monkeypatch
    ):
        """An unexpected error fails only the job it happened in."""
        broken_user = uuid4()
        healthy_user = uuid4()
        push_store.add_token(healthy_user, "https://push.example.com/a")
        broken = push_store.add_job(broken_user)
        healthy = push_store.add_job(healthy_user)

        original = push_store.get_push_tokens

        async def flaky_tokens(conn, user_id):
            if user_id == broken_user:
                raise RuntimeError("token lookup failed")
            return await original(conn, user_id)

        monkeypatch.setattr(push_worker, "get_push_tokens", flaky_tokens)

        result = await process_push_queue(mock_conn)

        assert result == {"processed": 2, "sent": 1, "failed": 1}
        assert push_store.jobs[broken["id"]]["status"] == "failed"
        assert "token lookup failed" in push_store.jobs[broken["id"]]["error_message"]
        assert push_store.jobs[healthy["id"]]["status"] == "sent"
        assert push_store.jobs[broken["id"]]["retry_count"] == 1

    async def test_claim_error_leaves_job_pending(
        self, mock_conn, push_store, deliveries, vapid_keys, monkeypatch
    ):
        """A job whose claim blew up was never touched, so it is not marked failed."""
        user_id = uuid4()
        push_store.add_token(user_id, "https://push.example.com/a")
        unlucky = push_store.add_job(user_id)
        lucky = push_store.add_job(user_id)

        original = push_store.claim_job

        async def flaky_claim(conn, job_id):
            if job_id == unlucky["id"]:
                raise ConnectionError("connection reset")
            return await original(conn, job_id)

        monkeypatch.setattr(push_worker, "claim_job", flaky_claim)

        result = await process_push_queue(mock_conn)

        assert result == {"processed": 1, "sent": 1, "failed": 0}
        stored = push_store.jobs[unlucky["id"]]
        assert stored["status"] == "pending"
        assert stored["retry_count"] == 0
        assert stored["error_message"] is None
        assert push_store.jobs[lucky["id"]]["status"] == "sent"

    async def test_invalid_stored_token(self, mock_conn, push_store, deliveries, vapid_keys):
        """An unparseable token counts as a failed device, not a crash."""
        user_id = uuid4()
        push_store.tokens.append({"id": uuid4(), "user_id": user_id, "token": "not-json"})
        job = push_store.add_job(user_id, max_retries=1)

        result = await process_push_queue(mock_conn)

        assert result["failed"] == 1
        assert push_store.jobs[job["id"]]["error_message"].startswith("Max retries (1) reached")

    async def test_batch_size(self, mock_conn, push_store, deliveries, vapid_keys):
        user_id = uuid4()
        push_store.add_token(user_id, "https://push.example.com/a")
        for _ in range(5):
            push_store.add_job(user_id)

        result = await process_push_queue(mock_conn, batch_size=2)

        assert result["processed"] == 2
        statuses = [job["status"] for job in push_store.jobs.values()]
        assert statuses.count("pending") == 3

    async def test_vapid_missing(self, mock_conn, push_store, deliveries, monkeypatch, test_settings):
        monkeypatch.setattr(test_settings, "VAPID_PUBLIC_KEY", "")
        monkeypatch.setattr(test_settings, "VAPID_PRIVATE_KEY", "")
        push_store.add_job(uuid4())

        with pytest.raises(PushConfigurationError):
            await process_push_queue(mock_conn)

        assert all(job["status"] == "pending" for job in push_store.jobs.values())
