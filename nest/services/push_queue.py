"""
Push notification queue (push_notification_queue) service functions.

Jobs move pending -> processing -> sent | failed, with processing -> pending
while retries remain. ``enqueue_push`` is the only producer; the worker in
``nest.services.push_worker`` is the only consumer.
"""

import asyncio
from typing import Any
from uuid import UUID

import asyncpg
import httpx

from nest.core.config import get_settings
from nest.core.logging_config import get_logger

logger = get_logger(__name__)
settings = get_settings()

STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_SENT = "sent"
STATUS_FAILED = "failed"

TERMINAL_STATUSES = (STATUS_SENT, STATUS_FAILED)

QUEUE_COLUMNS = """
    id, user_id, title, body, data, status, retry_count, max_retries,
    error_message, created_at, sent_at
"""

WORKER_PATH = "/push/worker"

# Detached worker pings; referenced here so they are not garbage collected mid-flight
_background_tasks: set[asyncio.Task] = set()


async def enqueue_push(
    conn: asyncpg.Connection,
    user_id: UUID | None,
    title: str | None,
    body: str | None,
    data: dict[str, Any] | None = None,
    trigger_worker: bool = True,
    base_url: str | None = None,
) -> dict[str, Any]:
    """
    Queue one push notification for a user.

    Args:
        conn: Database connection
        user_id: Recipient profile id
        title: Notification title
        body: Notification body
        data: Extra payload merged into the client push payload
        trigger_worker: Ping the worker endpoint once the row is stored
        base_url: Origin of the current request, used for the worker ping

    Returns:
        ``{"success": bool, "error": str | None, "job_id": UUID | None}``
    """
    if not user_id or not title or not body:
        return {
            "success": False,
            "error": "Missing required fields: user_id, title, body",
            "job_id": None,
        }

    try:
        job_id = await conn.fetchval(
            """
            INSERT INTO push_notification_queue
                (user_id, title, body, data, status, retry_count, max_retries)
            VALUES ($1, $2, $3, $4, $5, 0, $6)
            RETURNING id
            """,
            user_id,
            title,
            body,
            data or {},
            STATUS_PENDING,
            settings.PUSH_MAX_RETRIES,
        )
    except Exception as e:
        logger.error(f"Failed to enqueue push for user {user_id}: {e}")
        return {"success": False, "error": str(e), "job_id": None}

    if trigger_worker:
        trigger_push_worker(base_url)

    return {"success": True, "error": None, "job_id": job_id}


def worker_url(base_url: str | None = None) -> str | None:
    origin = (base_url or settings.BASE_URL or "").rstrip("/")
    if not origin:
        return None
    return f"{origin}{WORKER_PATH}"


async def _ping_worker(url: str) -> None:
    headers = {}
    if settings.CRON_SECRET:
        headers["Authorization"] = f"Bearer {settings.CRON_SECRET}"
    try:
        async with httpx.AsyncClient(timeout=settings.PUSH_TRIGGER_TIMEOUT_SECONDS) as client:
            response = await client.get(url, headers=headers)
        if response.is_error and response.status_code != 401:
            logger.warning(f"Push worker ping returned {response.status_code}")
    except Exception as e:
        # The periodic schedule picks the job up anyway
        logger.debug(f"Push worker ping failed: {e}")


def trigger_push_worker(base_url: str | None = None) -> asyncio.Task | None:
    """
    Ask the worker to run now without waiting for it.

    Returns the detached task, or None when no worker URL is known.
    """
    url = worker_url(base_url)
    if url is None:
        return None

    task = asyncio.create_task(_ping_worker(url))
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


async def fetch_pending_jobs(conn: asyncpg.Connection, limit: int) -> list[dict]:
    """Oldest pending jobs first."""
    results = await conn.fetch(
        f"""
        SELECT {QUEUE_COLUMNS}
        FROM push_notification_queue
        WHERE status = $1
        ORDER BY created_at ASC
        LIMIT $2
        """,
        STATUS_PENDING,
        limit,
    )
    return [dict(row) for row in results]


async def claim_job(conn: asyncpg.Connection, job_id: UUID) -> int | None:
    """
    Move a job from pending to processing and count the attempt.

    Returns the new ``retry_count``, or None if another run claimed it first.
    """
    return await conn.fetchval(
        """
        UPDATE push_notification_queue
        SET status = $2, retry_count = retry_count + 1
        WHERE id = $1 AND status = $3
        RETURNING retry_count
        """,
        job_id,
        STATUS_PROCESSING,
        STATUS_PENDING,
    )


async def mark_sent(conn: asyncpg.Connection, job_id: UUID, retry_count: int) -> None:
    await conn.execute(
        """
        UPDATE push_notification_queue
        SET status = $2, retry_count = $3, sent_at = CURRENT_TIMESTAMP,
            error_message = NULL
        WHERE id = $1
        """,
        job_id,
        STATUS_SENT,
        retry_count,
    )


async def reset_to_pending(
    conn: asyncpg.Connection, job_id: UUID, retry_count: int, error_message: str
) -> None:
    await conn.execute(
        """
        UPDATE push_notification_queue
        SET status = $2, retry_count = $3, error_message = $4
        WHERE id = $1
        """,
        job_id,
        STATUS_PENDING,
        retry_count,
        error_message,
    )


async def mark_failed(
    conn: asyncpg.Connection, job_id: UUID, retry_count: int, error_message: str
) -> None:
    await conn.execute(
        """
        UPDATE push_notification_queue
        SET status = $2, retry_count = $3, error_message = $4
        WHERE id = $1
        """,
        job_id,
        STATUS_FAILED,
        retry_count,
        error_message,
    )


async def get_queue_stats(conn: asyncpg.Connection) -> dict[str, int]:
    """Job counts per status."""
    results = await conn.fetch(
        "SELECT status, COUNT(*) AS count FROM push_notification_queue GROUP BY status"
    )
    stats = {status: 0 for status in (STATUS_PENDING, STATUS_PROCESSING, *TERMINAL_STATUSES)}
    for row in results:
        stats[row["status"]] = row["count"]
    return stats
