"""
Push queue worker.

Each run pulls the oldest pending jobs and tries every subscription the
recipient holds. A job is ``sent`` once any device accepts it. Otherwise it
goes back to ``pending`` until its attempts reach ``max_retries``, then
``failed``. Subscriptions reported gone (404/410) are deleted on the spot.
"""

import asyncio
from typing import Any

import asyncpg

from nest.core.config import get_settings
from nest.core.logging_config import delivery_logger, get_logger
from nest.services.preferences import CHANNEL_PUSH
from nest.services.push_queue import (
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_SENT,
    claim_job,
    fetch_pending_jobs,
    mark_failed,
    mark_sent,
    reset_to_pending,
)
from nest.services.push_tokens import delete_push_token, get_push_tokens
from nest.services.web_push import (
    PushConfigurationError,
    PushDeliveryError,
    PushGoneError,
    endpoint_tail,
    ensure_vapid_configured,
    parse_subscription,
    send_web_push,
)

logger = get_logger(__name__)
settings = get_settings()

NO_TOKENS_ERROR = "No push tokens found for user"


async def _deliver(token: str, payload: dict[str, Any]) -> Exception | None:
    """Send to one subscription. Returns the error instead of raising it."""
    try:
        subscription = parse_subscription(token)
        await send_web_push(subscription, payload)
        return None
    except PushDeliveryError as e:
        return e
    except PushConfigurationError:
        raise
    except Exception as e:
        # One broken subscription must not fail the user's other devices
        logger.warning(f"Unexpected push delivery error: {e}")
        return PushDeliveryError(str(e))


def _max_retries(job: dict[str, Any]) -> int:
    if job.get("max_retries") is None:
        return settings.PUSH_MAX_RETRIES
    return job["max_retries"]


async def _fail_crashed_job(
    conn: asyncpg.Connection, job: dict[str, Any], attempt: int, error: Exception
) -> None:
    logger.error(f"Push job {job['id']} crashed: {error}", exc_info=True)
    try:
        await mark_failed(conn, job["id"], attempt, f"Processing error: {error}")
    except Exception as mark_error:
        logger.error(f"Could not mark push job {job['id']} failed: {mark_error}")
    delivery_logger.log_job_transition(job["id"], STATUS_FAILED, attempt, str(error))


async def process_job(conn: asyncpg.Connection, job: dict[str, Any]) -> str | None:
    """
    Run one delivery attempt for a claimed job.

    An unexpected error after the claim fails this job with the claimed
    attempt count. An error inside the claim itself propagates and the job
    is left untouched.

    Returns:
        The status the job ends in, or None if another run claimed it first.
    """
    attempt = await claim_job(conn, job["id"])
    if attempt is None:
        logger.info(f"Push job {job['id']} already claimed, skipping")
        return None

    try:
        return await _attempt_delivery(conn, job, attempt)
    except Exception as e:
        await _fail_crashed_job(conn, job, attempt, e)
        return STATUS_FAILED


async def _attempt_delivery(
    conn: asyncpg.Connection, job: dict[str, Any], attempt: int
) -> str:
    job_id = job["id"]
    max_retries = _max_retries(job)

    tokens = await get_push_tokens(conn, job["user_id"])
    if not tokens:
        # Permanent for this user; the claim's attempt is given back
        await mark_failed(conn, job_id, job["retry_count"], NO_TOKENS_ERROR)
        delivery_logger.log_job_transition(
            job_id, STATUS_FAILED, job["retry_count"], NO_TOKENS_ERROR
        )
        return STATUS_FAILED

    payload = {
        "title": job["title"],
        "body": job["body"],
        "data": job.get("data") or {},
    }
    outcomes = await asyncio.gather(*(_deliver(row["token"], payload) for row in tokens))

    sent = 0
    gone = 0
    errors: list[str] = []
    for row, error in zip(tokens, outcomes):
        if error is None:
            sent += 1
            delivery_logger.log_attempt(CHANNEL_PUSH, job["user_id"], True, job_id=job_id)
            continue

        errors.append(str(error))
        delivery_logger.log_attempt(
            CHANNEL_PUSH, job["user_id"], False, job_id=job_id, error=str(error)
        )
        if isinstance(error, PushGoneError):
            await delete_push_token(conn, row["token"])
            gone += 1
            try:
                tail = endpoint_tail(parse_subscription(row["token"]))
            except PushDeliveryError:
                tail = "?"
            logger.info(f"Removed stale push subscription ...{tail} ({error.status_code})")

    if sent:
        await mark_sent(conn, job_id, attempt)
        delivery_logger.log_job_transition(job_id, STATUS_SENT, attempt)
        return STATUS_SENT

    if gone == len(tokens):
        # Every subscription was stale, so the user now has none left
        await mark_failed(conn, job_id, attempt, NO_TOKENS_ERROR)
        delivery_logger.log_job_transition(job_id, STATUS_FAILED, attempt, NO_TOKENS_ERROR)
        return STATUS_FAILED

    error_message = f"All {len(tokens)} subscriptions failed: " + "; ".join(errors)
    if attempt < max_retries:
        await reset_to_pending(conn, job_id, attempt, error_message)
        delivery_logger.log_job_transition(job_id, STATUS_PENDING, attempt, error_message)
        return STATUS_PENDING

    error_message = f"Max retries ({max_retries}) reached. {error_message}"
    await mark_failed(conn, job_id, attempt, error_message)
    delivery_logger.log_job_transition(job_id, STATUS_FAILED, attempt, error_message)
    return STATUS_FAILED


async def process_push_queue(
    conn: asyncpg.Connection, batch_size: int | None = None
) -> dict[str, int]:
    """
    Process one batch of pending push jobs.

    Args:
        conn: Database connection
        batch_size: Jobs to pull, defaults to ``PUSH_WORKER_BATCH_SIZE``

    Returns:
        ``{"processed": int, "sent": int, "failed": int}``

    Raises:
        PushConfigurationError: VAPID keys are not configured
    """
    ensure_vapid_configured()

    jobs = await fetch_pending_jobs(conn, batch_size or settings.PUSH_WORKER_BATCH_SIZE)
    summary = {"processed": 0, "sent": 0, "failed": 0}
    if not jobs:
        logger.debug("No pending push jobs")
        return summary

    logger.info(f"Processing {len(jobs)} push jobs")

    for job in jobs:
        try:
            status = await process_job(conn, job)
        except Exception as e:
            # The claim never happened, so the job stays pending for the next run
            logger.error(f"Could not claim push job {job['id']}: {e}", exc_info=True)
            continue

        if status is None:
            continue
        summary["processed"] += 1
        if status == STATUS_SENT:
            summary["sent"] += 1
        elif status == STATUS_FAILED:
            summary["failed"] += 1

    logger.info(
        f"Push worker done: {summary['processed']} processed, "
        f"{summary['sent']} sent, {summary['failed']} failed"
    )
    return summary
