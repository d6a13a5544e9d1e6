"""
Web Push delivery via pywebpush (VAPID-signed).

``send_web_push`` raises ``PushGoneError`` when the push service reports the
endpoint is gone (404/410) and ``PushDeliveryError`` for everything else.
"""

import asyncio
import json
from typing import Any

from pywebpush import WebPushException, webpush

from nest.core.config import get_settings
from nest.core.logging_config import get_logger

logger = get_logger(__name__)
settings = get_settings()

GONE_STATUS_CODES = (404, 410)
SUBSCRIPTION_KEYS = ("p256dh", "auth")


class PushConfigurationError(RuntimeError):
    """Raised when VAPID keys are missing."""


class PushDeliveryError(Exception):
    """Raised when push delivery fails."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class PushGoneError(PushDeliveryError):
    """Raised when the push service returns 404/410 (subscription invalid)."""


def parse_subscription(token: str | dict) -> dict[str, Any]:
    """Parse a stored token into a subscription dict with an endpoint and keys."""
    if isinstance(token, dict):
        subscription = token
    else:
        try:
            subscription = json.loads(token)
        except (json.JSONDecodeError, TypeError) as e:
            raise PushDeliveryError(f"Invalid push subscription: {e}") from e
    if not isinstance(subscription, dict) or not subscription.get("endpoint"):
        raise PushDeliveryError("Push subscription has no endpoint")
    keys = subscription.get("keys")
    if not isinstance(keys, dict) or not all(
        isinstance(keys.get(name), str) and keys.get(name) for name in SUBSCRIPTION_KEYS
    ):
        raise PushDeliveryError("Push subscription keys must include p256dh and auth")
    return subscription


def endpoint_tail(subscription: dict[str, Any]) -> str:
    """Last path segment of an endpoint, safe to log."""
    return (subscription.get("endpoint") or "").rstrip("/").split("/")[-1][:16]


def ensure_vapid_configured() -> None:
    if not settings.vapid_configured:
        raise PushConfigurationError("VAPID keys not configured")


def _send_web_push_sync(subscription: dict[str, Any], payload_json: str) -> None:
    try:
        webpush(
            subscription_info=subscription,
            data=payload_json,
            vapid_private_key=settings.VAPID_PRIVATE_KEY,
            vapid_claims={"sub": settings.VAPID_MAILTO},
            ttl=settings.PUSH_TTL_SECONDS,
        )
    except WebPushException as e:
        status_code = None
        if getattr(e, "response", None) is not None:
            status_code = e.response.status_code
        if status_code in GONE_STATUS_CODES:
            raise PushGoneError(str(e), status_code=status_code) from e
        raise PushDeliveryError(str(e), status_code=status_code) from e
    except Exception as e:
        # Transport failures and anything pywebpush raises on bad key material
        raise PushDeliveryError(str(e)) from e


async def send_web_push(subscription: dict[str, Any], payload: dict[str, Any]) -> None:
    """
    Deliver one payload to one subscription.

    Args:
        subscription: Browser PushSubscription JSON (endpoint + keys)
        payload: ``{"title", "body", "data"}``

    Raises:
        PushConfigurationError: VAPID keys are missing
        PushGoneError: Endpoint no longer exists
        PushDeliveryError: Any other delivery failure
    """
    ensure_vapid_configured()
    payload_json = json.dumps(payload, default=str)
    await asyncio.get_running_loop().run_in_executor(
        None, _send_web_push_sync, subscription, payload_json
    )
    logger.debug(f"Web push sent to endpoint ...{endpoint_tail(subscription)}")
