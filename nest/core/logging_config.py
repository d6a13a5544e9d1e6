"""Structured logging configuration for the application."""

from datetime import UTC, datetime
import json
import logging
import sys
from typing import Any

from nest.core.config import settings


class JSONFormatter(logging.Formatter):
    """Format logs as JSON for structured logging in production."""

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record as JSON."""
        log_data = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Add extra fields if present
        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, default=str)


class StandardFormatter(logging.Formatter):
    """Human-readable formatter for development."""

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )


def setup_logging() -> None:
    """Configure application logging based on environment."""
    log_level = logging.INFO
    if settings.ENVIRONMENT == "development":
        log_level = logging.DEBUG
    elif settings.ENVIRONMENT == "production":
        log_level = logging.WARNING

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)

    # Use JSON formatter in production, standard in development
    if settings.ENVIRONMENT == "production":
        formatter = JSONFormatter()
    else:
        formatter = StandardFormatter()

    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Set specific log levels for noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.error").setLevel(logging.INFO)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name."""
    return logging.getLogger(name)


class DeliveryLogger:
    """Specialized logger for per-channel notification delivery."""

    def __init__(self) -> None:
        self.logger = get_logger("delivery")

    def log_attempt(
        self,
        channel: str,
        recipient: Any,
        success: bool,
        event: str | None = None,
        job_id: Any = None,
        error: str | None = None,
    ) -> None:
        """Log one delivery attempt on one channel for one recipient."""
        extra_fields = {
            "event_type": "notification_delivery",
            "channel": channel,
            "recipient": str(recipient) if recipient is not None else None,
            "event": event,
            "job_id": str(job_id) if job_id is not None else None,
            "success": success,
        }
        if error:
            extra_fields["error"] = error

        message = (
            f"{channel} delivery {'succeeded' if success else 'failed'} "
            f"for recipient: {recipient}"
        )

        if success:
            self.logger.info(message, extra={"extra_fields": extra_fields})
        else:
            self.logger.warning(message, extra={"extra_fields": extra_fields})

    def log_skip(
        self, channel: str, recipient: Any, reason: str, event: str | None = None
    ) -> None:
        """Log a channel skipped by preference or missing address."""
        self.logger.debug(
            f"{channel} skipped for recipient: {recipient} ({reason})",
            extra={
                "extra_fields": {
                    "event_type": "notification_skipped",
                    "channel": channel,
                    "recipient": str(recipient) if recipient is not None else None,
                    "event": event,
                    "reason": reason,
                }
            },
        )

    def log_job_transition(
        self, job_id: Any, status: str, retry_count: int, error: str | None = None
    ) -> None:
        """Log a push queue job reaching a new status."""
        self.logger.info(
            f"Push job {job_id} -> {status} (attempt {retry_count})",
            extra={
                "extra_fields": {
                    "event_type": "push_job_transition",
                    "job_id": str(job_id),
                    "status": status,
                    "retry_count": retry_count,
                    "error": error,
                }
            },
        )


# Global delivery logger instance
delivery_logger = DeliveryLogger()
