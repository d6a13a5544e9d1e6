"""Email service for transactional notification emails."""

import asyncio
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid
import smtplib
import ssl
from typing import Any, Callable, Iterable

from nest.core.config import get_settings
from nest.core.logging_config import delivery_logger, get_logger
from nest.services.email_templates import UnknownTemplateError, render_template
from nest.services.preferences import CHANNEL_EMAIL

logger = get_logger(__name__)
settings = get_settings()


class EmailService:
    """Service for sending templated emails via SMTP.

    Sends never raise to the caller: every outcome comes back as
    ``{"success": bool, "id": str | None, "error": str | None}``.
    """

    def __init__(self):
        self.smtp_server = settings.SMTP_SERVER
        self.smtp_port = settings.SMTP_PORT
        self.smtp_username = settings.SMTP_USERNAME
        self.smtp_password = settings.SMTP_PASSWORD
        self.smtp_tls = settings.SMTP_TLS
        self.from_email = settings.FROM_EMAIL
        self.from_name = settings.FROM_NAME

    def is_configured(self) -> bool:
        return bool(self.smtp_server and self.from_email)

    def build_message(
        self, to_email: str, subject: str, html: str, text: str
    ) -> tuple[str, str]:
        """Build a multipart message and return ``(message_id, serialized)``."""
        msg = MIMEMultipart("alternative")
        message_id = make_msgid(domain=self.from_email.split("@")[-1] or None)
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to_email
        msg["Message-ID"] = message_id
        msg.attach(MIMEText(text, "plain", "utf-8"))
        msg.attach(MIMEText(html, "html", "utf-8"))
        return message_id, msg.as_string()

    async def send_templated_email(
        self,
        template_name: str,
        to_email: str | None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Render ``template_name`` and send it to ``to_email``.

        Args:
            template_name: Key in the template registry
            to_email: Recipient address
            params: Template parameters

        Returns:
            dict: ``success``, and ``id`` on success or ``error`` on failure
        """
        to_email = (to_email or "").strip()
        if not to_email:
            return {"success": False, "id": None, "error": "No recipient address"}

        if not self.is_configured():
            logger.warning("SMTP not configured - skipping email")
            return {"success": False, "id": None, "error": "Email service not configured"}

        try:
            subject, html, text = render_template(template_name, params or {})
            message_id, content = self.build_message(to_email, subject, html, text)

            # Send email in thread pool to avoid blocking
            await asyncio.get_running_loop().run_in_executor(
                None, self._send_email_sync, to_email, content
            )

            delivery_logger.log_attempt(CHANNEL_EMAIL, to_email, True, event=template_name)
            return {"success": True, "id": message_id, "error": None}

        except UnknownTemplateError:
            error = f"Unknown email template: {template_name}"
            logger.error(error)
            return {"success": False, "id": None, "error": error}
        except Exception as e:
            error = f"Failed to send email: {e!s}"
            delivery_logger.log_attempt(
                CHANNEL_EMAIL, to_email, False, event=template_name, error=str(e)
            )
            return {"success": False, "id": None, "error": error}

    async def send_bulk(
        self,
        template_name: str,
        recipients: Iterable[dict[str, Any]],
        params_for: Callable[[dict[str, Any]], dict[str, Any]],
    ) -> dict[str, Any]:
        """
        Send one template to many recipients concurrently.

        Each send is independent. The aggregate is for observability only.

        Returns:
            ``{"sent": int, "failed": int, "errors": list[str]}``
        """
        targets = [r for r in recipients if (r.get("email") or "").strip()]
        if not targets:
            return {"sent": 0, "failed": 0, "errors": []}

        results = await asyncio.gather(
            *(
                self.send_templated_email(template_name, r["email"], params_for(r))
                for r in targets
            )
        )

        sent = 0
        errors: list[str] = []
        for recipient, result in zip(targets, results):
            if result["success"]:
                sent += 1
            else:
                errors.append(f"Email to {recipient['email']}: {result['error']}")

        return {"sent": sent, "failed": len(errors), "errors": errors}

    def _send_email_sync(self, to_email: str, email_content: str) -> None:
        """Send email synchronously (called from thread pool)."""
        try:
            context = ssl.create_default_context()

            if self.smtp_tls:
                server = smtplib.SMTP(self.smtp_server, self.smtp_port, timeout=10)
                server.starttls(context=context)
            else:
                server = smtplib.SMTP_SSL(
                    self.smtp_server, self.smtp_port, context=context, timeout=10
                )

            # Login if credentials provided
            if self.smtp_username and self.smtp_password:
                server.login(self.smtp_username, self.smtp_password)

            server.sendmail(self.from_email, [to_email], email_content)
            server.quit()

        except Exception as e:
            logger.error(f"SMTP error: {e!s}")
            raise


# Global email service instance
email_service = EmailService()
