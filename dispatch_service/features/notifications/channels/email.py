"""SMTP email sender using aiosmtplib."""

from __future__ import annotations

from datetime import UTC, datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
import logging
import ssl
from typing import TYPE_CHECKING
import uuid

import aiosmtplib

from dispatch_service.features.notifications.channels.base import SendResult
from dispatch_service.features.notifications.enums import NotificationChannel

if TYPE_CHECKING:
    from dispatch_service.core.settings.notifications import NotificationSettings
    from dispatch_service.features.notifications.schemas import RenderedContent

logger = logging.getLogger(__name__)


class SmtpEmailSender:
    """SMTP sender supporting STARTTLS (587), implicit TLS (465) and plain SMTP.

    Error classification:
        - refused recipients, 5xx replies, authentication failures: permanent
        - connection errors, timeouts, disconnects, 4xx replies: transient
    """

    channel = NotificationChannel.EMAIL

    def __init__(self, settings: NotificationSettings) -> None:
        self._host = settings.smtp_host
        self._port = settings.smtp_port
        self._username = settings.smtp_username
        self._password = settings.smtp_password.get_secret_value() if settings.smtp_password else None
        self._use_tls = settings.smtp_use_tls
        self._use_ssl = settings.smtp_use_ssl
        self._timeout = settings.send_timeout_seconds
        self._from_address = settings.email_from_address
        self._from_name = settings.email_from_name

    def build_message(self, content: RenderedContent, address: str) -> MIMEMultipart:
        """Build the MIME message (text, plus an HTML alternative when rendered)."""
        mime_msg = MIMEMultipart("alternative")
        from_email = content.extras.get("from_email") or self._from_address
        from_name = content.extras.get("from_name") or self._from_name
        mime_msg["From"] = f"{from_name} <{from_email}>" if from_name else from_email
        mime_msg["To"] = address
        mime_msg["Subject"] = content.title
        mime_msg["Message-ID"] = f"<{uuid.uuid4()}@{self._host}>"
        mime_msg["Date"] = datetime.now(UTC).strftime("%a, %d %b %Y %H:%M:%S +0000")
        if content.extras.get("reply_to"):
            mime_msg["Reply-To"] = content.extras["reply_to"]

        mime_msg.attach(MIMEText(content.message, "plain", "utf-8"))
        if content.extras.get("html"):
            mime_msg.attach(MIMEText(content.extras["html"], "html", "utf-8"))
        return mime_msg

    async def send(
        self,
        content: RenderedContent,
        address: str,
        *,
        notification_id: str | None = None,
    ) -> SendResult:
        if "@" not in address:
            return SendResult.permanent(f"Invalid email address: {address}")

        mime_message = self.build_message(content, address)
        message_id = mime_message["Message-ID"]
        smtp = aiosmtplib.SMTP(
            hostname=self._host,
            port=self._port,
            use_tls=self._use_ssl,
            start_tls=self._use_tls,
            tls_context=ssl.create_default_context() if (self._use_tls or self._use_ssl) else None,
            timeout=self._timeout,
        )

        try:
            async with smtp:
                if self._username and self._password:
                    await smtp.login(self._username, self._password)
                errors, _response = await smtp.send_message(mime_message)
        except aiosmtplib.SMTPRecipientsRefused as e:
            return SendResult.permanent(f"All recipients refused: {e}")
        except aiosmtplib.SMTPAuthenticationError as e:
            return SendResult.permanent(f"SMTP authentication failed: {e}", status_code=e.code)
        except (aiosmtplib.SMTPConnectError, aiosmtplib.SMTPTimeoutError, aiosmtplib.SMTPServerDisconnected) as e:
            return SendResult.transient(f"SMTP connection failed: {e}")
        except aiosmtplib.SMTPResponseException as e:
            if e.code >= 500:
                return SendResult.permanent(f"SMTP error: {e}", status_code=e.code)
            return SendResult.transient(f"SMTP error: {e}", status_code=e.code)
        except aiosmtplib.SMTPException as e:
            return SendResult.transient(f"SMTP error: {e}")

        if address in errors:
            logger.warning(
                "SMTP recipient rejected",
                extra={
                    "notification_id": notification_id,
                    "message_id": message_id,
                    "error": str(errors[address]),
                    "operation": "channel.email.send",
                },
            )
            return SendResult.permanent(f"Recipient rejected: {errors[address]}")

        logger.info(
            "Email accepted by SMTP server",
            extra={"notification_id": notification_id, "message_id": message_id, "operation": "channel.email.send"},
        )
        return SendResult.accepted(message_id)
