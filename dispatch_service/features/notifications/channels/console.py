"""Sender that logs messages instead of delivering them."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from dispatch_service.core.database import uuid7_str
from dispatch_service.features.notifications.channels.base import SendResult

if TYPE_CHECKING:
    from dispatch_service.features.notifications.enums import NotificationChannel
    from dispatch_service.features.notifications.schemas import RenderedContent

logger = logging.getLogger(__name__)


class ConsoleSender:
    """Accepts every message and writes it to the log (``NOTIFY_SENDER_MODE=console``)."""

    def __init__(self, channel: NotificationChannel) -> None:
        self.channel = channel

    async def send(
        self,
        content: RenderedContent,
        address: str,
        *,
        notification_id: str | None = None,
    ) -> SendResult:
        message_id = f"console-{uuid7_str()}"
        logger.info(
            "Notification written to console",
            extra={
                "channel": self.channel.value,
                "address": address,
                "notification_id": notification_id,
                "title": content.title,
                "body": content.message,
                "provider_message_id": message_id,
                "operation": "channel.console.send",
            },
        )
        return SendResult.accepted(message_id)
