"""In-app channel sender."""

from __future__ import annotations

from typing import TYPE_CHECKING

from dispatch_service.features.notifications.channels.base import SendResult
from dispatch_service.features.notifications.enums import NotificationChannel
from dispatch_service.infra.logging import get_lazy_logger

if TYPE_CHECKING:
    from dispatch_service.features.notifications.schemas import RenderedContent

lazy_logger = get_lazy_logger(__name__)


class InAppSender:
    """In-app notifications are stored records displayed in the admin UI.

    No external delivery is needed: the persisted record is the inbox entry,
    so a send is accepted as soon as the recipient id is known.
    """

    channel = NotificationChannel.IN_APP

    async def send(
        self,
        content: RenderedContent,
        address: str,
        *,
        notification_id: str | None = None,
    ) -> SendResult:
        if not address.strip():
            return SendResult.permanent("In-app notification requires a recipient admin id")
        lazy_logger.debug(lambda: f"in_app.send: notification {notification_id} to admin {address}")
        return SendResult.accepted(f"in_app:{notification_id}" if notification_id else None)
