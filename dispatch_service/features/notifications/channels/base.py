"""Base protocol and types for channel senders."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from dispatch_service.features.notifications.enums import NotificationChannel
    from dispatch_service.features.notifications.schemas import RenderedContent


class SendStatus(StrEnum):
    """Outcome class of one send attempt."""

    ACCEPTED = "accepted"
    TRANSIENT = "transient"
    PERMANENT = "permanent"


@dataclass
class SendResult:
    """Result of a channel send attempt.

    Attributes:
        status: accepted, transient (retry later) or permanent (never retry)
        provider_message_id: Provider-assigned id when accepted
        error: Error description when not accepted
        status_code: HTTP or SMTP status code, if any
        metadata: Channel-specific details
    """

    status: SendStatus
    provider_message_id: str | None = None
    error: str | None = None
    status_code: int | None = None
    metadata: dict[str, str | int | bool] = field(default_factory=dict)

    @classmethod
    def accepted(cls, provider_message_id: str | None = None, **metadata: str | int | bool) -> SendResult:
        return cls(status=SendStatus.ACCEPTED, provider_message_id=provider_message_id, metadata=metadata)

    @classmethod
    def transient(cls, error: str, status_code: int | None = None) -> SendResult:
        return cls(status=SendStatus.TRANSIENT, error=error, status_code=status_code)

    @classmethod
    def permanent(cls, error: str, status_code: int | None = None) -> SendResult:
        return cls(status=SendStatus.PERMANENT, error=error, status_code=status_code)

    @property
    def ok(self) -> bool:
        return self.status is SendStatus.ACCEPTED


@runtime_checkable
class ChannelSender(Protocol):
    """Protocol for channel-specific transports.

    Senders return a ``SendResult`` or raise ``TransientSendFailure`` /
    ``PermanentSendFailure``; any other exception is treated as transient by
    the dispatcher.
    """

    channel: NotificationChannel

    async def send(
        self,
        content: RenderedContent,
        address: str,
        *,
        notification_id: str | None = None,
    ) -> SendResult:
        """Send rendered content to one address.

        Args:
            content: Channel-ready content
            address: Channel address (email, phone, Slack channel, URL, admin id)
            notification_id: Record id, for provider correlation

        Returns:
            SendResult classifying the outcome
        """
        ...
