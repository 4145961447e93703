"""Channel sender lookup table."""

from __future__ import annotations

from typing import TYPE_CHECKING

from dispatch_service.features.notifications.channels.console import ConsoleSender
from dispatch_service.features.notifications.channels.email import SmtpEmailSender
from dispatch_service.features.notifications.channels.fake import FakeSender
from dispatch_service.features.notifications.channels.http import (
    PushSender,
    SlackSender,
    SmsSender,
    WebhookSender,
)
from dispatch_service.features.notifications.channels.in_app import InAppSender
from dispatch_service.features.notifications.enums import NotificationChannel
from dispatch_service.features.notifications.exceptions import PermanentSendFailure

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping

    from dispatch_service.core.settings.notifications import NotificationSettings, SenderMode
    from dispatch_service.features.notifications.channels.base import ChannelSender


class ChannelRegistry:
    """Maps each NotificationChannel to its sender."""

    def __init__(self, senders: Mapping[NotificationChannel, ChannelSender] | None = None) -> None:
        self._senders: dict[NotificationChannel, ChannelSender] = dict(senders or {})

    def register(self, sender: ChannelSender) -> None:
        """Register (or replace) the sender for ``sender.channel``."""
        self._senders[sender.channel] = sender

    def get(self, channel: NotificationChannel) -> ChannelSender:
        """Return the sender for ``channel``.

        Raises:
            PermanentSendFailure: No sender is registered for the channel
        """
        sender = self._senders.get(channel)
        if sender is None:
            raise PermanentSendFailure(
                f"No sender registered for channel {channel.value}",
                extra={"channel": channel.value},
            )
        return sender

    def __contains__(self, channel: object) -> bool:
        return channel in self._senders

    def __iter__(self) -> Iterator[NotificationChannel]:
        return iter(self._senders)


def build_registry(settings: NotificationSettings, mode: SenderMode | None = None) -> ChannelRegistry:
    """Build the registry for a sender mode.

    Args:
        settings: Notification settings (provider endpoints and credentials)
        mode: Overrides ``settings.sender_mode``

    Returns:
        ChannelRegistry with a sender for every channel
    """
    mode = mode or settings.sender_mode
    if mode == "fake":
        return ChannelRegistry({channel: FakeSender(channel) for channel in NotificationChannel})
    if mode == "console":
        registry = ChannelRegistry({channel: ConsoleSender(channel) for channel in NotificationChannel})
        registry.register(InAppSender())
        return registry

    timeout = settings.send_timeout_seconds
    return ChannelRegistry(
        {
            NotificationChannel.EMAIL: SmtpEmailSender(settings),
            NotificationChannel.SLACK: SlackSender(settings.slack_webhook_url, timeout_seconds=timeout),
            NotificationChannel.SMS: SmsSender(
                settings.sms_gateway_url, settings.sms_gateway_token, timeout_seconds=timeout
            ),
            NotificationChannel.PUSH: PushSender(
                settings.push_gateway_url, settings.push_gateway_token, timeout_seconds=timeout
            ),
            NotificationChannel.WEBHOOK: WebhookSender(settings.webhook_signing_secret, timeout_seconds=timeout),
            NotificationChannel.IN_APP: InAppSender(),
        }
    )


__all__ = ["ChannelRegistry", "build_registry"]
