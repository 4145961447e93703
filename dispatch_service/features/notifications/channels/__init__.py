"""Channel senders for notification delivery."""

from dispatch_service.features.notifications.channels.base import (
    ChannelSender,
    SendResult,
    SendStatus,
)
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
from dispatch_service.features.notifications.channels.registry import (
    ChannelRegistry,
    build_registry,
)

__all__ = [
    "ChannelRegistry",
    "ChannelSender",
    "ConsoleSender",
    "FakeSender",
    "InAppSender",
    "PushSender",
    "SendResult",
    "SendStatus",
    "SlackSender",
    "SmsSender",
    "SmtpEmailSender",
    "WebhookSender",
    "build_registry",
]
