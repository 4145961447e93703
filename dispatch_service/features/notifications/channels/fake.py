"""Scriptable in-process sender for development and tests."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING

from dispatch_service.features.notifications.channels.base import SendResult

if TYPE_CHECKING:
    from dispatch_service.features.notifications.enums import NotificationChannel
    from dispatch_service.features.notifications.schemas import RenderedContent


@dataclass
class SentMessage:
    """One call recorded by FakeSender."""

    address: str
    content: RenderedContent
    notification_id: str | None


class FakeSender:
    """Records every call and replays scripted outcomes.

    Outcomes queued with ``script`` are consumed in order (a SendResult is
    returned, an exception is raised); once the queue is empty every send is
    accepted.

    Example:
        sender = FakeSender(NotificationChannel.SMS)
        sender.script(SendResult.transient("gateway 503"))
        result = await sender.send(content, "+15550100")  # transient
        result = await sender.send(content, "+15550100")  # accepted
    """

    def __init__(self, channel: NotificationChannel, *, delay: float = 0.0) -> None:
        self.channel = channel
        self.delay = delay
        self.sent: list[SentMessage] = []
        self._outcomes: list[SendResult | Exception] = []

    def script(self, *outcomes: SendResult | Exception) -> None:
        """Queue outcomes for the next sends."""
        self._outcomes.extend(outcomes)

    @property
    def call_count(self) -> int:
        return len(self.sent)

    async def send(
        self,
        content: RenderedContent,
        address: str,
        *,
        notification_id: str | None = None,
    ) -> SendResult:
        self.sent.append(SentMessage(address=address, content=content, notification_id=notification_id))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self._outcomes:
            outcome = self._outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        return SendResult.accepted(f"fake-{self.channel.value.lower()}-{len(self.sent)}")
