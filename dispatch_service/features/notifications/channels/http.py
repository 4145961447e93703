"""HTTP channel senders: Slack, SMS gateway, push gateway and webhooks.

All senders share response classification:

- 2xx: accepted
- 408, 425, 429 and 5xx: transient
- any other 4xx: permanent

Connection errors and timeouts raised by httpx are transient.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import re
import time
from typing import TYPE_CHECKING, Any

import httpx

from dispatch_service.features.notifications.channels.base import SendResult, SendStatus
from dispatch_service.features.notifications.enums import NotificationChannel
from dispatch_service.infra.logging import get_lazy_logger

if TYPE_CHECKING:
    from pydantic import SecretStr

    from dispatch_service.features.notifications.schemas import RenderedContent

logger = logging.getLogger(__name__)
lazy_logger = get_lazy_logger(__name__)

_TRANSIENT_STATUS_CODES = frozenset({408, 425, 429})
_PHONE_RE = re.compile(r"^\+?[1-9]\d{6,14}$")


def classify_response(response: httpx.Response) -> SendResult:
    """Map an HTTP response to a SendResult."""
    status_code = response.status_code
    if 200 <= status_code < 300:
        return SendResult(
            status=SendStatus.ACCEPTED,
            provider_message_id=_provider_message_id(response),
            status_code=status_code,
        )
    error = f"HTTP {status_code}: {response.text[:500]}" if response.text else f"HTTP {status_code}"
    if status_code in _TRANSIENT_STATUS_CODES or status_code >= 500:
        return SendResult.transient(error, status_code=status_code)
    return SendResult.permanent(error, status_code=status_code)


def _provider_message_id(response: httpx.Response) -> str | None:
    try:
        body = response.json()
    except ValueError:
        return response.headers.get("x-request-id")
    if isinstance(body, dict):
        for key in ("id", "message_id", "sid"):
            if body.get(key):
                return str(body[key])
    return response.headers.get("x-request-id")


class HttpSender:
    """POSTs JSON to an HTTP endpoint and classifies the response.

    Args:
        timeout_seconds: Per-request timeout
        transport: Optional httpx transport (``httpx.MockTransport`` in tests)
    """

    channel: NotificationChannel

    def __init__(
        self,
        *,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    async def _post(
        self,
        url: str,
        *,
        content: str,
        headers: dict[str, str],
        notification_id: str | None,
    ) -> SendResult:
        start_time = time.time()
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout_seconds) as client:
                response = await client.post(url, content=content, headers=headers)
        except httpx.TimeoutException:
            logger.warning(
                "Channel request timed out",
                extra={
                    "channel": self.channel.value,
                    "notification_id": notification_id,
                    "timeout_seconds": self.timeout_seconds,
                    "operation": "channel.http.post",
                },
            )
            return SendResult.transient(f"Request timeout after {self.timeout_seconds}s")
        except httpx.TransportError as exc:
            logger.warning(
                "Channel request failed",
                extra={
                    "channel": self.channel.value,
                    "notification_id": notification_id,
                    "error": str(exc),
                    "operation": "channel.http.post",
                },
            )
            return SendResult.transient(f"Connection error: {exc}")

        response_time_ms = int((time.time() - start_time) * 1000)
        result = classify_response(response)
        result.metadata["response_time_ms"] = response_time_ms
        lazy_logger.debug(
            lambda: f"channel.http.post: {self.channel.value} notification={notification_id} -> {response.status_code} ({result.status}) in {response_time_ms}ms"
        )
        return result

    @staticmethod
    def _json(payload: dict[str, Any]) -> str:
        return json.dumps(payload, separators=(",", ":"), default=str)


def _secret(value: SecretStr | None) -> str | None:
    return value.get_secret_value() if value is not None else None


class SlackSender(HttpSender):
    """Slack incoming-webhook sender.

    The address is either an incoming-webhook URL or a channel name posted
    through the default webhook URL.
    """

    channel = NotificationChannel.SLACK

    def __init__(self, webhook_url: str | None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.webhook_url = webhook_url

    async def send(
        self,
        content: RenderedContent,
        address: str,
        *,
        notification_id: str | None = None,
    ) -> SendResult:
        if address.startswith(("https://", "http://")):
            url, slack_channel = address, content.extras.get("channel")
        else:
            url, slack_channel = self.webhook_url, address
        if not url:
            return SendResult.permanent("Slack webhook URL is not configured")

        payload: dict[str, Any] = {"text": content.message}
        if slack_channel:
            payload["channel"] = slack_channel
        for key in ("icon_emoji", "username"):
            if content.extras.get(key):
                payload[key] = content.extras[key]

        return await self._post(
            url,
            content=self._json(payload),
            headers={"Content-Type": "application/json"},
            notification_id=notification_id,
        )


class SmsSender(HttpSender):
    """HTTP SMS gateway sender."""

    channel = NotificationChannel.SMS

    def __init__(self, gateway_url: str | None, token: SecretStr | None = None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.gateway_url = gateway_url
        self._token = _secret(token)

    async def send(
        self,
        content: RenderedContent,
        address: str,
        *,
        notification_id: str | None = None,
    ) -> SendResult:
        if not self.gateway_url:
            return SendResult.permanent("SMS gateway URL is not configured")
        phone = address.replace(" ", "").replace("-", "")
        if not _PHONE_RE.match(phone):
            return SendResult.permanent(f"Invalid phone number: {address}")

        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        payload = {"to": phone, "message": content.message, "reference": notification_id}
        return await self._post(
            self.gateway_url,
            content=self._json(payload),
            headers=headers,
            notification_id=notification_id,
        )


class PushSender(HttpSender):
    """HTTP push gateway sender. The address is the device token."""

    channel = NotificationChannel.PUSH

    def __init__(self, gateway_url: str | None, token: SecretStr | None = None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.gateway_url = gateway_url
        self._token = _secret(token)

    async def send(
        self,
        content: RenderedContent,
        address: str,
        *,
        notification_id: str | None = None,
    ) -> SendResult:
        if not self.gateway_url:
            return SendResult.permanent("Push gateway URL is not configured")

        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        payload = {
            "device_token": address,
            "title": content.title,
            "body": content.message,
            "data": {"notification_id": notification_id},
        }
        return await self._post(
            self.gateway_url,
            content=self._json(payload),
            headers=headers,
            notification_id=notification_id,
        )


class WebhookSender(HttpSender):
    """Generic outbound webhook. The address is the target URL.

    When a signing secret is configured the body is signed with
    HMAC-SHA256 over ``"{timestamp}.{body}"``.
    """

    channel = NotificationChannel.WEBHOOK

    def __init__(self, signing_secret: SecretStr | None = None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._secret = _secret(signing_secret)

    @staticmethod
    def generate_signature(secret: str, timestamp: str, payload: str) -> str:
        """Return the hex HMAC-SHA256 of ``timestamp.payload``."""
        message = f"{timestamp}.{payload}"
        return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()

    async def send(
        self,
        content: RenderedContent,
        address: str,
        *,
        notification_id: str | None = None,
    ) -> SendResult:
        if not address.startswith(("https://", "http://")):
            return SendResult.permanent(f"Invalid webhook URL: {address}")

        payload = content.extras.get("payload") or {"title": content.title, "message": content.message}
        body = self._json(payload)
        timestamp = time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())
        headers = {
            "Content-Type": "application/json",
            "User-Agent": "dispatch-service/1.0",
            "X-Notification-Timestamp": timestamp,
        }
        if notification_id:
            headers["X-Notification-Id"] = notification_id
        if self._secret:
            headers["X-Notification-Signature"] = self.generate_signature(self._secret, timestamp, body)

        return await self._post(address, content=body, headers=headers, notification_id=notification_id)


__all__ = [
    "HttpSender",
    "PushSender",
    "SlackSender",
    "SmsSender",
    "WebhookSender",
    "classify_response",
]
