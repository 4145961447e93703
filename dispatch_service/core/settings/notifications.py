"""Notification dispatch settings.

Environment variables use NOTIFY_ prefix.
Example: NOTIFY_SENDER_MODE=console, NOTIFY_RETRY_BASE_DELAY_SECONDS=30
"""

from __future__ import annotations

from typing import Literal

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SenderMode = Literal["live", "console", "fake"]
StoreBackend = Literal["memory", "database"]
SmsOverflow = Literal["truncate", "reject"]


class NotificationSettings(BaseSettings):
    """Dispatch, retry, and channel provider configuration.

    Strategy choices (``store_backend``, ``sender_mode``) are read once when the
    service container is built at startup. They replace any per-call toggle.
    """

    # ──────────────────────────────────────────────────────────────
    # Strategy selection
    # ──────────────────────────────────────────────────────────────

    store_backend: StoreBackend = Field(
        default="database",
        description="Record/template store: database (SQLAlchemy) or memory (process-local)",
    )
    sender_mode: SenderMode = Field(
        default="console",
        description="Channel senders: live (real providers), console (log only), fake (scripted)",
    )

    # ──────────────────────────────────────────────────────────────
    # Dispatch and retry
    # ──────────────────────────────────────────────────────────────

    send_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        le=300,
        description="Upper bound for a single sender call; exceeding it is a transient failure",
    )
    default_max_retries: int = Field(
        default=3,
        ge=0,
        le=20,
        description="max_retries assigned to new records when the caller gives none",
    )
    retry_base_delay_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Base delay of the exponential retry backoff",
    )
    retry_max_delay_seconds: float = Field(
        default=3600.0,
        gt=0,
        description="Ceiling for any single retry delay",
    )
    sweep_interval_seconds: int = Field(
        default=30,
        ge=1,
        le=3600,
        description="Interval of the background sweep picking up due retries and scheduled sends",
    )
    sweep_batch_size: int = Field(
        default=100,
        ge=1,
        le=10_000,
        description="Maximum records processed per sweep",
    )

    # ──────────────────────────────────────────────────────────────
    # Rendering
    # ──────────────────────────────────────────────────────────────

    sms_overflow: SmsOverflow = Field(
        default="truncate",
        description="SMS longer than max_length: truncate with ellipsis or reject",
    )
    sms_default_max_length: int = Field(default=160, ge=1, le=1600)

    # ──────────────────────────────────────────────────────────────
    # Bulk, analytics, maintenance
    # ──────────────────────────────────────────────────────────────

    bulk_concurrency: int = Field(
        default=10,
        ge=1,
        le=500,
        description="Recipients of one bulk batch dispatched concurrently",
    )
    bulk_max_recipients: int = Field(default=10_000, ge=1)
    channel_unit_costs: dict[str, float] = Field(
        default_factory=lambda: {
            "EMAIL": 0.0001,
            "SMS": 0.0075,
            "SLACK": 0.0,
            "IN_APP": 0.0,
            "WEBHOOK": 0.0,
            "PUSH": 0.0001,
        },
        description="Estimated provider cost per successfully accepted message, by channel",
    )
    analytics_max_range_days: int = Field(default=366, ge=1)
    purge_default_days: int = Field(default=30, ge=1)

    # ──────────────────────────────────────────────────────────────
    # Live providers
    # ──────────────────────────────────────────────────────────────

    smtp_host: str = Field(default="localhost", min_length=1, max_length=255)
    smtp_port: int = Field(default=587, ge=1, le=65535)
    smtp_username: str | None = Field(default=None, max_length=255)
    smtp_password: SecretStr | None = Field(default=None)
    smtp_use_tls: bool = Field(default=True, description="STARTTLS (port 587)")
    smtp_use_ssl: bool = Field(default=False, description="Implicit TLS (port 465)")
    email_from_address: str = Field(default="notifications@example.com")
    email_from_name: str = Field(default="Notifications")

    slack_webhook_url: str | None = Field(
        default=None,
        description="Default Slack incoming-webhook URL when the recipient address is a channel name",
    )
    sms_gateway_url: str | None = Field(default=None, description="HTTP SMS gateway endpoint")
    sms_gateway_token: SecretStr | None = Field(default=None)
    push_gateway_url: str | None = Field(default=None, description="HTTP push gateway endpoint")
    push_gateway_token: SecretStr | None = Field(default=None)
    webhook_signing_secret: SecretStr | None = Field(
        default=None,
        description="HMAC-SHA256 secret for X-Notification-Signature on outbound webhooks",
    )

    model_config = SettingsConfigDict(
        env_prefix="NOTIFY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )

    @model_validator(mode="after")
    def validate_delays(self) -> NotificationSettings:
        """Ensure the retry ceiling is not below the base delay."""
        if self.retry_max_delay_seconds < self.retry_base_delay_seconds:
            msg = "retry_max_delay_seconds must be >= retry_base_delay_seconds"
            raise ValueError(msg)
        if self.smtp_use_tls and self.smtp_use_ssl:
            msg = "smtp_use_tls and smtp_use_ssl are mutually exclusive"
            raise ValueError(msg)
        return self

    def unit_cost(self, channel: str) -> float:
        """Return the configured unit cost for a channel name (0.0 if unknown)."""
        return self.channel_unit_costs.get(channel.upper(), 0.0)
