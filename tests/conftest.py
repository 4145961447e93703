"""Pytest configuration and shared fixtures.

Fixtures are organized by category:
    - Settings Fixtures: frozen settings tuned for fast tests
    - Component Fixtures: fake channel senders, stores and the service container
    - Application Fixtures: FastAPI app and HTTP client
    - Data Fixtures: reusable template payloads and requests

The whole suite runs without external infrastructure: records and templates
live in memory and every channel is served by a scripted FakeSender.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
import os
import random

import pytest
from httpx import ASGITransport, AsyncClient

from dispatch_service.core.settings import (
    AppSettings,
    DatabaseSettings,
    LoggingSettings,
    NotificationSettings,
    Settings,
    clear_all_caches,
)
from dispatch_service.features.notifications.channels import ChannelRegistry, FakeSender
from dispatch_service.features.notifications.container import ServiceContainer
from dispatch_service.features.notifications.enums import (
    NotificationChannel,
    NotificationTriggerEvent,
)
from dispatch_service.features.notifications.schemas import (
    EmailTemplate,
    InAppTemplate,
    NotificationMetadata,
    NotificationTemplateCreate,
    SmsTemplate,
)

# Ensure tests run without external infrastructure
os.environ.setdefault("APP_ENVIRONMENT", "test")
os.environ.setdefault("APP_ENABLE_SCHEDULER", "false")
os.environ.setdefault("NOTIFY_STORE_BACKEND", "memory")
os.environ.setdefault("NOTIFY_SENDER_MODE", "fake")
os.environ.setdefault("LOG_JSON_LOGS", "false")


@pytest.fixture(autouse=True)
def _clear_settings_caches():
    """Drop cached settings so env changes made by a test never leak."""
    clear_all_caches()
    yield
    clear_all_caches()


# ============================================================================
# Settings Fixtures
# ============================================================================


@pytest.fixture
def notification_settings() -> NotificationSettings:
    """Notification settings with millisecond retry delays.

    Returns:
        NotificationSettings using the memory backend and fake senders.
    """
    return NotificationSettings(
        store_backend="memory",
        sender_mode="fake",
        send_timeout_seconds=1.0,
        default_max_retries=3,
        retry_base_delay_seconds=0.001,
        retry_max_delay_seconds=0.02,
        bulk_concurrency=4,
    )


@pytest.fixture
def settings(notification_settings: NotificationSettings) -> Settings:
    """Unified settings for the test container.

    Args:
        notification_settings: Notification settings fixture.

    Returns:
        Settings with the in-process scheduler disabled.
    """
    return Settings(
        app=AppSettings(environment="test", enable_scheduler=False),
        db=DatabaseSettings(),
        logging=LoggingSettings(),
        notifications=notification_settings,
    )


# ============================================================================
# Component Fixtures
# ============================================================================


@pytest.fixture
def registry() -> ChannelRegistry:
    """Registry with one FakeSender per channel.

    Example:
        async def test_retry(registry):
            registry.get(NotificationChannel.SMS).script(SendResult.transient("503"))
    """
    return ChannelRegistry({channel: FakeSender(channel) for channel in NotificationChannel})


@pytest.fixture
def rng() -> random.Random:
    """Seeded jitter source so retry delays are reproducible."""
    return random.Random(1234)


@pytest.fixture
async def container(
    settings: Settings, registry: ChannelRegistry, rng: random.Random
) -> AsyncGenerator[ServiceContainer]:
    """Started service container wired to the fake registry.

    The sweep scheduler is not started; tests call ``process_due`` directly.

    Yields:
        ServiceContainer with in-memory stores.
    """
    container = ServiceContainer.build(settings, registry=registry, rng=rng)
    await container.startup(run_scheduler=False)
    try:
        yield container
    finally:
        await container.shutdown()


# ============================================================================
# Application Fixtures
# ============================================================================


@pytest.fixture
async def app(container: ServiceContainer):
    """Create FastAPI application for testing.

    ASGITransport does not run the lifespan, so the test container is placed
    on ``app.state`` directly.

    Returns:
        FastAPI application instance.
    """
    from dispatch_service.app.main import create_app

    app = create_app()
    app.state.container = container
    return app


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient]:
    """Create async HTTP client for testing.

    Args:
        app: FastAPI application fixture.

    Yields:
        Async HTTP client for making test requests.

    Example:
        async def test_list(client):
            response = await client.get("/api/v1/notifications")
            assert response.status_code == 200
    """
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# ============================================================================
# Data Fixtures
# ============================================================================


@pytest.fixture
def payment_template_payload() -> NotificationTemplateCreate:
    """Template for PAYMENT_FAILED with email, SMS and in-app content."""
    return NotificationTemplateCreate(
        name="Payment failed",
        description="Sent when a card payment is declined",
        trigger_event=NotificationTriggerEvent.PAYMENT_FAILED,
        channels=[NotificationChannel.EMAIL, NotificationChannel.SMS, NotificationChannel.IN_APP],
        email=EmailTemplate(
            subject="Payment of {{ amount }} {{ currency }} failed",
            text_content="Hi {{ user_name }}, your payment of {{ amount }} {{ currency }} failed.",
            html_content="<p>Hi {{ user_name }}</p>",
        ),
        sms=SmsTemplate(message="{{ user_name }}: payment of {{ amount }} failed"),
        in_app=InAppTemplate(
            title="Payment failed",
            message="Payment of {{ amount }} by {{ user_name }} failed",
            action_url="{{ action_url }}",
        ),
        default_variables={"action_url": "https://example.com/billing"},
    )


@pytest.fixture
def payment_metadata() -> NotificationMetadata:
    """Metadata carried by a PAYMENT_FAILED event."""
    return NotificationMetadata(
        user_id="user-1",
        user_email="ada@example.com",
        user_name="Ada",
        admin_id="admin-1",
        amount="42.50",
        currency="USD",
    )
