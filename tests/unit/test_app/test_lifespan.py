"""Tests for FastAPI application lifespan management."""

from __future__ import annotations

from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
import pytest

from dispatch_service.app.lifespan import lifespan
from dispatch_service.app.main import create_app
from dispatch_service.features.notifications.container import ServiceContainer
from dispatch_service.features.notifications.repository import (
    InMemoryNotificationStore,
    SqlAlchemyNotificationStore,
)


class TestLifespan:
    """Test container construction and teardown."""

    async def test_builds_container_from_settings(self):
        """Test startup builds and starts a container when none is present."""
        app = FastAPI()

        async with lifespan(app):
            container: ServiceContainer = app.state.container
            assert container.started is True
            assert isinstance(container.store, InMemoryNotificationStore)
            assert container.sweeper.running is False  # APP_ENABLE_SCHEDULER=false in conftest

        assert container.started is False

    async def test_reuses_existing_container(self, container: ServiceContainer):
        """Test a container placed on app.state is used as is."""
        app = FastAPI()
        app.state.container = container

        async with lifespan(app):
            assert app.state.container is container

    async def test_database_backend_with_scheduler(self, monkeypatch: pytest.MonkeyPatch, tmp_path):
        """Test the database backend creates tables and the sweep job starts."""
        monkeypatch.setenv("NOTIFY_STORE_BACKEND", "database")
        monkeypatch.setenv("DB_URL", f"sqlite+aiosqlite:///{tmp_path / 'lifespan.db'}")
        monkeypatch.setenv("APP_ENABLE_SCHEDULER", "true")
        app = FastAPI()

        async with lifespan(app):
            container: ServiceContainer = app.state.container
            assert isinstance(container.store, SqlAlchemyNotificationStore)
            assert container.engine is not None
            assert container.sweeper.running is True

        assert container.sweeper.running is False


class TestCreateApp:
    """Test the application factory."""

    async def test_routes_and_metrics(self, client: AsyncClient):
        """Test the API routes and the Prometheus endpoint are mounted."""
        response = await client.get("/metrics/")

        assert response.status_code == 200
        assert "notification_created_total" in response.text

    def test_openapi_lists_notification_routes(self):
        """Test the OpenAPI schema documents the notification endpoints."""
        schema = create_app().openapi()

        assert "/api/v1/notifications" in schema["paths"]
        assert "/api/v1/notifications/templates/{template_id}/test" in schema["paths"]

    async def test_full_lifespan_over_http(self):
        """Test a request served between startup and shutdown."""
        app = create_app()

        async with lifespan(app):
            async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
                response = await client.get("/api/v1/notifications")

        assert response.status_code == 200
        assert response.json()["data"]["pagination"]["total"] == 0
