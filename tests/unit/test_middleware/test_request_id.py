"""Unit tests for RequestIDMiddleware."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from unittest.mock import MagicMock, patch
import uuid

import pytest
from fastapi import FastAPI, Request
from httpx import ASGITransport, AsyncClient

from dispatch_service.app.middleware.request_id import RequestIDMiddleware
from dispatch_service.infra.logging.context import get_log_context


class TestRequestIDMiddleware:
    """Test suite for RequestIDMiddleware."""

    @pytest.fixture
    def app(self) -> FastAPI:
        """Create a minimal FastAPI app with RequestIDMiddleware.

        Returns:
            FastAPI application with middleware.
        """
        app = FastAPI()
        app.add_middleware(RequestIDMiddleware)

        @app.get("/echo")
        async def echo(request: Request):
            return {
                "request_id": request.state.request_id,
                "has_start_time": hasattr(request.state, "started_at"),
                "log_context": get_log_context(),
            }

        return app

    @pytest.fixture
    async def client(self, app: FastAPI) -> AsyncGenerator[AsyncClient]:
        """Create an async HTTP client.

        Args:
            app: FastAPI application fixture.

        Yields:
            Async HTTP client.
        """
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac

    async def test_generates_uuid7_when_not_provided(self, client: AsyncClient):
        """Test that middleware generates a UUIDv7 when X-Request-ID is absent."""
        response = await client.get("/echo")

        assert response.status_code == 200
        request_id = response.headers["x-request-id"]
        assert uuid.UUID(request_id).version == 7
        assert response.json()["request_id"] == request_id

    async def test_preserves_existing_request_id(self, client: AsyncClient):
        """Test that middleware preserves X-Request-ID from the incoming request."""
        custom_id = str(uuid.uuid4())

        response = await client.get("/echo", headers={"X-Request-ID": custom_id})

        assert response.headers["x-request-id"] == custom_id
        assert response.json()["request_id"] == custom_id

    async def test_records_start_time(self, client: AsyncClient):
        """Test the request start time is stored for processing_time_ms."""
        response = await client.get("/echo")

        assert response.json()["has_start_time"] is True

    async def test_sets_logging_context(self, client: AsyncClient):
        """Test the request id is visible in the logging context during the request."""
        response = await client.get("/echo", headers={"X-Request-ID": "req-42"})

        assert response.json()["log_context"]["request_id"] == "req-42"

    @patch("dispatch_service.app.middleware.base.clear_log_context")
    async def test_clears_logging_context_after_request(self, mock_clear_context: MagicMock, client: AsyncClient):
        """Test that middleware clears logging context after the request completes."""
        await client.get("/echo")

        mock_clear_context.assert_called_once()

    @patch("dispatch_service.app.middleware.base.clear_log_context")
    async def test_clears_context_on_error(self, mock_clear_context: MagicMock):
        """Test that middleware clears context even when the handler raises."""
        app = FastAPI()
        app.add_middleware(RequestIDMiddleware)

        @app.get("/error")
        async def error_endpoint():
            raise ValueError("Test error")

        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            with pytest.raises(ValueError, match="Test error"):
                await client.get("/error")

        mock_clear_context.assert_called_once()
