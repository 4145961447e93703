"""Request ID middleware for per-request tracking.

This middleware:
1. Extracts request ID from X-Request-ID header if present
2. Generates a new UUIDv7 if header is missing
3. Stores the ID in request.state.request_id and the start time in
   request.state.started_at (used for processing_time_ms in the envelope)
4. Adds the ID to logging context
5. Includes X-Request-ID in response headers
6. Cleans up logging context after request completes
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

from dispatch_service.app.middleware.base import HeaderContextMiddleware
from dispatch_service.core.database import uuid7_str

if TYPE_CHECKING:
    from starlette.types import Scope


class RequestIDMiddleware(HeaderContextMiddleware):
    """Add unique request ID to all requests for correlation.

    Usage:
        app = FastAPI()
        app.add_middleware(RequestIDMiddleware)

        @app.get("/")
        async def root(request: Request):
            return {"request_id": request.state.request_id}
    """

    header_name = "x-request-id"
    state_key = "request_id"
    log_context_key = "request_id"
    should_clear_context_on_finish = True  # Clean up to prevent context leakage

    def generate_value(self) -> str:
        return uuid7_str()

    def on_value_extracted(self, scope: Scope, value: str, was_generated: bool) -> None:
        scope["state"]["started_at"] = time.perf_counter()
