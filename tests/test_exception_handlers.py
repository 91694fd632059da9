"""Tests for global exception handlers.

Validates that all exception types are handled consistently with
proper HTTP status codes, error format, and no information leakage.
"""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from window_limiter.core.errors import (
    AppError,
    ConfigurationAppError,
    RateLimitExceededAppError,
)
from window_limiter.core.exception_handlers import general_exception_handler, setup_exception_handlers
from window_limiter.services.rate_limiter import rate_limit


@pytest.fixture
def app_with_handlers() -> FastAPI:
    """Create FastAPI app with exception handlers registered."""
    app = FastAPI()
    setup_exception_handlers(app)
    return app


@pytest.fixture
def client(app_with_handlers: FastAPI) -> TestClient:
    """Create test client; server exceptions become responses."""
    return TestClient(app_with_handlers, raise_server_exceptions=False)


class TestAppErrorHandler:
    """Test handler for AppError and subclasses."""

    def test_rate_limit_error_returns_429_with_retry_after(self, client: TestClient, app_with_handlers: FastAPI):
        """Verify RateLimitExceededAppError maps to 429 plus Retry-After."""
        @app_with_handlers.get("/test-rate-limit")
        async def test_endpoint():
            raise RateLimitExceededAppError(
                code="too_many_requests",
                message="Too many requests",
                details={"retry_after": 12},
            )

        response = client.get("/test-rate-limit")

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "12"
        data = response.json()
        assert data["error"]["code"] == "too_many_requests"
        assert data["error"]["details"] == {"retry_after": 12}

    def test_configuration_error_returns_500(self, client: TestClient, app_with_handlers: FastAPI):
        """Verify ConfigurationAppError is reported as a server-side problem."""
        @app_with_handlers.get("/test-config")
        async def test_endpoint():
            raise ConfigurationAppError(
                code="invalid_rate_period",
                message="Rate period must be at least 1 second",
                details={"period_in_seconds": 0.5},
            )

        response = client.get("/test-config")

        assert response.status_code == 500
        data = response.json()
        assert data["error"]["code"] == "invalid_rate_period"
        assert data["error"]["details"]["period_in_seconds"] == 0.5

    def test_plain_app_error_returns_400(self, client: TestClient, app_with_handlers: FastAPI):
        """Verify other AppErrors are client errors without details when none given."""
        @app_with_handlers.get("/test-plain")
        async def test_endpoint():
            raise AppError(code="bad_key", message="Key must not be empty")

        response = client.get("/test-plain")

        assert response.status_code == 400
        assert "details" not in response.json()["error"]

    def test_decorated_function_rejection_surfaces_as_429(self, clock, client: TestClient, app_with_handlers: FastAPI):
        """Verify the rate_limit decorator's error flows through the handler."""
        @rate_limit(key=lambda: "shared", rate="1 request in 1 minute", clock=clock)
        async def expensive() -> dict:
            return {"ok": True}

        @app_with_handlers.get("/test-decorated")
        async def test_endpoint():
            return await expensive()

        assert client.get("/test-decorated").status_code == 200
        response = client.get("/test-decorated")

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "20"

    def test_error_response_format_is_consistent(self, client: TestClient, app_with_handlers: FastAPI):
        """Verify error responses have consistent JSON structure."""
        @app_with_handlers.get("/test-format")
        async def test_endpoint():
            raise AppError(code="test", message="test")

        response = client.get("/test-format")
        data = response.json()

        # Required fields always present
        assert "error" in data
        assert "code" in data["error"]
        assert "message" in data["error"]
        assert "request_id" in data["error"]


class TestGeneralExceptionHandler:
    """Test fallback handler for unexpected exceptions."""

    def test_unexpected_exception_returns_500(self, client: TestClient, app_with_handlers: FastAPI):
        """Verify unexpected errors become a generic 500."""
        @app_with_handlers.get("/test-crash")
        async def test_endpoint():
            raise RuntimeError("redis pool exhausted")

        response = client.get("/test-crash")

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "internal_server_error"
        assert "redis pool" not in response.text

    def test_general_exception_handler_never_leaks_stack_trace(self):
        """Verify stack traces are never included in response."""
        request = AsyncMock()
        request.url.path = "/test"
        request.method = "GET"

        exc = ValueError("Test error with details")
        response = asyncio.run(general_exception_handler(request, exc))

        response_body = response.body if isinstance(response.body, bytes) else bytes(response.body)
        response_text = response_body.decode()
        data = json.loads(response_text)
        assert data["error"]["code"] == "internal_server_error"
        # No traceback indicators
        assert "Traceback" not in response_text
        assert "File \"" not in response_text
        assert "ValueError" not in response_text


class TestErrorHandlerIntegration:
    """Integration tests for exception handler setup."""

    def test_setup_exception_handlers_registers_handlers(self, app_with_handlers: FastAPI):
        """Verify setup_exception_handlers properly registers handlers."""
        assert AppError in app_with_handlers.exception_handlers
        assert Exception in app_with_handlers.exception_handlers

    def test_multiple_handler_setups_does_not_fail(self):
        """Verify calling setup_exception_handlers multiple times is safe."""
        app = FastAPI()

        setup_exception_handlers(app)
        setup_exception_handlers(app)

        assert AppError in app.exception_handlers
