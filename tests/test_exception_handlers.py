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

from ratekeeper.core.errors import (
    AppError,
    AuthenticationAppError,
    BackendUnavailableAppError,
    NotFoundAppError,
    RateLimitExceededAppError,
    ValidationAppError,
)
from ratekeeper.core.exception_handlers import general_exception_handler, setup_exception_handlers


@pytest.fixture
def app_with_handlers() -> FastAPI:
    """Create FastAPI app with exception handlers registered."""
    app = FastAPI()
    setup_exception_handlers(app)
    return app


@pytest.fixture
def client(app_with_handlers: FastAPI) -> TestClient:
    return TestClient(app_with_handlers, raise_server_exceptions=False)


class TestAppErrorHandler:
    """Test handler for AppError and subclasses."""

    @pytest.mark.parametrize(
        "error, status_code",
        [
            (ValidationAppError(code="invalid_rate_limit_key", message="bad key"), 400),
            (AuthenticationAppError(code="invalid_api_key", message="Invalid or missing API key"), 403),
            (NotFoundAppError(code="unknown_limiter", message="No rate limiter named 'x'"), 404),
            (BackendUnavailableAppError(code="rate_limit_backend_unavailable", message="down"), 503),
            (AppError(code="generic", message="generic"), 400),
        ],
    )
    def test_status_mapping(
        self,
        client: TestClient,
        app_with_handlers: FastAPI,
        error: AppError,
        status_code: int,
    ) -> None:
        @app_with_handlers.get("/boom")
        async def boom():
            raise error

        response = client.get("/boom")

        assert response.status_code == status_code
        data = response.json()
        assert data["error"]["code"] == error.code
        assert data["error"]["message"] == error.message
        assert "request_id" in data["error"]
        assert "details" not in data["error"]

    def test_rate_limit_error_returns_429_with_headers(
        self, client: TestClient, app_with_handlers: FastAPI
    ) -> None:
        @app_with_handlers.get("/limited")
        async def limited():
            raise RateLimitExceededAppError(
                code="rate_limit_exceeded",
                message="Rate limit exceeded. Try again later.",
                details={"limiter": "auth", "retry_after": 42},
                headers={"Retry-After": "42", "X-RateLimit-Limit": "5"},
            )

        response = client.get("/limited")

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "42"
        assert response.headers["X-RateLimit-Limit"] == "5"
        assert response.json()["error"]["details"] == {"limiter": "auth", "retry_after": 42}

    def test_rate_limit_error_without_headers(self, client: TestClient, app_with_handlers: FastAPI) -> None:
        @app_with_handlers.get("/limited-plain")
        async def limited_plain():
            raise RateLimitExceededAppError(code="rate_limit_exceeded", message="slow down")

        response = client.get("/limited-plain")

        assert response.status_code == 429
        assert "Retry-After" not in response.headers


class TestGeneralExceptionHandler:
    """Test fallback handler for unexpected exceptions."""

    def test_unexpected_exception_returns_500(self, client: TestClient, app_with_handlers: FastAPI) -> None:
        @app_with_handlers.get("/crash")
        async def crash():
            raise RuntimeError("redis password=hunter2 rejected")

        response = client.get("/crash")

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "internal_server_error"
        assert "hunter2" not in response.text

    def test_general_exception_handler_never_leaks_stack_trace(self) -> None:
        request = AsyncMock()
        request.url.path = "/test"
        request.method = "GET"

        response = asyncio.run(general_exception_handler(request, ValueError("Test error with details")))

        response_text = bytes(response.body).decode()
        data = json.loads(response_text)
        assert data["error"]["code"] == "internal_server_error"
        assert "Traceback" not in response_text
        assert "ValueError" not in response_text


def test_setup_exception_handlers_registers_handlers(app_with_handlers: FastAPI) -> None:
    assert AppError in app_with_handlers.exception_handlers
    assert Exception in app_with_handlers.exception_handlers
