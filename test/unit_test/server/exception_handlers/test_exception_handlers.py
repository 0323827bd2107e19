"""
Unit tests for server exception handlers.

Tests cover the mapping of engine errors to HTTP status codes and the
global fallback for unexpected exceptions.
"""

from unittest.mock import Mock, patch

import pytest
from fastapi import FastAPI, Request
from httpx import ASGITransport, AsyncClient

from hero_engine.agent_core.errors import (
    BudgetExceeded,
    Forbidden,
    HeroEngineError,
    HookBlocked,
    InvalidState,
    InvalidTransition,
    NotFound,
    OracleFailure,
    PersistenceFailure,
)
from hero_engine.server.exception_handlers import setup_exception_handlers
from hero_engine.server.exception_handlers.domain_handler import engine_error_handler, status_for
from hero_engine.server.exception_handlers.global_handler import global_exception_handler


@pytest.fixture
def mock_request():
    """Create a mock request object."""
    request = Mock(spec=Request)
    request.method = "GET"
    request.url.path = "/api/v1/test"
    request.query_params = {}
    request.client = Mock()
    request.client.host = "127.0.0.1"
    return request


class TestStatusMapping:
    @pytest.mark.parametrize(
        "exc,status",
        [
            (NotFound("Execution", "e1"), 404),
            (Forbidden(), 403),
            (InvalidTransition("e1", "complete", "running"), 409),
            (InvalidState("busy"), 409),
            (BudgetExceeded("Daily budget limit ($1.00) exceeded. Used: $1.00"), 402),
            (HookBlocked("security_guard", "Potential injection detected"), 422),
            (OracleFailure("down"), 500),
            (PersistenceFailure("version conflict"), 500),
            (HeroEngineError("other"), 500),
        ],
    )
    def test_status_for(self, exc: HeroEngineError, status: int) -> None:
        assert status_for(exc) == status

    def test_subclasses_inherit_the_status(self) -> None:
        class MissingCheckpoint(NotFound):
            pass

        assert status_for(MissingCheckpoint("Checkpoint", "c1")) == 404


class TestEngineErrorHandler:
    async def test_body_shape(self, mock_request) -> None:
        response = await engine_error_handler(mock_request, NotFound("Hook", "h1"))
        assert response.status_code == 404
        assert response.body == b'{"detail":"Hook not found: \'h1\'","code":"not_found"}'

    async def test_server_errors_are_logged_with_traceback(self, mock_request) -> None:
        with patch("hero_engine.server.exception_handlers.domain_handler.logger") as mock_logger:
            response = await engine_error_handler(mock_request, PersistenceFailure("disk full"))

        assert response.status_code == 500
        mock_logger.error.assert_called_once()
        assert "exc_info" in mock_logger.error.call_args[1]

    async def test_client_errors_are_logged_at_info(self, mock_request) -> None:
        with patch("hero_engine.server.exception_handlers.domain_handler.logger") as mock_logger:
            await engine_error_handler(mock_request, Forbidden())

        mock_logger.error.assert_not_called()
        mock_logger.info.assert_called_once()


class TestGlobalExceptionHandler:
    async def test_logs_and_returns_500(self, mock_request) -> None:
        with patch("hero_engine.server.exception_handlers.global_handler.logger") as mock_logger:
            response = await global_exception_handler(mock_request, ValueError("Test error"))

        assert response.status_code == 500
        mock_logger.error.assert_called_once()
        call_args = mock_logger.error.call_args
        assert "Unhandled exception" in call_args[0][0]
        assert call_args[1]["extra"]["error_type"] == "ValueError"

    async def test_request_without_client(self, mock_request) -> None:
        mock_request.client = None
        with patch("hero_engine.server.exception_handlers.global_handler.logger") as mock_logger:
            await global_exception_handler(mock_request, RuntimeError("boom"))

        assert mock_logger.error.call_args[1]["extra"]["client"] == "unknown"


async def test_handlers_registered_on_an_app() -> None:
    app = FastAPI()
    setup_exception_handlers(app)

    @app.get("/budget")
    async def budget():
        raise BudgetExceeded("Monthly budget limit ($5.00) exceeded. Used: $5.10")

    @app.get("/crash")
    async def crash():
        raise RuntimeError("unexpected")

    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://localhost") as client:
        budget_response = await client.get("/budget")
        assert budget_response.status_code == 402
        assert budget_response.json() == {
            "detail": "Monthly budget limit ($5.00) exceeded. Used: $5.10",
            "code": "budget_exceeded",
        }

        crash_response = await client.get("/crash")
        assert crash_response.status_code == 500
        body = crash_response.json()
        assert body["code"] == "internal_error"
        assert body["error_type"] == "RuntimeError"
