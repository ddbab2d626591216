"""
בדיקות ל-Middleware - delivery_market/core/middleware.py

מכסה:
- CorrelationIdMiddleware: הפצת correlation ID בבקשות
- RequestLoggingMiddleware: לוג בקשות
- Exception handlers: AppException לפי ErrorCode, ו-Exception גנרי
"""
import json
from unittest.mock import AsyncMock

import pytest
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse
from starlette.routing import Route
from starlette.testclient import TestClient

from delivery_market.core.exceptions import (
    AttachmentExistsError,
    DeliveryAlreadyClaimedError,
    InsufficientFundsError,
    OperationTimeoutError,
    ValidationError,
)
from delivery_market.core.middleware import (
    CorrelationIdMiddleware,
    RequestLoggingMiddleware,
    app_exception_handler,
    generic_exception_handler,
)


def _hello(request: Request) -> PlainTextResponse:
    return PlainTextResponse("ok")


def _error(request: Request) -> PlainTextResponse:
    raise ValueError("שגיאת בדיקה")


def _build_app(middlewares: list | None = None) -> Starlette:
    """בונה אפליקציית Starlette מינימלית עם middleware."""
    app = Starlette(routes=[Route("/test", _hello), Route("/error", _error)])
    for mw_class in middlewares or []:
        app.add_middleware(mw_class)
    return app


def _request(path: str):
    mock_request = AsyncMock(spec=Request)
    mock_request.url.path = path
    return mock_request


class TestCorrelationIdMiddleware:

    @pytest.mark.unit
    def test_generates_correlation_id_when_missing(self) -> None:
        with TestClient(_build_app([CorrelationIdMiddleware])) as client:
            response = client.get("/test")
            assert response.status_code == 200
            assert response.headers["x-correlation-id"]

    @pytest.mark.unit
    def test_preserves_existing_correlation_id(self) -> None:
        with TestClient(_build_app([CorrelationIdMiddleware])) as client:
            response = client.get("/test", headers={"X-Correlation-ID": "my-custom-id"})
            assert response.headers["x-correlation-id"] == "my-custom-id"

    @pytest.mark.unit
    def test_correlation_id_unique_per_request(self) -> None:
        with TestClient(_build_app([CorrelationIdMiddleware])) as client:
            first = client.get("/test").headers["x-correlation-id"]
            second = client.get("/test").headers["x-correlation-id"]
            assert first != second


class TestRequestLoggingMiddleware:

    @pytest.mark.unit
    def test_successful_request_logged(self) -> None:
        with TestClient(_build_app([RequestLoggingMiddleware])) as client:
            assert client.get("/test").status_code == 200

    @pytest.mark.unit
    def test_exception_in_handler_reraised(self) -> None:
        with TestClient(_build_app([RequestLoggingMiddleware]), raise_server_exceptions=False) as client:
            assert client.get("/error").status_code == 500


class TestAppExceptionHandler:

    @pytest.mark.parametrize(
        "exc,status,code",
        [
            (ValidationError("bad", field="weight_kg"), 400, "ERR_1001"),
            (DeliveryAlreadyClaimedError("d1", "assigned"), 409, "ERR_2002"),
            (AttachmentExistsError("d1", "feedback"), 409, "ERR_2003"),
            (InsufficientFundsError("driver-1", 10, 20), 400, "ERR_4002"),
            (OperationTimeoutError("claim_delivery", 10.0), 504, "ERR_1007"),
        ],
    )
    async def test_maps_error_code_and_status(self, exc, status, code) -> None:
        response = await app_exception_handler(_request("/api/deliveries/d1"), exc)

        assert isinstance(response, JSONResponse)
        assert response.status_code == status
        assert "x-correlation-id" in response.headers
        body = json.loads(response.body)
        assert body["error"]["code"] == code
        assert body["error"]["details"] == exc.details


class TestGenericExceptionHandler:

    async def test_handles_unexpected_exception(self) -> None:
        response = await generic_exception_handler(_request("/api/something"), RuntimeError("שגיאה"))

        assert response.status_code == 500
        assert "x-correlation-id" in response.headers

    async def test_does_not_leak_internal_details(self) -> None:
        exc = RuntimeError("database connection failed on host 10.0.0.1")

        response = await generic_exception_handler(_request("/api/test"), exc)

        body = response.body.decode()
        assert "10.0.0.1" not in body
        assert "ERR_1000" in body
