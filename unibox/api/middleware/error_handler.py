"""
Global error handling middleware with tenant and context awareness.

Provides structured error responses and logging for the Unibox API.
"""

import time
import traceback
from typing import Any

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from unibox.core.config.settings import settings
from unibox.core.logging.context import get_context_info
from unibox.core.logging.logger import get_logger


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """
    Global error handling middleware with tenant-aware logging.

    Catches all unhandled exceptions and returns structured JSON without
    exposing internal details outside development.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        try:
            return await call_next(request)

        except HTTPException as http_exc:
            await self._log_http_exception(request, http_exc)
            raise

        except Exception as exc:
            return await self._handle_unexpected_exception(request, exc)

    async def _log_http_exception(self, request: Request, exc: HTTPException) -> None:
        logger = get_logger(__name__)
        logger.warning(
            f"HTTP {exc.status_code} - {request.method} {request.url.path} - "
            f"Detail: {exc.detail}"
        )

    async def _handle_unexpected_exception(
        self, request: Request, exc: Exception
    ) -> JSONResponse:
        logger = get_logger(__name__)
        logger.error(
            f"Unhandled exception in {request.method} {request.url.path}: {exc}",
            exc_info=True,
        )

        if self._is_webhook_endpoint(request.url.path):
            return self._create_webhook_error_response(exc)
        return self._create_api_error_response(exc)

    def _is_webhook_endpoint(self, path: str) -> bool:
        return path.startswith("/webhooks/")

    def _create_webhook_error_response(self, exc: Exception) -> JSONResponse:
        """
        Webhook failures are acknowledged with 200.

        Meta retries and eventually disables subscriptions that keep
        answering with errors; the failure is already in the logs.
        """
        error_response: dict[str, Any] = {"status": "error", "type": "webhook_error"}
        if settings.is_development:
            error_response["debug"] = {
                "exception_type": type(exc).__name__,
                "exception_message": str(exc),
            }
        return JSONResponse(status_code=200, content=error_response)

    def _create_api_error_response(self, exc: Exception) -> JSONResponse:
        error_response: dict[str, Any] = {
            "detail": "Internal server error",
            "type": "internal_error",
            "timestamp": time.time(),
        }

        if settings.is_development:
            error_response["debug"] = {
                "exception_type": type(exc).__name__,
                "exception_message": str(exc),
                "traceback": traceback.format_exc().split("\n"),
                "context": get_context_info(),
            }

        return JSONResponse(status_code=500, content=error_response)


class ValidationErrorHandler:
    """Formats Pydantic validation errors for API responses."""

    @staticmethod
    def format_validation_error(exc: Any) -> dict[str, Any]:
        errors = []

        for error in exc.errors():
            errors.append(
                {
                    "field": " -> ".join(str(loc) for loc in error["loc"]),
                    "message": error["msg"],
                    "type": error["type"],
                }
            )

        return {
            "detail": "Validation failed",
            "type": "validation_error",
            "errors": errors,
        }
