"""HTTP middleware for the Unibox API."""

from .error_handler import ErrorHandlerMiddleware, ValidationErrorHandler

__all__ = ["ErrorHandlerMiddleware", "ValidationErrorHandler"]
