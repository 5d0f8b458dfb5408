"""Exceptions raised by the analytics service and the status codes they map to."""
from __future__ import annotations

from typing import Any, Dict, Optional


class AnalyticsError(Exception):
    """Base class for errors rendered as ``{"error": message}`` responses."""

    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationError(AnalyticsError):
    """Missing or malformed input. Nothing has been written."""

    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message, {"field": field} if field else None)
        self.field = field


class AuthError(AnalyticsError):
    """Unknown or inactive API key, or an unauthenticated dashboard request."""

    status_code = 401


class NotFoundError(AnalyticsError):
    """Missing resource, or one owned by somebody else."""

    status_code = 404

    def __init__(self, resource: str) -> None:
        super().__init__(f"{resource} not found")


class RateLimitError(AnalyticsError):
    """Raised when a caller exceeds the configured rate limit."""

    status_code = 429


class StorageError(AnalyticsError):
    """A persistence failure after input was accepted."""

    status_code = 500
