"""Application-level exception types.

This module defines domain errors used across the gate, its stores and the
HTTP layer, enabling consistent error handling, logging, and API responses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional to keep the shape stable across error types.
    """

    code: str
    message: str
    backend: str
    operation: str
    field: str


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when request input (e.g., client identity) is malformed."""


class ConfigurationAppError(AppError):
    """Raised when the gate or its store is misconfigured."""


class StoreAppError(AppError):
    """Raised when the counter store cannot answer a query."""


class ConnectionCancelledError(StoreAppError):
    """Raised when a reconnect loop is interrupted by shutdown."""
