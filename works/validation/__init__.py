"""
Centralized error types for the recurring work engine.

Service-layer exceptions derive from APIError so the API layer can render
them without translation.
"""

from .errors import (
    APIError,
    BusinessRuleError,
    ConflictError,
    DuplicatePeriodError,
    ErrorCode,
    ErrorResponse,
    InvalidStatusError,
    InvalidTransitionError,
    NotFoundError,
    PeriodLockedError,
    TransactionFailureError,
    UnknownPatternError,
    WorkLockedError,
    ValidationError,
    format_validation_errors,
)

__all__ = [
    "APIError",
    "BusinessRuleError",
    "ConflictError",
    "DuplicatePeriodError",
    "ErrorCode",
    "ErrorResponse",
    "InvalidStatusError",
    "InvalidTransitionError",
    "NotFoundError",
    "PeriodLockedError",
    "TransactionFailureError",
    "UnknownPatternError",
    "WorkLockedError",
    "ValidationError",
    "format_validation_errors",
]
