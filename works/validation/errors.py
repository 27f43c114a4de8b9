"""
Standardized Error Handling

Provides consistent error format:
API: { success: false, error: { code, message, fields? }, request_id }

HTTP Status Code Standards:
- 400: Bad Request (validation errors, unknown status values)
- 404: Not Found
- 409: Conflict (duplicate period)
- 422: Unprocessable Entity (business rule violation, invalid transition)
- 503: Service Unavailable (persistence failure, safe to retry)
"""

from __future__ import annotations

import uuid
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from django.http import JsonResponse

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    FIELD_REQUIRED = "FIELD_REQUIRED"
    FIELD_INVALID = "FIELD_INVALID"
    FIELD_TOO_SHORT = "FIELD_TOO_SHORT"
    FIELD_TOO_LONG = "FIELD_TOO_LONG"
    FIELD_OUT_OF_RANGE = "FIELD_OUT_OF_RANGE"
    FIELD_INVALID_FORMAT = "FIELD_INVALID_FORMAT"

    AUTHENTICATION_REQUIRED = "AUTHENTICATION_REQUIRED"
    AUTHENTICATION_FAILED = "AUTHENTICATION_FAILED"
    PERMISSION_DENIED = "PERMISSION_DENIED"

    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    RESOURCE_ALREADY_EXISTS = "RESOURCE_ALREADY_EXISTS"
    RESOURCE_CONFLICT = "RESOURCE_CONFLICT"

    BUSINESS_RULE_VIOLATION = "BUSINESS_RULE_VIOLATION"
    INVALID_STATE_TRANSITION = "INVALID_STATE_TRANSITION"
    INVALID_STATUS = "INVALID_STATUS"

    UNKNOWN_PATTERN = "UNKNOWN_PATTERN"
    DUPLICATE_PERIOD = "DUPLICATE_PERIOD"
    PERIOD_LOCKED = "PERIOD_LOCKED"
    WORK_LOCKED = "WORK_LOCKED"
    TRANSACTION_FAILURE = "TRANSACTION_FAILURE"

    INTERNAL_ERROR = "INTERNAL_ERROR"


@dataclass
class FieldError:
    field: str
    code: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "field": self.field,
            "code": self.code,
            "message": self.message,
        }


@dataclass
class ErrorDetail:
    code: str
    message: str
    fields: Optional[List[FieldError]] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "code": self.code,
            "message": self.message,
        }
        if self.fields:
            result["fields"] = [f.to_dict() for f in self.fields]
        return result


@dataclass
class ErrorResponse:
    success: bool = False
    error: Optional[ErrorDetail] = None
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "error": self.error.to_dict() if self.error else None,
            "request_id": self.request_id,
        }

    def to_json_response(self, status: int = 400) -> JsonResponse:
        return JsonResponse(self.to_dict(), status=status)


class APIError(Exception):
    def __init__(
        self,
        code: Union[ErrorCode, str],
        message: str,
        status: int = 400,
        fields: Optional[List[FieldError]] = None,
        request_id: Optional[str] = None,
    ):
        self.code = code.value if isinstance(code, ErrorCode) else code
        self.message = message
        self.status = status
        self.fields = fields
        self.request_id = request_id or str(uuid.uuid4())
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(
            success=False,
            error=ErrorDetail(
                code=self.code,
                message=self.message,
                fields=self.fields,
            ),
            request_id=self.request_id,
        )

    def to_json_response(self) -> JsonResponse:
        return self.to_response().to_json_response(self.status)


class ValidationError(APIError):
    def __init__(
        self,
        message: str = "Validation failed",
        fields: Optional[List[FieldError]] = None,
        request_id: Optional[str] = None,
    ):
        super().__init__(
            code=ErrorCode.VALIDATION_ERROR,
            message=message,
            status=400,
            fields=fields,
            request_id=request_id,
        )


class NotFoundError(APIError):
    def __init__(
        self,
        message: str = "Resource not found",
        request_id: Optional[str] = None,
    ):
        super().__init__(
            code=ErrorCode.RESOURCE_NOT_FOUND,
            message=message,
            status=404,
            request_id=request_id,
        )


class ConflictError(APIError):
    def __init__(
        self,
        message: str = "Resource conflict",
        code: Union[ErrorCode, str] = ErrorCode.RESOURCE_CONFLICT,
        request_id: Optional[str] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            status=409,
            request_id=request_id,
        )


class BusinessRuleError(APIError):
    def __init__(
        self,
        message: str,
        code: Union[ErrorCode, str] = ErrorCode.BUSINESS_RULE_VIOLATION,
        request_id: Optional[str] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            status=422,
            request_id=request_id,
        )


# =============================================================================
# RECURRING WORK ENGINE ERRORS
# =============================================================================

class UnknownPatternError(BusinessRuleError):
    def __init__(self, pattern: Any):
        self.pattern = pattern
        super().__init__(
            message=f"Unknown recurrence pattern: {pattern!r}",
            code=ErrorCode.UNKNOWN_PATTERN,
        )


class InvalidStatusError(APIError):
    def __init__(self, value: Any, allowed: List[str]):
        self.value = value
        super().__init__(
            code=ErrorCode.INVALID_STATUS,
            message=f"Unknown status {value!r}; expected one of: {', '.join(allowed)}",
            status=400,
            fields=[FieldError(field="status", code=ErrorCode.FIELD_INVALID.value, message=f"Unknown status {value!r}")],
        )


class InvalidTransitionError(BusinessRuleError):
    def __init__(self, entity: str, from_status: str, to_status: str):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            message=f"Cannot transition {entity} from '{from_status}' to '{to_status}'",
            code=ErrorCode.INVALID_STATE_TRANSITION,
        )


class PeriodLockedError(BusinessRuleError):
    def __init__(self, period_id: int):
        self.period_id = period_id
        super().__init__(
            message=f"Period {period_id} is billed; only its notes can be changed",
            code=ErrorCode.PERIOD_LOCKED,
        )


class WorkLockedError(BusinessRuleError):
    def __init__(self, work_id: int):
        self.work_id = work_id
        super().__init__(
            message=f"Work {work_id} is billed; its tasks can no longer change",
            code=ErrorCode.WORK_LOCKED,
        )


class DuplicatePeriodError(ConflictError):
    def __init__(self, work_id: int, due_date: Any):
        self.work_id = work_id
        self.due_date = due_date
        super().__init__(
            message=f"Work {work_id} already has a period due on {due_date}",
            code=ErrorCode.DUPLICATE_PERIOD,
        )


class TransactionFailureError(APIError):
    def __init__(self, operation: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.cause = cause
        super().__init__(
            code=ErrorCode.TRANSACTION_FAILURE,
            message=f"{operation} failed and was rolled back; it is safe to retry",
            status=503,
        )


def format_validation_errors(
    errors: Dict[str, Any],
    prefix: str = "",
) -> List[FieldError]:
    field_errors = []

    for field_name, error_list in errors.items():
        full_field = f"{prefix}{field_name}" if prefix else field_name

        if isinstance(error_list, dict):
            field_errors.extend(format_validation_errors(error_list, f"{full_field}."))
        elif isinstance(error_list, list):
            for error in error_list:
                if isinstance(error, dict):
                    field_errors.extend(format_validation_errors(error, f"{full_field}."))
                else:
                    error_str = str(error)
                    code = _infer_error_code(error_str)
                    field_errors.append(FieldError(
                        field=full_field,
                        code=code,
                        message=error_str,
                    ))
        else:
            field_errors.append(FieldError(
                field=full_field,
                code=ErrorCode.FIELD_INVALID.value,
                message=str(error_list),
            ))

    return field_errors


def _infer_error_code(message: str) -> str:
    message_lower = message.lower()

    if "required" in message_lower or "blank" in message_lower or "null" in message_lower:
        return ErrorCode.FIELD_REQUIRED.value
    elif "too short" in message_lower or "at least" in message_lower:
        return ErrorCode.FIELD_TOO_SHORT.value
    elif "too long" in message_lower or "at most" in message_lower or "maximum" in message_lower:
        return ErrorCode.FIELD_TOO_LONG.value
    elif "greater than" in message_lower or "less than" in message_lower or "between" in message_lower:
        return ErrorCode.FIELD_OUT_OF_RANGE.value
    elif "format" in message_lower or "valid" in message_lower or "invalid" in message_lower:
        return ErrorCode.FIELD_INVALID_FORMAT.value
    else:
        return ErrorCode.FIELD_INVALID.value
