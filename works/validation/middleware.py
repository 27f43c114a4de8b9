"""
Error Handling Middleware

Converts exceptions raised outside DRF views into the standard JSON error
envelope for API requests.
"""

from __future__ import annotations

import logging
import uuid
from typing import Callable, Optional

from django.conf import settings
from django.core.exceptions import PermissionDenied, ValidationError as DjangoValidationError
from django.http import Http404, HttpRequest, HttpResponse, JsonResponse

from .errors import (
    APIError,
    ErrorCode,
    ErrorDetail,
    ErrorResponse,
    FieldError,
    format_validation_errors,
)

logger = logging.getLogger(__name__)


class ErrorHandlingMiddleware:
    def __init__(self, get_response: Callable):
        self.get_response = get_response

    def __call__(self, request: HttpRequest) -> HttpResponse:
        if not getattr(request, "request_id", None):
            request.request_id = str(uuid.uuid4())
        return self.get_response(request)

    def process_exception(self, request: HttpRequest, exc: Exception) -> Optional[HttpResponse]:
        if not self._is_api_request(request):
            return None

        request_id = getattr(request, "request_id", str(uuid.uuid4()))

        if isinstance(exc, APIError):
            exc.request_id = request_id
            return exc.to_json_response()

        if isinstance(exc, Http404):
            return self._create_json_error(
                ErrorCode.RESOURCE_NOT_FOUND,
                str(exc) or "Resource not found",
                404,
                request_id,
            )

        if isinstance(exc, PermissionDenied):
            return self._create_json_error(
                ErrorCode.PERMISSION_DENIED,
                str(exc) or "Permission denied",
                403,
                request_id,
            )

        if isinstance(exc, DjangoValidationError):
            if hasattr(exc, "message_dict"):
                field_errors = format_validation_errors(exc.message_dict)
            else:
                field_errors = [
                    FieldError(field="__all__", code=ErrorCode.VALIDATION_ERROR.value, message=str(exc))
                ]

            return ErrorResponse(
                error=ErrorDetail(
                    code=ErrorCode.VALIDATION_ERROR.value,
                    message="Validation failed",
                    fields=field_errors,
                ),
                request_id=request_id,
            ).to_json_response(400)

        logger.exception(
            f"Unhandled exception [request_id={request_id}]: {exc}",
            extra={"request_id": request_id},
        )

        message = "An unexpected error occurred. Please try again later."
        if settings.DEBUG:
            message = f"{type(exc).__name__}: {str(exc)}"

        return self._create_json_error(
            ErrorCode.INTERNAL_ERROR,
            message,
            500,
            request_id,
        )

    def _is_api_request(self, request: HttpRequest) -> bool:
        if request.path.startswith("/api/"):
            return True

        content_type = request.content_type or ""
        if "application/json" in content_type:
            return True

        accept = request.headers.get("Accept", "")
        return "application/json" in accept

    def _create_json_error(
        self,
        code: ErrorCode,
        message: str,
        status: int,
        request_id: str,
    ) -> JsonResponse:
        return ErrorResponse(
            error=ErrorDetail(code=code.value, message=message),
            request_id=request_id,
        ).to_json_response(status)
