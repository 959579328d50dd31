"""
HTTP error types and the JSON error body.

Every error response has the same shape:
    {"traceId": ..., "error": <message>, "errorInfo": {"code", "message", "details"?}}
"""

from typing import Any, Optional

from budgetpods.models.api import ErrorBody, ErrorInfo


class ApiError(Exception):
    """Base class for errors that map directly to an HTTP status."""

    status = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class BadRequestError(ApiError):
    status = 400
    code = "BAD_REQUEST"


class UnauthorizedError(ApiError):
    status = 401
    code = "UNAUTHORIZED"


class ForbiddenError(ApiError):
    status = 403
    code = "FORBIDDEN"


class NotFoundError(ApiError):
    status = 404
    code = "NOT_FOUND"


class MethodNotAllowedError(ApiError):
    status = 405
    code = "METHOD_NOT_ALLOWED"

    def __init__(self, message: str = "Method not allowed", details: Optional[Any] = None):
        super().__init__(message, details)


class ConflictError(ApiError):
    status = 409
    code = "CONFLICT"


class PayloadTooLargeError(ApiError):
    status = 413
    code = "PAYLOAD_TOO_LARGE"


class RateLimitedError(ApiError):
    status = 429
    code = "RATE_LIMITED"


class InternalError(ApiError):
    status = 500
    code = "INTERNAL_ERROR"


def error_body(trace_id: str, code: str, message: str, details: Optional[Any] = None) -> dict:
    return ErrorBody(
        trace_id=trace_id,
        error=message,
        error_info=ErrorInfo(code=code, message=message, details=details),
    ).to_json_dict()
