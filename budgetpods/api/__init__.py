"""HTTP layer: error types, request handlers and the FastAPI app."""

from budgetpods.api.app import create_app, create_router
from budgetpods.api.errors import (
    ApiError,
    BadRequestError,
    ConflictError,
    ForbiddenError,
    InternalError,
    MethodNotAllowedError,
    NotFoundError,
    PayloadTooLargeError,
    RateLimitedError,
    UnauthorizedError,
    error_body,
)
from budgetpods.api.handlers import HandlerResult, handle_apply, handle_propose

__all__ = [
    # App
    "create_app",
    "create_router",
    # Handlers
    "HandlerResult",
    "handle_apply",
    "handle_propose",
    # Errors
    "ApiError",
    "BadRequestError",
    "ConflictError",
    "ForbiddenError",
    "InternalError",
    "MethodNotAllowedError",
    "NotFoundError",
    "PayloadTooLargeError",
    "RateLimitedError",
    "UnauthorizedError",
    "error_body",
]
