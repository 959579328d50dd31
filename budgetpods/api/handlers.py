"""
Request handlers for the propose and apply endpoints.

The handlers are framework-agnostic: they take the method, headers and raw
body and return a HandlerResult. The FastAPI app only forwards to them.

CRITICAL: Checks run in a fixed order so clients get stable errors:
    method -> auth -> body -> length (propose only) -> membership -> rate limit
No flow is entered before all of them pass.
"""

import json
import time
from dataclasses import dataclass
from typing import Any, Mapping, Optional

import structlog
from pydantic import ValidationError

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
from budgetpods.audit import create_trace_id
from budgetpods.ledger import ApplyRejectedError, NegativeBudgetError
from budgetpods.models.api import (
    ApplyRequest,
    ApplyResponse,
    ProposeRequest,
    ProposeResponse,
)
from budgetpods.orchestrator import AppComponents
from budgetpods.services import AuthenticationError, MembershipError


logger = structlog.get_logger(__name__)

PROPOSE_ROUTE = "chat_message"
APPLY_ROUTE = "actions_apply"

_APPLY_ERRORS = {
    "BAD_REQUEST": BadRequestError,
    "FORBIDDEN": ForbiddenError,
    "NOT_FOUND": NotFoundError,
    "CONFLICT": ConflictError,
}


@dataclass
class HandlerResult:
    status: int
    json: dict[str, Any]


# =============================================================================
# Shared checks
# =============================================================================

def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    for key, value in headers.items():
        if key.lower() == name:
            return value
    return None


def _check_method(method: str) -> None:
    if method.upper() != "POST":
        raise MethodNotAllowedError()


async def _authenticate(components: AppComponents, headers: Mapping[str, str]):
    try:
        return await components.auth.verify_user(_header(headers, "authorization"))
    except AuthenticationError as e:
        raise UnauthorizedError(str(e))


def _parse_body(body: bytes) -> dict:
    try:
        parsed = json.loads(body or b"null")
    except (ValueError, UnicodeDecodeError):
        raise BadRequestError("Invalid JSON body")
    if not isinstance(parsed, dict):
        raise BadRequestError("Invalid JSON body")
    return parsed


def _validation_details(e: ValidationError) -> list[dict]:
    return [
        {"loc": [str(p) for p in err["loc"]], "msg": err["msg"]}
        for err in e.errors(include_url=False)
    ]


async def _authorize(components: AppComponents, user_id: str, household_id: str) -> None:
    try:
        await components.households.assert_user_in_household(user_id, household_id)
    except MembershipError as e:
        raise ForbiddenError(str(e))


def _check_rate_limit(components: AppComponents, route: str, user_id: str, household_id: str) -> None:
    app = components.settings.app
    result = components.rate_limiter.check(
        f"{route}:{user_id}:{household_id}",
        window_ms=app.rate_limit_window_ms,
        max_requests=app.rate_limit_max,
    )
    if not result.allowed:
        raise RateLimitedError(
            "Too many requests. Please wait a bit and try again.",
            {
                "limit": app.rate_limit_max,
                "windowMs": app.rate_limit_window_ms,
                "resetAtMs": result.reset_at_ms,
            },
        )


def _finish(
    components: AppComponents,
    route: str,
    trace_id: str,
    started: float,
    result: HandlerResult,
    user_id: Optional[str] = None,
) -> HandlerResult:
    components.audit_logger.log_request_handled(
        trace_id=trace_id,
        route=route,
        status=result.status,
        duration_ms=int((time.monotonic() - started) * 1000),
        user_id=user_id,
    )
    return result


def _error_result(trace_id: str, err: ApiError) -> HandlerResult:
    return HandlerResult(
        status=err.status,
        json=error_body(trace_id, err.code, err.message, err.details),
    )


# =============================================================================
# Propose
# =============================================================================

async def handle_propose(
    components: AppComponents,
    method: str,
    headers: Mapping[str, str],
    body: bytes,
) -> HandlerResult:
    """
    POST /api/chat/message

    Args:
        components: Wired application components
        method: HTTP method of the request
        headers: Request headers (case-insensitive lookup)
        body: Raw request body

    Returns:
        HandlerResult with the propose response or an error body
    """
    trace_id = create_trace_id()
    started = time.monotonic()
    user_id = None

    try:
        _check_method(method)
        user = await _authenticate(components, headers)
        user_id = user.user_id

        raw = _parse_body(body)
        if not raw.get("householdId") or not raw.get("messageText"):
            raise BadRequestError("Missing householdId or messageText")
        try:
            request = ProposeRequest.model_validate(raw)
        except ValidationError as e:
            raise BadRequestError("Invalid request body", _validation_details(e))

        max_chars = components.settings.app.max_message_chars
        if len(request.message_text) > max_chars:
            raise PayloadTooLargeError(
                f"Message too long (max {max_chars} characters)",
                {"max": max_chars, "length": len(request.message_text)},
            )

        household_id = str(request.household_id)
        await _authorize(components, user_id, household_id)
        _check_rate_limit(components, PROPOSE_ROUTE, user_id, household_id)

        outcome = await components.propose_flow.propose(
            household_id=household_id,
            user_id=user_id,
            message_text=request.message_text,
            trace_id=trace_id,
        )
        response = ProposeResponse(
            api_version=components.settings.app.api_version,
            trace_id=trace_id,
            assistant_text=outcome.assistant_text,
            proposed_actions=[a.to_api() for a in outcome.proposed_actions],
            entities=outcome.entities,
            warnings=outcome.warnings,
            ai_used=outcome.ai_used,
            debug=outcome.debug,
        )
        result = HandlerResult(status=200, json=response.to_json_dict())
    except ApiError as e:
        result = _error_result(trace_id, e)
    except Exception as e:
        logger.exception("propose_failed", trace_id=trace_id)
        components.audit_logger.log_error(
            error_type=type(e).__name__,
            error_message=str(e),
            trace_id=trace_id,
        )
        result = _error_result(trace_id, InternalError("Internal error"))

    return _finish(components, PROPOSE_ROUTE, trace_id, started, result, user_id)


# =============================================================================
# Apply
# =============================================================================

async def handle_apply(
    components: AppComponents,
    method: str,
    headers: Mapping[str, str],
    body: bytes,
) -> HandlerResult:
    """
    POST /api/actions/apply

    Returns:
        HandlerResult with the apply snapshot or an error body
    """
    trace_id = create_trace_id()
    started = time.monotonic()
    user_id = None

    try:
        _check_method(method)
        user = await _authenticate(components, headers)
        user_id = user.user_id

        raw = _parse_body(body)
        if not raw.get("householdId"):
            raise BadRequestError("Missing householdId")
        if not isinstance(raw.get("actionIds"), list) or not raw["actionIds"]:
            raise BadRequestError("Missing actionIds[]")
        try:
            request = ApplyRequest.model_validate(raw)
        except ValidationError as e:
            raise BadRequestError("Invalid request body", _validation_details(e))

        household_id = str(request.household_id)
        await _authorize(components, user_id, household_id)
        _check_rate_limit(components, APPLY_ROUTE, user_id, household_id)

        try:
            snapshot = await components.apply_flow.apply(
                household_id=household_id,
                action_ids=[str(a) for a in request.action_ids],
                user_id=user_id,
                trace_id=trace_id,
            )
        except ApplyRejectedError as e:
            raise _APPLY_ERRORS.get(e.code, BadRequestError)(e.message, e.details)
        except NegativeBudgetError as e:
            raise BadRequestError(str(e))

        response = ApplyResponse(
            api_version=components.settings.app.api_version,
            trace_id=trace_id,
            applied_action_ids=snapshot.applied_action_ids,
            changes=snapshot.changes,
            pods=snapshot.pods,
        )
        result = HandlerResult(status=200, json=response.to_json_dict())
    except ApiError as e:
        result = _error_result(trace_id, e)
    except Exception as e:
        logger.exception("apply_failed", trace_id=trace_id)
        components.audit_logger.log_error(
            error_type=type(e).__name__,
            error_message=str(e),
            trace_id=trace_id,
        )
        result = _error_result(trace_id, InternalError("Internal error"))

    return _finish(components, APPLY_ROUTE, trace_id, started, result, user_id)
