"""
Audit Logger

DESIGN DECISION: Every significant step of a request is logged.
This provides:
1. Traceability of a request through its trace id
2. A record of why the model was or was not used
3. Debugging capability for rejected applies

The audit logger:
- Writes structured JSON lines through structlog
- Never raises into the request path
- Stamps every event with the request's trace id
"""

from typing import Optional
from uuid import uuid4

import structlog

from budgetpods.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Events are built by AuditEventBuilder and emitted at their own severity.
    Keeps the last events in memory when `keep_history` is set, which the
    tests use to assert on what a flow logged.
    """

    def __init__(self, keep_history: bool = False):
        self._logger = structlog.get_logger("budgetpods.audit")
        self._keep_history = keep_history
        self.history: list[AuditEvent] = []

    def log(self, event: AuditEvent) -> None:
        """Log an audit event."""
        log_dict = event.to_log_dict()

        if event.severity == AuditSeverity.ERROR:
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        elif event.severity == AuditSeverity.DEBUG:
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._keep_history:
            self.history.append(event)

    def log_message_received(
        self,
        trace_id: str,
        household_id: str,
        user_id: str,
        message_chars: int,
    ) -> None:
        """Log an incoming chat message (length only, never the text)."""
        self.log(AuditEventBuilder.message_received(
            trace_id=trace_id,
            household_id=household_id,
            user_id=user_id,
            message_chars=message_chars,
        ))

    def log_decision_branch(
        self,
        trace_id: str,
        branch: str,
        intent: str,
        ai_enabled: bool,
    ) -> None:
        self.log(AuditEventBuilder.decision_branch(
            trace_id=trace_id,
            branch=branch,
            intent=intent,
            ai_enabled=ai_enabled,
        ))

    def log_ai_fallback(
        self,
        trace_id: str,
        stage: str,
        warnings: list[str],
        error_message: Optional[str],
    ) -> None:
        """Log a model failure that fell back to the deterministic drafts."""
        self.log(AuditEventBuilder.ai_fallback(
            trace_id=trace_id,
            stage=stage,
            warnings=warnings,
            error_message=error_message,
        ))

    def log_proposal_generated(
        self,
        trace_id: str,
        household_id: str,
        mode: str,
        ai_used: bool,
        action_types: list[str],
    ) -> None:
        self.log(AuditEventBuilder.proposal_generated(
            trace_id=trace_id,
            household_id=household_id,
            mode=mode,
            ai_used=ai_used,
            action_types=action_types,
        ))

    def log_observed_transfer(
        self,
        trace_id: str,
        household_id: str,
        amount_in_cents: int,
        from_pod_id: str,
        to_pod_id: str,
        deduplicated: bool,
        dedup_key: Optional[list] = None,
    ) -> None:
        self.log(AuditEventBuilder.observed_transfer(
            trace_id=trace_id,
            household_id=household_id,
            amount_in_cents=amount_in_cents,
            from_pod_id=from_pod_id,
            to_pod_id=to_pod_id,
            deduplicated=deduplicated,
            dedup_key=dedup_key,
        ))

    def log_actions_applied(
        self,
        trace_id: str,
        household_id: str,
        user_id: str,
        action_ids: list[str],
        change_count: int,
    ) -> None:
        """Log a committed apply batch."""
        self.log(AuditEventBuilder.actions_applied(
            trace_id=trace_id,
            household_id=household_id,
            user_id=user_id,
            action_ids=action_ids,
            change_count=change_count,
        ))

    def log_apply_noop(
        self,
        trace_id: str,
        household_id: str,
        action_ids: list[str],
    ) -> None:
        self.log(AuditEventBuilder.apply_noop(
            trace_id=trace_id,
            household_id=household_id,
            action_ids=action_ids,
        ))

    def log_apply_rejected(
        self,
        trace_id: str,
        household_id: str,
        code: str,
        message: str,
    ) -> None:
        self.log(AuditEventBuilder.apply_rejected(
            trace_id=trace_id,
            household_id=household_id,
            code=code,
            message=message,
        ))

    def log_request_handled(
        self,
        trace_id: str,
        route: str,
        status: int,
        duration_ms: int,
        user_id: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> None:
        """Log the outcome of one HTTP request."""
        self.log(AuditEventBuilder.request_handled(
            trace_id=trace_id,
            route=route,
            status=status,
            duration_ms=duration_ms,
            user_id=user_id,
            details=details,
        ))

    def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        trace_id: Optional[str] = None,
    ) -> None:
        """Log an error."""
        self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            trace_id=trace_id,
        ))


def create_trace_id() -> str:
    """
    Create a new trace ID for one request.

    Every audit event and every error body of the request carries it.
    """
    return str(uuid4())
