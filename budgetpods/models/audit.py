"""
Audit Models for the Pod Budget Assistant

Every significant step of a propose or apply request is logged.
This provides:
1. Traceability of each request through its trace id
2. A record of why the model was or was not used
3. Debugging information when an apply is rejected

DESIGN DECISION: Audit events are structured log records. The budget
ledger itself lives in the budget_events store; audit events describe
the requests that produced it.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from budgetpods.models.budget import utcnow


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Propose flow
    MESSAGE_RECEIVED = "message_received"
    DECISION_BRANCH = "decision_branch"
    AI_FALLBACK = "ai_fallback"
    PROPOSAL_GENERATED = "proposal_generated"
    OBSERVED_TRANSFER_LOGGED = "observed_transfer_logged"
    OBSERVED_TRANSFER_DEDUPLICATED = "observed_transfer_deduplicated"

    # Apply flow
    ACTIONS_APPLIED = "actions_applied"
    APPLY_NOOP = "apply_noop"
    APPLY_REJECTED = "apply_rejected"

    # Request lifecycle
    REQUEST_HANDLED = "request_handled"
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utcnow,
        description="When the event occurred (UTC)"
    )

    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    household_id: Optional[str] = None
    user_id: Optional[str] = None
    trace_id: Optional[str] = Field(
        default=None,
        description="Request trace id shared by all events of one request"
    )

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)

    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "household_id": self.household_id,
            "user_id": self.user_id,
            "trace_id": self.trace_id,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.message_received(trace_id, household_id, user_id, 42)
        event = AuditEventBuilder.actions_applied(trace_id, household_id, user_id, ids, 3)
    """

    @staticmethod
    def message_received(
        trace_id: str,
        household_id: str,
        user_id: str,
        message_chars: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MESSAGE_RECEIVED,
            trace_id=trace_id,
            household_id=household_id,
            user_id=user_id,
            description="Chat message received",
            details={"message_chars": message_chars},
        )

    @staticmethod
    def decision_branch(
        trace_id: str,
        branch: str,
        intent: str,
        ai_enabled: bool,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DECISION_BRANCH,
            trace_id=trace_id,
            description=f"Proposal branch: {branch}",
            details={
                "branch": branch,
                "intent_chosen": intent,
                "ai_enabled": ai_enabled,
            },
        )

    @staticmethod
    def ai_fallback(
        trace_id: str,
        stage: str,
        warnings: list[str],
        error_message: Optional[str],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.AI_FALLBACK,
            severity=AuditSeverity.WARNING,
            trace_id=trace_id,
            description=f"Model step failed at {stage}; using deterministic proposal",
            details={"stage": stage, "warnings": warnings},
            error_code=stage,
            error_message=error_message,
        )

    @staticmethod
    def proposal_generated(
        trace_id: str,
        household_id: str,
        mode: str,
        ai_used: bool,
        action_types: list[str],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PROPOSAL_GENERATED,
            trace_id=trace_id,
            household_id=household_id,
            description=f"Proposed {len(action_types)} action(s) in {mode} mode",
            details={
                "mode_chosen": mode,
                "ai_used": ai_used,
                "action_types": action_types,
            },
        )

    @staticmethod
    def observed_transfer(
        trace_id: str,
        household_id: str,
        amount_in_cents: int,
        from_pod_id: str,
        to_pod_id: str,
        deduplicated: bool,
        dedup_key: Optional[list] = None,
    ) -> AuditEvent:
        event_type = (
            AuditEventType.OBSERVED_TRANSFER_DEDUPLICATED
            if deduplicated
            else AuditEventType.OBSERVED_TRANSFER_LOGGED
        )
        return AuditEvent(
            event_type=event_type,
            trace_id=trace_id,
            household_id=household_id,
            description=(
                "Observed transfer already logged recently"
                if deduplicated
                else "Observed transfer logged"
            ),
            details={
                "amount_in_cents": amount_in_cents,
                "from_pod_id": from_pod_id,
                "to_pod_id": to_pod_id,
                "dedup_key": dedup_key,
            },
        )

    @staticmethod
    def actions_applied(
        trace_id: str,
        household_id: str,
        user_id: str,
        action_ids: list[str],
        change_count: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACTIONS_APPLIED,
            trace_id=trace_id,
            household_id=household_id,
            user_id=user_id,
            description=f"Applied {len(action_ids)} action(s) touching {change_count} pod(s)",
            details={"action_ids": action_ids, "change_count": change_count},
        )

    @staticmethod
    def apply_noop(
        trace_id: str,
        household_id: str,
        action_ids: list[str],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.APPLY_NOOP,
            trace_id=trace_id,
            household_id=household_id,
            description="All selected actions were already applied",
            details={"action_ids": action_ids},
        )

    @staticmethod
    def apply_rejected(
        trace_id: str,
        household_id: str,
        code: str,
        message: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.APPLY_REJECTED,
            severity=AuditSeverity.WARNING,
            trace_id=trace_id,
            household_id=household_id,
            description="Apply request rejected",
            error_code=code,
            error_message=message,
        )

    @staticmethod
    def request_handled(
        trace_id: str,
        route: str,
        status: int,
        duration_ms: int,
        user_id: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REQUEST_HANDLED,
            severity=AuditSeverity.ERROR if status >= 500 else AuditSeverity.INFO,
            trace_id=trace_id,
            user_id=user_id,
            description=f"{route} -> {status}",
            details={
                "route": route,
                "status": status,
                "duration_ms": duration_ms,
                **(details or {}),
            },
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        trace_id: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            trace_id=trace_id,
        )
