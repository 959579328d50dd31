"""
Data Models Package

This package contains all Pydantic models used by the Pod Budget Assistant.
All data flowing through the system must conform to these schemas.
"""

from budgetpods.models.budget import (
    DRAFT_ADAPTER,
    PAYLOAD_ADAPTER,
    ActionStatus,
    ActionType,
    BudgetAdjustDraft,
    BudgetAdjustPayload,
    BudgetChange,
    BudgetEvent,
    BudgetRepairRestoreDonorDraft,
    BudgetRepairRestoreDonorPayload,
    BudgetTransferDraft,
    BudgetTransferPayload,
    ChatIntent,
    ChatMessage,
    ChatThread,
    InterpretResult,
    ObservedTransferEvent,
    ParsedEntitiesHints,
    PodCategory,
    PodRecord,
    PodSettings,
    PodSnapshot,
    PodWithSettings,
    ProposedAction,
    ProposedActionDraft,
    ProposedActionPayload,
    SenderRole,
)
from budgetpods.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Budget models
    "DRAFT_ADAPTER",
    "PAYLOAD_ADAPTER",
    "ActionStatus",
    "ActionType",
    "BudgetAdjustDraft",
    "BudgetAdjustPayload",
    "BudgetChange",
    "BudgetEvent",
    "BudgetRepairRestoreDonorDraft",
    "BudgetRepairRestoreDonorPayload",
    "BudgetTransferDraft",
    "BudgetTransferPayload",
    "ChatIntent",
    "ChatMessage",
    "ChatThread",
    "InterpretResult",
    "ObservedTransferEvent",
    "ParsedEntitiesHints",
    "PodCategory",
    "PodRecord",
    "PodSettings",
    "PodSnapshot",
    "PodWithSettings",
    "ProposedAction",
    "ProposedActionDraft",
    "ProposedActionPayload",
    "SenderRole",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
