"""
Request and response bodies for the propose and apply endpoints.

Wire format is camelCase at the envelope level; action payloads,
changes and pod rows keep their snake_case field names.
"""

from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from budgetpods.models.budget import (
    BudgetChange,
    ParsedEntitiesHints,
    PodCategory,
    PodWithSettings,
)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class ProposeRequest(_CamelModel):
    """
    Body of POST /api/chat/message.

    Length is checked separately so an over-long message maps to 413
    rather than a generic validation error.
    """

    household_id: UUID
    message_text: str = Field(..., min_length=1)


class ApplyRequest(_CamelModel):
    """Body of POST /api/actions/apply."""

    household_id: UUID
    action_ids: list[UUID] = Field(..., min_length=1)


class ProposeDebug(_CamelModel):
    ai_enabled: bool = False
    ai_attempted: bool = False
    ai_succeeded: bool = False
    ai_failure_stage: Optional[str] = None
    ai_error_message: Optional[str] = None
    mode_chosen: str = "deterministic"
    intent_chosen: str
    ai_intent: Optional[str] = None


class ProposeResponse(_CamelModel):
    api_version: str
    trace_id: str
    assistant_text: str
    proposed_actions: list[dict[str, Any]]
    entities: ParsedEntitiesHints
    warnings: list[str] = Field(default_factory=list)
    ai_used: bool = False
    debug: Optional[ProposeDebug] = None


class PodSummary(BaseModel):
    """Pod row returned after an apply."""

    id: str
    name: str
    balance_amount_in_cents: Optional[int] = None
    budgeted_amount_in_cents: Optional[int] = None
    category: Optional[PodCategory] = None

    @classmethod
    def from_pod_with_settings(cls, row: PodWithSettings) -> "PodSummary":
        return cls(
            id=row.pod.id,
            name=row.pod.name,
            balance_amount_in_cents=row.pod.balance_amount_in_cents,
            budgeted_amount_in_cents=(
                row.settings.budgeted_amount_in_cents if row.settings else None
            ),
            category=row.settings.category if row.settings else None,
        )


class ApplySnapshot(_CamelModel):
    """What the ledger applier returns, before the envelope is added."""

    applied_action_ids: list[str]
    changes: list[BudgetChange] = Field(default_factory=list)
    pods: list[PodSummary] = Field(default_factory=list)


class ApplyResponse(ApplySnapshot):
    api_version: str
    trace_id: str


class ErrorInfo(BaseModel):
    code: str
    message: str
    details: Optional[Any] = None


class ErrorBody(_CamelModel):
    trace_id: str
    error: str
    error_info: ErrorInfo

    def to_json_dict(self) -> dict[str, Any]:
        body = super().to_json_dict()
        if self.error_info.details is None:
            body["errorInfo"].pop("details", None)
        return body
