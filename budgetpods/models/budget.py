"""
Core Data Models for the Pod Budget Assistant

These models define the strict schemas for all data flowing through the system.
They are designed to:
1. Enforce type safety at runtime
2. Reject drafts whose discriminators disagree
3. Be serializable for storage and logging
4. Keep the ledger append-only

DESIGN DECISION: Each action kind is its own tagged variant.
The draft carries `type` and its payload carries `kind`; both are Literal
fields, so a draft whose two discriminators disagree cannot be constructed.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictInt,
    StrictStr,
    TypeAdapter,
    model_validator,
)
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class PodCategory(str, Enum):
    """Category assigned to a pod in its settings."""
    INCOME = "Income"
    SAVINGS = "Savings"
    KIDDOS = "Kiddos"
    NECESSITIES = "Necessities"
    PRESSING = "Pressing"
    DISCRETIONARY = "Discretionary"


class ActionType(str, Enum):
    """The three budget actions the assistant can propose."""
    BUDGET_TRANSFER = "budget_transfer"
    BUDGET_ADJUST = "budget_adjust"
    BUDGET_REPAIR_RESTORE_DONOR = "budget_repair_restore_donor"


class ActionStatus(str, Enum):
    """
    Lifecycle of a proposed action.

    CRITICAL: Actions are created as PROPOSED and move exactly once,
    to APPLIED or FAILED. Nothing moves an action back.
    """
    PROPOSED = "proposed"
    APPLIED = "applied"
    IGNORED = "ignored"
    FAILED = "failed"

    def can_transition_to(self, target: "ActionStatus") -> bool:
        return self is ActionStatus.PROPOSED and target in (
            ActionStatus.APPLIED,
            ActionStatus.FAILED,
        )


class ChatIntent(str, Enum):
    """Surface-level classification of a chat message."""
    OBSERVED_TRANSFER = "observed_transfer"
    QUESTION_ADVICE = "question_advice"
    REQUEST_BUDGET_CHANGE = "request_budget_change"


class SenderRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


# =============================================================================
# POD MODELS
# =============================================================================

class PodRecord(BaseModel):
    """A pod row as the datastore holds it."""

    id: str
    household_id: str
    name: str = Field(..., min_length=1)
    is_active: bool = True
    balance_amount_in_cents: Optional[int] = None
    balance_error: Optional[str] = None
    balance_updated_at: Optional[datetime] = None


class PodSettings(BaseModel):
    """Planning settings attached to a pod."""

    pod_id: str
    category: Optional[PodCategory] = None
    notes: Optional[str] = None
    budgeted_amount_in_cents: Optional[int] = None
    updated_at: datetime = Field(default_factory=utcnow)


class PodWithSettings(BaseModel):
    pod: PodRecord
    settings: Optional[PodSettings] = None


class PodSnapshot(BaseModel):
    """
    Flattened view of a pod used by the interpreter and the model prompt.

    A pod without settings has a budget of zero and no category.
    """

    id: str
    name: str
    household_id: Optional[str] = None
    category: Optional[PodCategory] = None
    budgeted_amount_in_cents: int = 0
    balance_amount_in_cents: Optional[int] = None
    balance_error: Optional[str] = None
    balance_updated_at: Optional[datetime] = None

    @classmethod
    def from_pod_with_settings(cls, row: PodWithSettings) -> "PodSnapshot":
        settings = row.settings
        return cls(
            id=row.pod.id,
            name=row.pod.name,
            household_id=row.pod.household_id,
            category=settings.category if settings else None,
            budgeted_amount_in_cents=(
                settings.budgeted_amount_in_cents or 0 if settings else 0
            ),
            balance_amount_in_cents=row.pod.balance_amount_in_cents,
            balance_error=row.pod.balance_error,
            balance_updated_at=row.pod.balance_updated_at,
        )


# =============================================================================
# ACTION PAYLOADS AND DRAFTS
# =============================================================================

PodId = Annotated[StrictStr, Field(min_length=1)]
PodName = Annotated[StrictStr, Field(min_length=1)]
PositiveCents = Annotated[StrictInt, Field(gt=0)]


class _Payload(BaseModel, ABC):
    model_config = ConfigDict(extra="forbid", frozen=True)

    @abstractmethod
    def pod_ids(self) -> list[str]:
        """Pods the payload reads or writes, in payload order."""
        pass


class BudgetTransferPayload(_Payload):
    """Move budget from one pod to another."""

    kind: Literal["budget_transfer"] = "budget_transfer"
    amount_in_cents: PositiveCents
    from_pod_id: PodId
    from_pod_name: PodName
    to_pod_id: PodId
    to_pod_name: PodName

    @model_validator(mode='after')
    def validate_distinct_pods(self) -> 'BudgetTransferPayload':
        if self.from_pod_id == self.to_pod_id:
            raise ValueError("from_pod_id and to_pod_id must be different pods")
        return self

    def pod_ids(self) -> list[str]:
        return [self.from_pod_id, self.to_pod_id]


class BudgetAdjustPayload(_Payload):
    """Raise or lower one pod's budget."""

    kind: Literal["budget_adjust"] = "budget_adjust"
    delta_in_cents: StrictInt
    pod_id: PodId
    pod_name: PodName

    def pod_ids(self) -> list[str]:
        return [self.pod_id]


class BudgetRepairRestoreDonorPayload(_Payload):
    """
    Reimburse a donor pod drained by a transfer made outside the app,
    by reducing a funding pod.
    """

    kind: Literal["budget_repair_restore_donor"] = "budget_repair_restore_donor"
    amount_in_cents: PositiveCents
    donor_pod_id: PodId
    donor_pod_name: PodName
    funding_pod_id: PodId
    funding_pod_name: PodName
    option_label: Optional[Annotated[StrictStr, Field(min_length=1)]] = None

    @model_validator(mode='after')
    def validate_distinct_pods(self) -> 'BudgetRepairRestoreDonorPayload':
        if self.donor_pod_id == self.funding_pod_id:
            raise ValueError("donor_pod_id and funding_pod_id must be different pods")
        return self

    def pod_ids(self) -> list[str]:
        return [self.donor_pod_id, self.funding_pod_id]


ProposedActionPayload = Annotated[
    Union[BudgetTransferPayload, BudgetAdjustPayload, BudgetRepairRestoreDonorPayload],
    Field(discriminator="kind"),
]


class _Draft(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class BudgetTransferDraft(_Draft):
    type: Literal["budget_transfer"] = "budget_transfer"
    payload: BudgetTransferPayload


class BudgetAdjustDraft(_Draft):
    type: Literal["budget_adjust"] = "budget_adjust"
    payload: BudgetAdjustPayload


class BudgetRepairRestoreDonorDraft(_Draft):
    type: Literal["budget_repair_restore_donor"] = "budget_repair_restore_donor"
    payload: BudgetRepairRestoreDonorPayload


ProposedActionDraft = Annotated[
    Union[BudgetTransferDraft, BudgetAdjustDraft, BudgetRepairRestoreDonorDraft],
    Field(discriminator="type"),
]

DRAFT_ADAPTER: TypeAdapter = TypeAdapter(ProposedActionDraft)
PAYLOAD_ADAPTER: TypeAdapter = TypeAdapter(ProposedActionPayload)


class ProposedAction(BaseModel):
    """
    A draft persisted against the assistant message that produced it.

    CRITICAL: Only the ledger applier changes `status`.
    """

    id: str = Field(default_factory=new_id)
    household_id: str
    message_id: Optional[str] = None
    type: ActionType
    payload: ProposedActionPayload
    status: ActionStatus = ActionStatus.PROPOSED
    created_at: datetime = Field(default_factory=utcnow)
    applied_at: Optional[datetime] = None
    applied_by: Optional[str] = None

    @model_validator(mode='after')
    def validate_kind_matches_type(self) -> 'ProposedAction':
        if self.payload.kind != self.type.value:
            raise ValueError(
                f"payload kind {self.payload.kind!r} does not match type {self.type.value!r}"
            )
        return self

    def to_api(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "payload": self.payload.model_dump(exclude_none=True),
            "status": self.status.value,
        }


# =============================================================================
# LEDGER AND CHAT MODELS
# =============================================================================

class ObservedTransferEvent(BaseModel):
    """
    A money movement the user reports as already done outside the app.

    Recorded in the ledger as a fact; it never changes a budget by itself.
    """

    amount_in_cents: PositiveCents
    from_pod_id: str
    from_pod_name: str
    to_pod_id: str
    to_pod_name: str
    raw_message_text: str

    def dedup_key(
        self,
        household_id: str,
        at: datetime,
        bucket_minutes: int = 10,
    ) -> tuple[str, str, str, int, int]:
        """Idempotency key: the same transfer inside one time bucket."""
        bucket = int(at.timestamp() // timedelta(minutes=bucket_minutes).total_seconds())
        return (
            household_id,
            self.from_pod_id,
            self.to_pod_id,
            self.amount_in_cents,
            bucket,
        )


class BudgetEvent(BaseModel):
    """Append-only ledger row."""

    id: str = Field(default_factory=new_id)
    household_id: str
    actor_user_id: Optional[str] = None
    type: str
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)


class ChatThread(BaseModel):
    id: str = Field(default_factory=new_id)
    household_id: str
    created_at: datetime = Field(default_factory=utcnow)


class ChatMessage(BaseModel):
    id: str = Field(default_factory=new_id)
    thread_id: str
    sender_role: SenderRole
    sender_user_id: Optional[str] = None
    text: str
    created_at: datetime = Field(default_factory=utcnow)


class ParsedEntitiesHints(BaseModel):
    """
    Pod-name hints for the client's disambiguation UI.

    Not authoritative: the drafts carry the resolved pod ids.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )

    from_candidate: Optional[Annotated[str, Field(min_length=1)]] = None
    to_candidate: Optional[Annotated[str, Field(min_length=1)]] = None
    funding_candidate: Optional[Annotated[str, Field(min_length=1)]] = None
    candidates: list[Annotated[str, Field(min_length=1)]]


class BudgetChange(BaseModel):
    """Net effect of an applied batch on one pod."""

    pod_id: str
    pod_name: str
    delta_in_cents: int
    before_in_cents: int
    after_in_cents: int


class InterpretResult(BaseModel):
    """Output of the deterministic interpreter."""

    assistant_text: str
    drafts: list[ProposedActionDraft] = Field(default_factory=list)
    entities: ParsedEntitiesHints
    observed_transfer_event: Optional[ObservedTransferEvent] = None
