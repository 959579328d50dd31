"""
In-Memory Storage Implementation

DESIGN DECISION: A single object implements every storage interface over
plain dicts. It is the backend for single-instance runs and the fake used
throughout the tests.

TRADEOFFS:
- Nothing survives a restart
- No locking; concurrent applies on one household can interleave
  (the hosted datastore has the same gap)

Returned models are copies, so callers cannot mutate stored state.
"""

from datetime import datetime
from typing import Iterable, Optional

from budgetpods.models.budget import (
    ActionStatus,
    ActionType,
    BudgetEvent,
    ChatMessage,
    ChatThread,
    PodCategory,
    PodRecord,
    PodSettings,
    PodWithSettings,
    ProposedAction,
    ProposedActionDraft,
    new_id,
    utcnow,
)
from budgetpods.services.storage.interface import (
    ActionStorageInterface,
    BudgetEventStorageInterface,
    ChatStorageInterface,
    HouseholdStorageInterface,
    InvalidTransitionError,
    MembershipError,
    NotFoundError,
    PodStorageInterface,
)


OBSERVED_TRANSFER_EVENT_TYPE = "observed_transfer"


class InMemoryStorage(
    HouseholdStorageInterface,
    PodStorageInterface,
    ChatStorageInterface,
    ActionStorageInterface,
    BudgetEventStorageInterface,
):
    """Dict-backed implementation of all storage interfaces."""

    def __init__(self):
        self._members: dict[str, set[str]] = {}
        self._pods: dict[str, PodRecord] = {}
        self._settings: dict[str, PodSettings] = {}
        self._threads: dict[str, ChatThread] = {}
        self._messages: list[ChatMessage] = []
        self._actions: dict[str, ProposedAction] = {}
        self._events: list[BudgetEvent] = []

    # =========================================================================
    # Seeding
    # =========================================================================

    def add_member(self, household_id: str, user_id: str) -> None:
        self._members.setdefault(household_id, set()).add(user_id)

    def add_pod(
        self,
        household_id: str,
        name: str,
        budgeted_amount_in_cents: Optional[int] = None,
        category: Optional[PodCategory] = None,
        pod_id: Optional[str] = None,
        is_active: bool = True,
        balance_amount_in_cents: Optional[int] = None,
        with_settings: bool = True,
    ) -> PodRecord:
        """
        Create a pod, optionally with a settings row.

        Returns:
            The stored pod
        """
        pod = PodRecord(
            id=pod_id or new_id(),
            household_id=household_id,
            name=name,
            is_active=is_active,
            balance_amount_in_cents=balance_amount_in_cents,
        )
        self._pods[pod.id] = pod
        if with_settings:
            self._settings[pod.id] = PodSettings(
                pod_id=pod.id,
                category=category,
                budgeted_amount_in_cents=budgeted_amount_in_cents,
            )
        return pod.model_copy()

    # =========================================================================
    # Inspection helpers
    # =========================================================================

    def budget_of(self, pod_id: str) -> Optional[int]:
        settings = self._settings.get(pod_id)
        return settings.budgeted_amount_in_cents if settings else None

    @property
    def events(self) -> list[BudgetEvent]:
        return [e.model_copy(deep=True) for e in self._events]

    @property
    def messages(self) -> list[ChatMessage]:
        return [m.model_copy() for m in self._messages]

    @property
    def actions(self) -> list[ProposedAction]:
        return [a.model_copy(deep=True) for a in self._actions.values()]

    # =========================================================================
    # HouseholdStorageInterface
    # =========================================================================

    async def assert_user_in_household(self, user_id: str, household_id: str) -> None:
        if user_id not in self._members.get(household_id, set()):
            raise MembershipError("User is not a member of this household")

    # =========================================================================
    # PodStorageInterface
    # =========================================================================

    async def list_pods_with_settings(
        self,
        household_id: str,
        active_only: bool = True,
    ) -> list[PodWithSettings]:
        rows = []
        for pod in self._pods.values():
            if pod.household_id != household_id:
                continue
            if active_only and not pod.is_active:
                continue
            settings = self._settings.get(pod.id)
            rows.append(PodWithSettings(
                pod=pod.model_copy(),
                settings=settings.model_copy() if settings else None,
            ))
        return rows

    async def list_pods_by_ids(self, pod_ids: list[str]) -> list[PodRecord]:
        return [self._pods[pid].model_copy() for pid in pod_ids if pid in self._pods]

    async def list_pod_settings_by_pod_ids(self, pod_ids: list[str]) -> list[PodSettings]:
        return [
            self._settings[pid].model_copy()
            for pid in pod_ids
            if pid in self._settings
        ]

    async def upsert_budgeted_amounts(self, budgets: dict[str, int]) -> None:
        now = utcnow()
        for pod_id, cents in budgets.items():
            if pod_id not in self._pods:
                raise NotFoundError(f"Pod {pod_id} not found")
            existing = self._settings.get(pod_id)
            if existing:
                self._settings[pod_id] = existing.model_copy(
                    update={"budgeted_amount_in_cents": cents, "updated_at": now}
                )
            else:
                self._settings[pod_id] = PodSettings(
                    pod_id=pod_id,
                    budgeted_amount_in_cents=cents,
                    updated_at=now,
                )

    # =========================================================================
    # ChatStorageInterface
    # =========================================================================

    async def get_or_create_thread(self, household_id: str) -> ChatThread:
        thread = self._threads.get(household_id)
        if thread is None:
            thread = ChatThread(household_id=household_id)
            self._threads[household_id] = thread
        return thread.model_copy()

    async def insert_chat_message(self, message: ChatMessage) -> ChatMessage:
        self._messages.append(message.model_copy())
        return message

    # =========================================================================
    # ActionStorageInterface
    # =========================================================================

    async def insert_proposed_actions(
        self,
        household_id: str,
        message_id: str,
        drafts: list[ProposedActionDraft],
    ) -> list[ProposedAction]:
        stored = []
        for draft in drafts:
            action = ProposedAction(
                household_id=household_id,
                message_id=message_id,
                type=ActionType(draft.type),
                payload=draft.payload,
            )
            self._actions[action.id] = action
            stored.append(action.model_copy(deep=True))
        return stored

    async def get_actions_by_ids(
        self,
        household_id: str,
        action_ids: list[str],
    ) -> list[ProposedAction]:
        return [
            self._actions[aid].model_copy(deep=True)
            for aid in dict.fromkeys(action_ids)
            if aid in self._actions and self._actions[aid].household_id == household_id
        ]

    async def mark_applied(
        self,
        household_id: str,
        action_ids: list[str],
        applied_by: str,
        applied_at: datetime,
    ) -> None:
        self._transition(household_id, action_ids, ActionStatus.APPLIED, applied_by, applied_at)

    async def mark_failed(
        self,
        household_id: str,
        action_id: str,
        applied_by: str,
        applied_at: datetime,
    ) -> None:
        self._transition(household_id, [action_id], ActionStatus.FAILED, applied_by, applied_at)

    def _transition(
        self,
        household_id: str,
        action_ids: Iterable[str],
        target: ActionStatus,
        applied_by: str,
        applied_at: datetime,
    ) -> None:
        targets = []
        for action_id in action_ids:
            action = self._actions.get(action_id)
            if action is None or action.household_id != household_id:
                raise NotFoundError(f"Action {action_id} not found")
            if not action.status.can_transition_to(target):
                raise InvalidTransitionError(
                    f"Action {action_id} cannot move from {action.status.value} to {target.value}"
                )
            targets.append(action)

        for action in targets:
            self._actions[action.id] = action.model_copy(update={
                "status": target,
                "applied_by": applied_by,
                "applied_at": applied_at,
            })

    # =========================================================================
    # BudgetEventStorageInterface
    # =========================================================================

    async def insert_budget_events(self, events: list[BudgetEvent]) -> list[BudgetEvent]:
        self._events.extend(e.model_copy(deep=True) for e in events)
        return events

    async def has_recent_observed_transfer(
        self,
        household_id: str,
        from_pod_id: str,
        to_pod_id: str,
        amount_in_cents: int,
        since: datetime,
    ) -> bool:
        for event in self._events:
            if event.household_id != household_id:
                continue
            if event.type != OBSERVED_TRANSFER_EVENT_TYPE or event.created_at < since:
                continue
            payload = event.payload
            if (
                payload.get("from_pod_id") == from_pod_id
                and payload.get("to_pod_id") == to_pod_id
                and payload.get("amount_in_cents") == amount_in_cents
            ):
                return True
        return False
