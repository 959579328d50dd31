"""
Main Orchestrator for the Pod Budget Assistant

This module ties together all the components and defines the
end-to-end flows for:
1. Propose (message -> interpret -> optional model -> persist drafts)
2. Apply (action ids -> validate -> compute budgets -> persist -> snapshot)

DESIGN DECISION: The orchestrator enforces the boundaries:
- No budget changes without an explicit apply of proposed actions
- The deterministic interpreter always runs; the model only replaces it
  when its output passed every check
- Every step is audited

This is the "glue" that ensures the system works correctly
even when individual components might behave unexpectedly.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

import structlog
from pydantic import BaseModel, Field

from budgetpods.agents import AIProposeError, ProposalAgent
from budgetpods.audit import AuditLogger
from budgetpods.chat import HELP_TEXT_PREFIX, classify_intent, interpret_message
from budgetpods.chat.names import unique_names
from budgetpods.config import Settings, get_settings
from budgetpods.ledger import (
    ActionConflictError,
    ActionsNotFoundError,
    ApplyRejectedError,
    ForeignPodError,
    NegativeBudgetError,
    PodMissingError,
    apply_payloads_to_budget_map,
    compute_changes,
    referenced_pod_ids,
)
from budgetpods.models.api import ApplySnapshot, PodSummary, ProposeDebug
from budgetpods.models.budget import (
    ActionStatus,
    BudgetEvent,
    ChatIntent,
    ChatMessage,
    ObservedTransferEvent,
    ParsedEntitiesHints,
    PodSnapshot,
    ProposedAction,
    SenderRole,
    utcnow,
)
from budgetpods.services import (
    ActionStorageInterface,
    AuthProviderInterface,
    BudgetEventStorageInterface,
    ChatStorageInterface,
    HouseholdStorageInterface,
    InMemoryRateLimiter,
    InMemoryStorage,
    PodStorageInterface,
    RateLimiterInterface,
    RemoteAuthProvider,
    StaticTokenAuthProvider,
)
from budgetpods.services.storage.memory import OBSERVED_TRANSFER_EVENT_TYPE


logger = structlog.get_logger(__name__)

AI_ERROR_MESSAGE_MAX_CHARS = 180


class ProposeOutcome(BaseModel):
    """What the propose flow hands back to the HTTP layer."""

    assistant_text: str
    proposed_actions: list[ProposedAction] = Field(default_factory=list)
    entities: ParsedEntitiesHints
    warnings: list[str] = Field(default_factory=list)
    ai_used: bool = False
    debug: ProposeDebug


def _short_error(message: Optional[str]) -> Optional[str]:
    if not message:
        return None
    return " ".join(message.split())[:AI_ERROR_MESSAGE_MAX_CHARS]


class ProposeFlow:
    """
    Orchestrates the propose flow.

    Flow:
    1. Load active pods
    2. Interpret deterministically (always)
    3. Classify intent; ask the model unless the user reports a done transfer
    4. Persist thread, both messages, the observed transfer fact and drafts

    Drafts are stored as PROPOSED. Nothing here touches a budget.
    """

    def __init__(
        self,
        pod_storage: PodStorageInterface,
        chat_storage: ChatStorageInterface,
        action_storage: ActionStorageInterface,
        event_storage: BudgetEventStorageInterface,
        agent: Optional[ProposalAgent] = None,
        settings: Optional[Settings] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._settings = settings or get_settings()
        self._pods = pod_storage
        self._chat = chat_storage
        self._actions = action_storage
        self._events = event_storage
        self._agent = agent or ProposalAgent.from_settings(self._settings)
        self._audit_logger = audit_logger

    async def propose(
        self,
        household_id: str,
        user_id: str,
        message_text: str,
        trace_id: str,
    ) -> ProposeOutcome:
        """
        Turn a chat message into stored, pending actions.

        Model failures never escape; they become warnings and the
        deterministic result is used.
        """
        if self._audit_logger:
            self._audit_logger.log_message_received(
                trace_id=trace_id,
                household_id=household_id,
                user_id=user_id,
                message_chars=len(message_text),
            )

        rows = await self._pods.list_pods_with_settings(household_id, active_only=True)
        pods = [PodSnapshot.from_pod_with_settings(r) for r in rows]

        base = interpret_message(message_text, pods)
        intent = classify_intent(message_text)

        assistant_text = base.assistant_text
        drafts = list(base.drafts)
        entities = base.entities
        warnings: list[str] = []

        ai_enabled = self._settings.ai.enabled
        key_present = self._settings.openai.api_key is not None
        # Observed transfers stay deterministic, whichever way they were phrased.
        observed = (
            intent == ChatIntent.OBSERVED_TRANSFER
            or base.observed_transfer_event is not None
        )
        should_try_ai = ai_enabled and key_present and not observed
        if ai_enabled and not key_present:
            warnings.append("AI_DISABLED_NO_KEY")

        debug = ProposeDebug(ai_enabled=ai_enabled, intent_chosen=intent.value)
        if not should_try_ai:
            debug.ai_failure_stage = "fallback_router" if ai_enabled and key_present else "disabled"

        if self._audit_logger:
            self._audit_logger.log_decision_branch(
                trace_id=trace_id,
                branch="ai" if should_try_ai else "deterministic",
                intent=intent.value,
                ai_enabled=ai_enabled,
            )

        if should_try_ai:
            debug.ai_attempted = True
            try:
                proposal = await self._agent.propose(
                    message_text, pods, intent=intent, trace_id=trace_id
                )
            except AIProposeError as e:
                debug.ai_failure_stage = (
                    "invalid_output" if e.is_schema_failure
                    else "disabled" if e.stage.value == "missing_key"
                    else "call_failed"
                )
                debug.ai_error_message = _short_error(e.message)
                warnings.extend([e.warning, "AI_FALLBACK_TO_DETERMINISTIC"])
                logger.warning("ai_exception", trace_id=trace_id, stage=e.stage.value)
            except Exception as e:
                debug.ai_failure_stage = "call_failed"
                debug.ai_error_message = _short_error(str(e))
                warnings.extend(["AI_ERROR", "AI_FALLBACK_TO_DETERMINISTIC"])
                logger.exception("ai_exception", trace_id=trace_id, stage="api_error")
            else:
                debug.ai_succeeded = True
                debug.ai_failure_stage = None
                debug.ai_intent = proposal.intent.value
                assistant_text = proposal.assistant_text
                drafts = [] if intent == ChatIntent.QUESTION_ADVICE else list(proposal.drafts)
                entities = ParsedEntitiesHints(**{
                    **base.entities.model_dump(exclude_unset=True),
                    **proposal.entities.model_dump(exclude_unset=True),
                    "candidates": unique_names(
                        base.entities.candidates, proposal.entities.candidates
                    )[:self._settings.app.candidate_limit],
                })

            if not debug.ai_succeeded and self._audit_logger:
                self._audit_logger.log_ai_fallback(
                    trace_id=trace_id,
                    stage=debug.ai_failure_stage or "call_failed",
                    warnings=warnings,
                    error_message=debug.ai_error_message,
                )

        thread = await self._chat.get_or_create_thread(household_id)
        await self._chat.insert_chat_message(ChatMessage(
            thread_id=thread.id,
            sender_role=SenderRole.USER,
            sender_user_id=user_id,
            text=message_text,
        ))
        assistant_message = await self._chat.insert_chat_message(ChatMessage(
            thread_id=thread.id,
            sender_role=SenderRole.ASSISTANT,
            text=assistant_text,
        ))

        if base.observed_transfer_event:
            await self._record_observed_transfer(
                base.observed_transfer_event, household_id, user_id, trace_id
            )

        actions = await self._actions.insert_proposed_actions(
            household_id, assistant_message.id, drafts
        ) if drafts else []

        if debug.ai_succeeded:
            debug.mode_chosen = "proposal"
        elif drafts:
            debug.mode_chosen = "deterministic"
        elif assistant_text.startswith(HELP_TEXT_PREFIX):
            debug.mode_chosen = "help_fallback"
        else:
            debug.mode_chosen = "advisory"

        if self._audit_logger:
            self._audit_logger.log_proposal_generated(
                trace_id=trace_id,
                household_id=household_id,
                mode=debug.mode_chosen,
                ai_used=debug.ai_succeeded,
                action_types=[a.type.value for a in actions],
            )

        return ProposeOutcome(
            assistant_text=assistant_text,
            proposed_actions=actions,
            entities=entities,
            warnings=warnings,
            ai_used=debug.ai_succeeded,
            debug=debug,
        )

    async def _record_observed_transfer(
        self,
        event: ObservedTransferEvent,
        household_id: str,
        user_id: str,
        trace_id: str,
    ) -> None:
        """Append the observed transfer to the ledger unless it was just logged."""
        now = utcnow()
        window = self._settings.app.observed_transfer_dedup_minutes
        duplicate = await self._events.has_recent_observed_transfer(
            household_id,
            event.from_pod_id,
            event.to_pod_id,
            event.amount_in_cents,
            since=now - timedelta(minutes=window),
        )
        if not duplicate:
            await self._events.insert_budget_events([BudgetEvent(
                household_id=household_id,
                actor_user_id=user_id,
                type=OBSERVED_TRANSFER_EVENT_TYPE,
                payload=event.model_dump(),
                created_at=now,
            )])

        if self._audit_logger:
            self._audit_logger.log_observed_transfer(
                trace_id=trace_id,
                household_id=household_id,
                amount_in_cents=event.amount_in_cents,
                from_pod_id=event.from_pod_id,
                to_pod_id=event.to_pod_id,
                deduplicated=duplicate,
                dedup_key=list(event.dedup_key(household_id, now, window)),
            )


class ApplyFlow:
    """
    Orchestrates the apply flow.

    Flow:
    1. Load the actions; all must exist in the household
    2. Replay of a fully applied batch returns the snapshot, nothing else
    3. Check every referenced pod exists and belongs to the household
    4. Compute new budgets in memory; reject the whole batch on a negative
    5. Write budgets, then ledger events, then flip status to APPLIED

    Status flips last, so a crash mid-write leaves the actions PROPOSED.
    """

    def __init__(
        self,
        pod_storage: PodStorageInterface,
        action_storage: ActionStorageInterface,
        event_storage: BudgetEventStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._pods = pod_storage
        self._actions = action_storage
        self._events = event_storage
        self._audit_logger = audit_logger

    async def _snapshot(
        self,
        household_id: str,
        action_ids: list[str],
        changes: list,
    ) -> ApplySnapshot:
        rows = await self._pods.list_pods_with_settings(household_id, active_only=True)
        return ApplySnapshot(
            applied_action_ids=action_ids,
            changes=changes,
            pods=[PodSummary.from_pod_with_settings(r) for r in rows],
        )

    async def apply(
        self,
        household_id: str,
        action_ids: list[str],
        user_id: str,
        trace_id: str,
    ) -> ApplySnapshot:
        """
        Apply pending actions to pod budgets.

        Raises:
            ApplyRejectedError: Unknown action, conflict, bad or foreign pod
            NegativeBudgetError: A budget would go below zero
        """
        applied_at = utcnow()
        try:
            return await self._apply(household_id, action_ids, user_id, trace_id, applied_at)
        except (ApplyRejectedError, NegativeBudgetError) as e:
            if self._audit_logger:
                self._audit_logger.log_apply_rejected(
                    trace_id=trace_id,
                    household_id=household_id,
                    code=getattr(e, "code", "BAD_REQUEST"),
                    message=str(e),
                )
            raise
        except Exception:
            if len(action_ids) == 1:
                await self._mark_failed_best_effort(
                    household_id, action_ids[0], user_id, applied_at, trace_id
                )
            raise

    async def _apply(self, household_id, action_ids, user_id, trace_id, applied_at) -> ApplySnapshot:
        actions = await self._actions.get_actions_by_ids(household_id, action_ids)
        found = {a.id for a in actions}
        missing = [aid for aid in action_ids if aid not in found]
        if missing:
            raise ActionsNotFoundError(missing)

        not_pending = [a for a in actions if a.status != ActionStatus.PROPOSED]
        if not_pending:
            if all(a.status == ActionStatus.APPLIED for a in actions):
                if self._audit_logger:
                    self._audit_logger.log_apply_noop(trace_id, household_id, action_ids)
                return await self._snapshot(household_id, action_ids, [])
            first = not_pending[0]
            raise ActionConflictError(first.id, first.status.value)

        # Keep the caller's order for payloads and pods.
        by_id = {a.id: a for a in actions}
        ordered = [by_id[aid] for aid in dict.fromkeys(action_ids)]
        payloads = [a.payload for a in ordered]

        pod_ids = referenced_pod_ids(payloads)
        pods_by_id = {p.id: p for p in await self._pods.list_pods_by_ids(pod_ids)}
        for pod_id in pod_ids:
            pod = pods_by_id.get(pod_id)
            if pod is None:
                raise PodMissingError(pod_id)
            if pod.household_id != household_id:
                raise ForeignPodError(pod_id)

        budgets = {pod_id: 0 for pod_id in pod_ids}
        for s in await self._pods.list_pod_settings_by_pod_ids(pod_ids):
            budgets[s.pod_id] = s.budgeted_amount_in_cents or 0
        before = dict(budgets)

        apply_payloads_to_budget_map(payloads, budgets)

        changes = compute_changes(
            pod_ids,
            {pid: p.name for pid, p in pods_by_id.items()},
            before,
            budgets,
        )

        await self._pods.upsert_budgeted_amounts(budgets)
        await self._events.insert_budget_events([
            BudgetEvent(
                household_id=household_id,
                actor_user_id=user_id,
                type=a.type.value,
                payload={
                    "action_id": a.id,
                    **a.payload.model_dump(mode="json", exclude_none=True),
                    "applied_at": applied_at.isoformat(),
                },
                created_at=applied_at,
            )
            for a in ordered
        ])
        await self._actions.mark_applied(household_id, list(by_id), user_id, applied_at)

        if self._audit_logger:
            self._audit_logger.log_actions_applied(
                trace_id=trace_id,
                household_id=household_id,
                user_id=user_id,
                action_ids=action_ids,
                change_count=len(changes),
            )

        return await self._snapshot(household_id, action_ids, changes)

    async def _mark_failed_best_effort(
        self,
        household_id: str,
        action_id: str,
        user_id: str,
        applied_at,
        trace_id: str,
    ) -> None:
        try:
            await self._actions.mark_failed(household_id, action_id, user_id, applied_at)
        except Exception as e:
            # Log failure but don't raise
            logger.warning(
                "mark_failed_failed",
                trace_id=trace_id,
                action_id=action_id,
                error=str(e),
            )


@dataclass
class AppComponents:
    """Everything the HTTP layer needs, wired together."""
    settings: Settings
    auth: AuthProviderInterface
    households: HouseholdStorageInterface
    rate_limiter: RateLimiterInterface
    propose_flow: ProposeFlow
    apply_flow: ApplyFlow
    audit_logger: AuditLogger


def create_app_components(
    settings: Optional[Settings] = None,
    storage: Optional[InMemoryStorage] = None,
    auth: Optional[AuthProviderInterface] = None,
    rate_limiter: Optional[RateLimiterInterface] = None,
    agent: Optional[ProposalAgent] = None,
    audit_logger: Optional[AuditLogger] = None,
) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        settings: Settings to use; defaults to the cached environment settings
        storage: Backend implementing every storage interface.
                 Defaults to a fresh in-memory store.
        auth: Token verifier. Defaults to the auth service when AUTH_URL is
              set, else to the dev token only.
        rate_limiter: Defaults to the in-process limiter
        agent: Model client. Defaults to one built from settings.
        audit_logger: Defaults to a local structlog logger

    Returns:
        AppComponents
    """
    settings = settings or get_settings()
    storage = storage or InMemoryStorage()
    audit_logger = audit_logger or AuditLogger()

    if auth is None:
        auth_settings = settings.auth
        if auth_settings.url:
            auth = RemoteAuthProvider(
                url=auth_settings.url,
                api_key=auth_settings.api_key,
                timeout_ms=auth_settings.timeout_ms,
            )
        else:
            auth = StaticTokenAuthProvider()
            if auth_settings.dev_token:
                auth.add_token(auth_settings.dev_token, auth_settings.dev_user_id)

    propose_flow = ProposeFlow(
        pod_storage=storage,
        chat_storage=storage,
        action_storage=storage,
        event_storage=storage,
        agent=agent,
        settings=settings,
        audit_logger=audit_logger,
    )
    apply_flow = ApplyFlow(
        pod_storage=storage,
        action_storage=storage,
        event_storage=storage,
        audit_logger=audit_logger,
    )

    return AppComponents(
        settings=settings,
        auth=auth,
        households=storage,
        rate_limiter=rate_limiter or InMemoryRateLimiter(),
        propose_flow=propose_flow,
        apply_flow=apply_flow,
        audit_logger=audit_logger,
    )
