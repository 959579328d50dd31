"""
Integration tests for the propose and apply flows.

Storage is InMemoryStorage; the model endpoint is an httpx.MockTransport.
"""

import asyncio
import json

import httpx
import pytest

from budgetpods.agents import ProposalAgent, TOOL_NAME
from budgetpods.ledger import (
    ActionConflictError,
    ActionsNotFoundError,
    ForeignPodError,
    NegativeBudgetError,
    PodMissingError,
)
from budgetpods.models.audit import AuditEventType
from budgetpods.models.budget import (
    ActionStatus,
    BudgetAdjustDraft,
    BudgetAdjustPayload,
    BudgetRepairRestoreDonorDraft,
    BudgetRepairRestoreDonorPayload,
    BudgetTransferDraft,
    BudgetTransferPayload,
    PodCategory,
)
from budgetpods.orchestrator import ApplyFlow, ProposeFlow, create_app_components
from budgetpods.services import InMemoryStorage, RemoteAuthProvider, StaticTokenAuthProvider
from budgetpods.services.storage.memory import OBSERVED_TRANSFER_EVENT_TYPE

from tests.conftest import HOUSEHOLD_ID, OTHER_HOUSEHOLD_ID, USER_ID


OBSERVED_MESSAGE = "I moved $25 from Groceries to Education"
REQUEST_MESSAGE = "Move $220 from Moving Fund to Health"


def model_reply(args: dict) -> dict:
    return {"output": [{"type": "function_call", "name": TOOL_NAME, "arguments": json.dumps(args)}]}


AI_TRANSFER = {
    "intent": "request_budget_change",
    "assistantText": "Sure, moving $100 of budget to Health.",
    "proposedActionDrafts": [{
        "type": "budget_transfer",
        "payload": {
            "kind": "budget_transfer",
            "amount_in_cents": 10000,
            "from_pod_id": "pod-moving-fund",
            "to_pod_id": "pod-health",
        },
    }],
}


class RecordingTransport:
    def __init__(self, responder):
        self.responder = responder
        self.calls = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls += 1
        return self.responder(request)


def make_agent(transport: RecordingTransport) -> ProposalAgent:
    client = httpx.AsyncClient(transport=httpx.MockTransport(transport))
    return ProposalAgent(api_key="sk-test", retry_backoff_ms=0, client=client)


def propose_flow(storage, settings, audit_logger, agent=None) -> ProposeFlow:
    return ProposeFlow(
        pod_storage=storage,
        chat_storage=storage,
        action_storage=storage,
        event_storage=storage,
        agent=agent,
        settings=settings,
        audit_logger=audit_logger,
    )


def propose(flow: ProposeFlow, message: str):
    return asyncio.run(flow.propose(HOUSEHOLD_ID, USER_ID, message, trace_id="trace-1"))


def event_types(audit_logger) -> list:
    return [e.event_type for e in audit_logger.history]


@pytest.fixture
def ai_env(env):
    env.setenv("AI_ENABLED", "true")
    env.setenv("OPENAI_API_KEY", "sk-test")
    return env


class TestProposeDeterministic:
    """Propose with the model switched off."""

    def test_observed_transfer_persists_everything(self, storage, settings, audit_logger):
        """Test that a reported transfer stores messages, the fact and repair drafts."""
        outcome = propose(propose_flow(storage, settings, audit_logger), OBSERVED_MESSAGE)

        assert outcome.ai_used is False
        assert outcome.warnings == []
        assert [a.payload.funding_pod_name for a in outcome.proposed_actions] == [
            "Move to ___",
            "Moving Fund",
        ]
        assert all(a.status == ActionStatus.PROPOSED for a in storage.actions)
        assert len(storage.actions) == 2
        assert [m.sender_role.value for m in storage.messages] == ["user", "assistant"]
        assert storage.actions[0].message_id == storage.messages[1].id

        events = storage.events
        assert len(events) == 1
        assert events[0].type == OBSERVED_TRANSFER_EVENT_TYPE
        assert events[0].payload["amount_in_cents"] == 2500
        assert outcome.debug.intent_chosen == "observed_transfer"
        assert outcome.debug.mode_chosen == "deterministic"

    def test_observed_transfer_deduplicated(self, storage, settings, audit_logger):
        """Test that repeating a report within the window logs it once."""
        flow = propose_flow(storage, settings, audit_logger)
        propose(flow, OBSERVED_MESSAGE)
        propose(flow, OBSERVED_MESSAGE)

        observed = [e for e in storage.events if e.type == OBSERVED_TRANSFER_EVENT_TYPE]
        assert len(observed) == 1
        types = event_types(audit_logger)
        assert AuditEventType.OBSERVED_TRANSFER_LOGGED in types
        assert AuditEventType.OBSERVED_TRANSFER_DEDUPLICATED in types

    def test_budgets_untouched_by_propose(self, storage, settings, audit_logger):
        """Test that proposing never changes a budget."""
        propose(propose_flow(storage, settings, audit_logger), REQUEST_MESSAGE)
        assert storage.budget_of("pod-moving-fund") == 30000
        assert storage.budget_of("pod-health") == 2000

    def test_help_fallback_mode(self, storage, settings, audit_logger):
        """Test that an unrecognized message stores no actions."""
        outcome = propose(propose_flow(storage, settings, audit_logger), "hello")
        assert outcome.proposed_actions == []
        assert outcome.debug.mode_chosen == "help_fallback"
        assert storage.actions == []
        assert len(storage.messages) == 2

    def test_advisory_mode(self, storage, settings, audit_logger):
        """Test that a clarifying question is an advisory reply."""
        outcome = propose(propose_flow(storage, settings, audit_logger), "rent due soon")
        assert outcome.debug.mode_chosen == "advisory"

    def test_enabled_without_key_warns(self, env, settings, storage, audit_logger):
        """Test that AI_ENABLED without a key warns and stays deterministic."""
        env.setenv("AI_ENABLED", "true")
        outcome = propose(propose_flow(storage, settings, audit_logger), REQUEST_MESSAGE)
        assert outcome.warnings == ["AI_DISABLED_NO_KEY"]
        assert outcome.debug.ai_attempted is False
        assert outcome.debug.ai_failure_stage == "disabled"
        assert len(outcome.proposed_actions) == 1


class TestProposeWithModel:
    """Propose with the model switched on."""

    def test_model_proposal_used(self, ai_env, settings, storage, audit_logger):
        """Test that validated model output replaces the deterministic drafts."""
        transport = RecordingTransport(lambda r: httpx.Response(200, json=model_reply(AI_TRANSFER)))
        flow = propose_flow(storage, settings, audit_logger, make_agent(transport))
        outcome = propose(flow, REQUEST_MESSAGE)

        assert transport.calls == 1
        assert outcome.ai_used is True
        assert outcome.assistant_text == AI_TRANSFER["assistantText"]
        assert outcome.proposed_actions[0].payload.amount_in_cents == 10000
        assert outcome.debug.mode_chosen == "proposal"
        assert outcome.debug.ai_intent == "request_budget_change"

    def test_observed_transfer_skips_model(self, ai_env, settings, storage, audit_logger):
        """Test that reported transfers never reach the model."""
        transport = RecordingTransport(lambda r: httpx.Response(200, json=model_reply(AI_TRANSFER)))
        flow = propose_flow(storage, settings, audit_logger, make_agent(transport))
        outcome = propose(flow, OBSERVED_MESSAGE)

        assert transport.calls == 0
        assert outcome.debug.ai_failure_stage == "fallback_router"
        assert outcome.proposed_actions[0].type.value == "budget_repair_restore_donor"

    @pytest.mark.parametrize("message", [
        "I had to move $25 from Groceries to Education",
        "moved $25 from Groceries to Education",
    ])
    def test_observed_phrasing_skips_model(self, message, ai_env, settings, storage, audit_logger):
        """Test that transfers reported without a keyword intent still skip the model."""
        transport = RecordingTransport(lambda r: httpx.Response(200, json=model_reply(AI_TRANSFER)))
        flow = propose_flow(storage, settings, audit_logger, make_agent(transport))
        outcome = propose(flow, message)

        assert transport.calls == 0
        assert outcome.ai_used is False
        assert outcome.debug.ai_failure_stage == "fallback_router"
        assert {a.type.value for a in outcome.proposed_actions} == {"budget_repair_restore_donor"}
        assert [e.type for e in storage.events] == [OBSERVED_TRANSFER_EVENT_TYPE]

    def test_invalid_output_falls_back(self, ai_env, settings, storage, audit_logger):
        """Test that a rejected model answer falls back with warnings."""
        bad = json.loads(json.dumps(AI_TRANSFER))
        bad["proposedActionDrafts"][0]["payload"]["to_pod_id"] = "pod-elsewhere"
        transport = RecordingTransport(lambda r: httpx.Response(200, json=model_reply(bad)))
        flow = propose_flow(storage, settings, audit_logger, make_agent(transport))
        outcome = propose(flow, REQUEST_MESSAGE)

        assert outcome.ai_used is False
        assert outcome.warnings == ["AI_SCHEMA_INVALID", "AI_FALLBACK_TO_DETERMINISTIC"]
        assert outcome.debug.ai_failure_stage == "invalid_output"
        assert outcome.proposed_actions[0].payload.amount_in_cents == 22000
        assert AuditEventType.AI_FALLBACK in event_types(audit_logger)

    def test_timeout_falls_back(self, ai_env, settings, storage, audit_logger):
        """Test that a model timeout falls back with a timeout warning."""
        def timeout(request):
            raise httpx.ReadTimeout("timed out", request=request)

        transport = RecordingTransport(timeout)
        flow = propose_flow(storage, settings, audit_logger, make_agent(transport))
        outcome = propose(flow, REQUEST_MESSAGE)

        assert outcome.warnings == ["AI_TIMEOUT", "AI_FALLBACK_TO_DETERMINISTIC"]
        assert outcome.debug.ai_failure_stage == "call_failed"
        assert outcome.debug.ai_error_message == "OpenAI request timed out"
        assert len(outcome.proposed_actions) == 1

    def test_question_advice_has_no_actions(self, ai_env, settings, storage, audit_logger):
        """Test that advice questions never store actions."""
        transport = RecordingTransport(lambda r: httpx.Response(200, json=model_reply(AI_TRANSFER)))
        flow = propose_flow(storage, settings, audit_logger, make_agent(transport))
        outcome = propose(flow, "can we move $10 from Groceries to Health?")

        assert outcome.ai_used is True
        assert outcome.proposed_actions == []
        assert storage.actions == []


def seed(storage: InMemoryStorage, *drafts) -> list[str]:
    actions = asyncio.run(storage.insert_proposed_actions(HOUSEHOLD_ID, "msg-1", list(drafts)))
    return [a.id for a in actions]


def repair_draft(amount=300, donor=("pod-groceries", "Groceries"), funding=("pod-move-to", "Move to ___")):
    return BudgetRepairRestoreDonorDraft(payload=BudgetRepairRestoreDonorPayload(
        amount_in_cents=amount,
        donor_pod_id=donor[0],
        donor_pod_name=donor[1],
        funding_pod_id=funding[0],
        funding_pod_name=funding[1],
    ))


def transfer_draft(amount, source=("pod-groceries", "Groceries"), target=("pod-health", "Health")):
    return BudgetTransferDraft(payload=BudgetTransferPayload(
        amount_in_cents=amount,
        from_pod_id=source[0],
        from_pod_name=source[1],
        to_pod_id=target[0],
        to_pod_name=target[1],
    ))


def apply_flow(storage, audit_logger) -> ApplyFlow:
    return ApplyFlow(
        pod_storage=storage,
        action_storage=storage,
        event_storage=storage,
        audit_logger=audit_logger,
    )


def apply(flow: ApplyFlow, action_ids):
    return asyncio.run(flow.apply(HOUSEHOLD_ID, action_ids, USER_ID, trace_id="trace-2"))


class TestApply:
    """Tests for ApplyFlow."""

    def test_repair_applied(self, storage, audit_logger):
        """Test the repair example end to end."""
        ids = seed(storage, repair_draft(300))
        snapshot = apply(apply_flow(storage, audit_logger), ids)

        assert storage.budget_of("pod-groceries") == 1300
        assert storage.budget_of("pod-move-to") == 4700
        assert [(c.pod_name, c.delta_in_cents) for c in snapshot.changes] == [
            ("Groceries", 300),
            ("Move to ___", -300),
        ]
        assert snapshot.applied_action_ids == ids
        assert len(snapshot.pods) == 5

        action = storage.actions[0]
        assert action.status == ActionStatus.APPLIED
        assert action.applied_by == USER_ID

        events = storage.events
        assert len(events) == 1
        assert events[0].type == "budget_repair_restore_donor"
        assert events[0].payload["action_id"] == ids[0]
        assert "applied_at" in events[0].payload

    def test_batch_conserves_budget(self, storage, audit_logger):
        """Test that a transfer and repair batch keeps the total over touched pods."""
        ids = seed(storage, repair_draft(300), transfer_draft(500))
        before = sum(storage.budget_of(p) for p in ("pod-groceries", "pod-move-to", "pod-health"))
        snapshot = apply(apply_flow(storage, audit_logger), ids)

        after = sum(storage.budget_of(p) for p in ("pod-groceries", "pod-move-to", "pod-health"))
        assert before == after
        assert sum(c.delta_in_cents for c in snapshot.changes) == 0

    def test_unknown_action(self, storage, audit_logger):
        """Test that an unknown id rejects the batch."""
        ids = seed(storage, repair_draft(300))
        with pytest.raises(ActionsNotFoundError) as exc:
            apply(apply_flow(storage, audit_logger), ids + ["missing-id"])
        assert exc.value.missing == ["missing-id"]
        assert storage.budget_of("pod-groceries") == 1000

    def test_action_from_other_household_is_not_found(self, storage, audit_logger):
        """Test that actions are scoped to the household."""
        actions = asyncio.run(storage.insert_proposed_actions(
            OTHER_HOUSEHOLD_ID, "msg-x", [repair_draft(300)]
        ))
        with pytest.raises(ActionsNotFoundError):
            apply(apply_flow(storage, audit_logger), [actions[0].id])

    def test_replay_is_idempotent(self, storage, audit_logger):
        """Test that re-applying an applied batch writes nothing."""
        flow = apply_flow(storage, audit_logger)
        ids = seed(storage, repair_draft(300))
        apply(flow, ids)
        snapshot = apply(flow, ids)

        assert snapshot.changes == []
        assert storage.budget_of("pod-groceries") == 1300
        assert len(storage.events) == 1
        assert AuditEventType.APPLY_NOOP in event_types(audit_logger)

    def test_partially_applied_batch_conflicts(self, storage, audit_logger):
        """Test that mixing applied and pending actions is a conflict."""
        flow = apply_flow(storage, audit_logger)
        first = seed(storage, repair_draft(300))
        second = seed(storage, transfer_draft(100))
        apply(flow, first)

        with pytest.raises(ActionConflictError):
            apply(flow, first + second)
        assert storage.budget_of("pod-health") == 2000
        assert AuditEventType.APPLY_REJECTED in event_types(audit_logger)

    def test_negative_budget_rejects_whole_batch(self, storage, audit_logger):
        """Test that one overdraft leaves every budget and status unchanged."""
        ids = seed(storage, repair_draft(300), transfer_draft(99999))

        with pytest.raises(NegativeBudgetError):
            apply(apply_flow(storage, audit_logger), ids)

        assert storage.budget_of("pod-groceries") == 1000
        assert storage.budget_of("pod-move-to") == 5000
        assert storage.events == []
        assert all(a.status == ActionStatus.PROPOSED for a in storage.actions)

    def test_foreign_pod_rejected(self, storage, audit_logger):
        """Test that a pod of another household cannot be touched."""
        storage.add_pod(OTHER_HOUSEHOLD_ID, "Theirs", 5000, pod_id="pod-foreign")
        ids = seed(storage, transfer_draft(100, target=("pod-foreign", "Theirs")))

        with pytest.raises(ForeignPodError):
            apply(apply_flow(storage, audit_logger), ids)
        assert storage.budget_of("pod-foreign") == 5000

    def test_missing_pod_rejected(self, storage, audit_logger):
        """Test that a deleted pod rejects the batch."""
        ids = seed(storage, transfer_draft(100, target=("pod-ghost", "Ghost")))
        with pytest.raises(PodMissingError):
            apply(apply_flow(storage, audit_logger), ids)

    def test_pod_without_settings_starts_at_zero(self, storage, audit_logger):
        """Test that applying to a pod with no settings row creates one."""
        storage.add_pod(HOUSEHOLD_ID, "New Pod", pod_id="pod-new", with_settings=False)
        ids = seed(storage, BudgetAdjustDraft(payload=BudgetAdjustPayload(
            delta_in_cents=700, pod_id="pod-new", pod_name="New Pod",
        )))
        snapshot = apply(apply_flow(storage, audit_logger), ids)

        assert storage.budget_of("pod-new") == 700
        assert snapshot.changes[0].before_in_cents == 0

    def test_write_failure_marks_single_action_failed(self, storage, audit_logger):
        """Test the best-effort failed mark after an unexpected write error."""

        class BrokenStorage(InMemoryStorage):
            async def upsert_budgeted_amounts(self, budgets):
                raise RuntimeError("datastore unavailable")

        broken = BrokenStorage()
        broken.add_pod(HOUSEHOLD_ID, "Groceries", 1000, PodCategory.NECESSITIES, pod_id="pod-groceries")
        broken.add_pod(HOUSEHOLD_ID, "Health", 2000, pod_id="pod-health")
        ids = seed(broken, transfer_draft(100))

        with pytest.raises(RuntimeError):
            apply(apply_flow(broken, audit_logger), ids)
        assert broken.actions[0].status == ActionStatus.FAILED


class TestAppComponents:
    """Tests for the component factory."""

    def test_dev_token_provider(self, env, settings):
        """Test that without AUTH_URL only the dev token is accepted."""
        env.setenv("AUTH_DEV_TOKEN", "dev")
        components = create_app_components(settings=settings)
        assert isinstance(components.auth, StaticTokenAuthProvider)
        user = asyncio.run(components.auth.verify_user("Bearer dev"))
        assert user.user_id == "00000000-0000-0000-0000-000000000001"

    def test_remote_provider(self, env, settings):
        """Test that AUTH_URL selects the remote verifier."""
        env.setenv("AUTH_URL", "https://auth.example.com/auth/v1")
        components = create_app_components(settings=settings)
        assert isinstance(components.auth, RemoteAuthProvider)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
