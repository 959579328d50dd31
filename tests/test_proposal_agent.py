"""
Tests for the model proposal adapter.

The model endpoint is replaced by httpx.MockTransport; each handler
records the requests it saw.
"""

import asyncio
import json

import httpx
import pytest

from budgetpods.agents import AIProposeError, AIProposeStage, ProposalAgent, TOOL_NAME
from budgetpods.agents.proposal_agent import build_prompt, extract_tool_args, normalize_tool_args
from budgetpods.models.budget import BudgetTransferPayload, ChatIntent, PodCategory


def tool_response(args, as_string=True) -> dict:
    arguments = json.dumps(args) if as_string else args
    return {"output": [{"type": "function_call", "name": TOOL_NAME, "arguments": arguments}]}


def transfer_args(amount=22000, from_id="pod-moving-fund", to_id="pod-health", **extra) -> dict:
    args = {
        "intent": "request_budget_change",
        "assistantText": "Moving $220 of budget to Health.",
        "proposedActionDrafts": [{
            "type": "budget_transfer",
            "payload": {
                "kind": "budget_transfer",
                "amount_in_cents": amount,
                "from_pod_id": from_id,
                "to_pod_id": to_id,
            },
        }],
    }
    args.update(extra)
    return args


class Upstream:
    """Scripted model endpoint."""

    def __init__(self, *responses):
        self._responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        item = self._responses.pop(0) if len(self._responses) > 1 else self._responses[0]
        if isinstance(item, Exception):
            raise item
        if isinstance(item, httpx.Response):
            return httpx.Response(item.status_code, content=item.content, headers=item.headers)
        return httpx.Response(200, json=item)


def run_propose(upstream, pods, message="Move $220 from Moving Fund to Health",
                intent=ChatIntent.REQUEST_BUDGET_CHANGE, api_key="sk-test"):
    async def _run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(upstream)) as client:
            agent = ProposalAgent(api_key=api_key, retry_backoff_ms=0, client=client)
            return await agent.propose(message, pods, intent=intent, trace_id="t-1")

    return asyncio.run(_run())


@pytest.fixture
def pods(make_pod):
    return [
        make_pod("Moving Fund", 30000, PodCategory.SAVINGS),
        make_pod("Health", 1000, PodCategory.NECESSITIES),
        make_pod("Groceries", 500, PodCategory.NECESSITIES),
    ]


class TestProposeSuccess:
    """Tests for accepted model output."""

    def test_transfer_with_backfilled_names(self, pods):
        """Test that missing pod names are filled in from the pod list."""
        upstream = Upstream(tool_response(transfer_args()))
        proposal = run_propose(upstream, pods)

        assert proposal.intent == ChatIntent.REQUEST_BUDGET_CHANGE
        assert len(proposal.drafts) == 1
        payload = proposal.drafts[0].payload
        assert isinstance(payload, BudgetTransferPayload)
        assert payload.from_pod_name == "Moving Fund"
        assert payload.to_pod_name == "Health"
        assert payload.amount_in_cents == 22000

    def test_request_forces_the_tool(self, pods):
        """Test the request body sent upstream."""
        upstream = Upstream(tool_response(transfer_args()))
        run_propose(upstream, pods)

        assert len(upstream.requests) == 1
        request = upstream.requests[0]
        assert request.url.path.endswith("/responses")
        assert request.headers["authorization"] == "Bearer sk-test"
        body = json.loads(request.content)
        assert body["tool_choice"] == {"type": "function", "name": TOOL_NAME}
        assert body["tools"][0]["name"] == TOOL_NAME

    def test_pod_names_rewritten_from_pod_list(self, pods):
        """Test that model-supplied names are replaced by the real ones."""
        args = transfer_args()
        args["proposedActionDrafts"][0]["payload"]["from_pod_name"] = "moving"
        proposal = run_propose(Upstream(tool_response(args)), pods)
        assert proposal.drafts[0].payload.from_pod_name == "Moving Fund"

    def test_type_alias_for_kind(self, pods):
        """Test that a draft with only `type` gets its payload.kind."""
        args = transfer_args()
        del args["proposedActionDrafts"][0]["payload"]["kind"]
        proposal = run_propose(Upstream(tool_response(args)), pods)
        assert proposal.drafts[0].type == "budget_transfer"

    def test_object_arguments(self, pods):
        """Test that arguments given as an object are accepted."""
        proposal = run_propose(Upstream(tool_response(transfer_args(), as_string=False)), pods)
        assert len(proposal.drafts) == 1

    def test_chat_style_tool_calls(self, pods):
        """Test extraction from choices[0].message.tool_calls."""
        raw = {"choices": [{"message": {"tool_calls": [{
            "type": "function",
            "function": {"name": TOOL_NAME, "arguments": json.dumps(transfer_args())},
        }]}}]}
        proposal = run_propose(Upstream(raw), pods)
        assert len(proposal.drafts) == 1

    def test_nested_content_tool_call(self, pods):
        """Test extraction from an output item's content parts."""
        raw = {"output": [{"type": "message", "content": [
            {"type": "output_text", "text": "thinking"},
            {"type": "function_call", "name": TOOL_NAME, "arguments": json.dumps(transfer_args())},
        ]}]}
        proposal = run_propose(Upstream(raw), pods)
        assert len(proposal.drafts) == 1

    def test_entities_merged_with_pod_names(self, pods):
        """Test that model candidates are appended to the pod names."""
        args = transfer_args(entities={"fromCandidate": "moving", "candidates": ["Health", "Vacation"]})
        proposal = run_propose(Upstream(tool_response(args)), pods)
        assert proposal.entities.candidates == ["Moving Fund", "Health", "Groceries", "Vacation"]
        assert proposal.entities.from_candidate == "moving"

    def test_question_advice_without_drafts(self, pods):
        """Test an advice answer with no drafts."""
        args = {
            "intent": "question_advice",
            "assistantText": "Consider trimming Groceries.",
            "proposedActionDrafts": [],
        }
        proposal = run_propose(
            Upstream(tool_response(args)), pods,
            message="what should I do?", intent=ChatIntent.QUESTION_ADVICE,
        )
        assert proposal.drafts == []
        assert proposal.assistant_text == "Consider trimming Groceries."


class TestProposeFailures:
    """Tests for each failure stage."""

    def _stage(self, upstream, pods, **kwargs) -> AIProposeError:
        with pytest.raises(AIProposeError) as exc:
            run_propose(upstream, pods, **kwargs)
        return exc.value

    def test_missing_key(self, pods):
        """Test that no request is made without a key."""
        upstream = Upstream(tool_response(transfer_args()))
        error = self._stage(upstream, pods, api_key=None)
        assert error.stage == AIProposeStage.MISSING_KEY
        assert error.warning == "AI_DISABLED_NO_KEY"
        assert upstream.requests == []

    def test_tool_missing(self, pods):
        """Test a response without a tool call."""
        raw = {"output": [{"type": "message", "content": [{"type": "output_text", "text": "hi"}]}]}
        error = self._stage(Upstream(raw), pods)
        assert error.stage == AIProposeStage.TOOL_MISSING
        assert error.warning == "AI_SCHEMA_INVALID"

    def test_tool_parse(self, pods):
        """Test arguments that are not JSON."""
        raw = {"output": [{"type": "function_call", "name": TOOL_NAME, "arguments": "{not json"}]}
        error = self._stage(Upstream(raw), pods)
        assert error.stage == AIProposeStage.TOOL_PARSE

    def test_extra_payload_key(self, pods):
        """Test that additional payload keys fail validation."""
        args = transfer_args()
        args["proposedActionDrafts"][0]["payload"]["memo"] = "x"
        error = self._stage(Upstream(tool_response(args)), pods)
        assert error.stage == AIProposeStage.INVALID_ARGS
        assert error.is_schema_failure

    def test_too_many_drafts(self, pods):
        """Test that more than three drafts fail validation."""
        args = transfer_args()
        args["proposedActionDrafts"] = args["proposedActionDrafts"] * 4
        error = self._stage(Upstream(tool_response(args)), pods)
        assert error.stage == AIProposeStage.INVALID_ARGS

    def test_unknown_pod_id(self, pods):
        """Test that a pod id outside the household is refused."""
        error = self._stage(Upstream(tool_response(transfer_args(to_id="pod-elsewhere"))), pods)
        assert error.stage == AIProposeStage.INVALID_ARGS
        assert "unknown pod" in error.message

    def test_zero_amount(self, pods):
        """Test that a zero transfer is refused."""
        error = self._stage(Upstream(tool_response(transfer_args(amount=0))), pods)
        assert error.stage == AIProposeStage.INVALID_ARGS

    def test_same_pod_transfer(self, pods):
        """Test that a transfer within one pod is refused."""
        args = transfer_args(to_id="pod-moving-fund")
        error = self._stage(Upstream(tool_response(args)), pods)
        assert error.stage == AIProposeStage.INVALID_ARGS

    def test_observed_transfer_cannot_propose_transfer(self, pods):
        """Test the intent rule for reported transfers."""
        args = transfer_args(intent="observed_transfer")
        error = self._stage(Upstream(tool_response(args)), pods)
        assert error.stage == AIProposeStage.INVALID_ARGS
        assert "observed_transfer" in error.message

    def test_question_advice_cannot_propose(self, pods):
        """Test the intent rule for advice questions."""
        args = transfer_args(intent="question_advice")
        error = self._stage(Upstream(tool_response(args)), pods)
        assert error.stage == AIProposeStage.INVALID_ARGS

    def test_client_error_not_retried(self, pods):
        """Test that a 4xx fails at once with the upstream message."""
        upstream = Upstream(httpx.Response(401, json={"error": {"message": "Incorrect API key"}}))
        error = self._stage(upstream, pods)
        assert error.stage == AIProposeStage.API_ERROR
        assert error.message == "Incorrect API key"
        assert len(upstream.requests) == 1

    def test_server_error_retried_once(self, pods):
        """Test that a 5xx is retried and the retry can succeed."""
        upstream = Upstream(
            httpx.Response(503, json={"error": {"message": "overloaded"}}),
            tool_response(transfer_args()),
        )
        proposal = run_propose(upstream, pods)
        assert len(proposal.drafts) == 1
        assert len(upstream.requests) == 2

    def test_server_error_twice(self, pods):
        """Test that two 5xx responses end in api_error."""
        upstream = Upstream(httpx.Response(500, text=""))
        error = self._stage(upstream, pods)
        assert error.stage == AIProposeStage.API_ERROR
        assert error.warning == "AI_ERROR"
        assert len(upstream.requests) == 2

    def test_transport_error_retried(self, pods):
        """Test that a connection failure is retried."""
        upstream = Upstream(
            httpx.ConnectError("connection refused"),
            tool_response(transfer_args()),
        )
        proposal = run_propose(upstream, pods)
        assert len(proposal.drafts) == 1
        assert len(upstream.requests) == 2

    def test_timeout_not_retried(self, pods):
        """Test that a timeout fails at once."""
        upstream = Upstream(httpx.ReadTimeout("timed out"))
        error = self._stage(upstream, pods)
        assert error.stage == AIProposeStage.TIMEOUT
        assert error.warning == "AI_TIMEOUT"
        assert len(upstream.requests) == 1


class TestGenerateActions:
    """Tests for the never-raising wrapper."""

    def _generate(self, upstream, pods, message):
        async def _run():
            async with httpx.AsyncClient(transport=httpx.MockTransport(upstream)) as client:
                agent = ProposalAgent(api_key="sk-test", retry_backoff_ms=0, client=client)
                return await agent.generate_actions(message, pods)

        return asyncio.run(_run())

    def test_long_message_skipped(self, pods):
        """Test that an over-long message is never sent."""
        upstream = Upstream(tool_response(transfer_args()))
        result = self._generate(upstream, pods, "x" * 501)
        assert result.ok is False
        assert result.warnings == ["AI_SKIPPED_MESSAGE_TOO_LONG"]
        assert upstream.requests == []

    def test_failure_becomes_warning(self, pods):
        """Test that a failed call is reported, not raised."""
        upstream = Upstream(tool_response(transfer_args(to_id="pod-elsewhere")))
        result = self._generate(upstream, pods, "Move $220 from Moving Fund to Health")
        assert result.ok is False
        assert result.warnings == ["AI_SCHEMA_INVALID"]
        assert result.validation_error

    def test_success(self, pods):
        """Test the successful wrapper result."""
        upstream = Upstream(tool_response(transfer_args()))
        result = self._generate(upstream, pods, "Move $220 from Moving Fund to Health")
        assert result.ok is True
        assert result.ai_used is True
        assert len(result.drafts) == 1


class TestHelpers:
    """Tests for prompt building and argument extraction."""

    def test_prompt_lists_pods(self, pods):
        """Test that every pod id appears in the prompt."""
        prompt = build_prompt("hi", pods, ChatIntent.QUESTION_ADVICE)
        for pod in pods:
            assert f"id={pod.id}" in prompt
        assert "Intent hint: question_advice" in prompt

    def test_extract_ignores_other_tools(self):
        """Test that calls to a different function are skipped."""
        raw = {"output": [{"type": "function_call", "name": "other", "arguments": "{}"}]}
        assert extract_tool_args(raw, TOOL_NAME) is None

    def test_normalize_keeps_known_keys(self):
        """Test that unknown top-level keys are dropped."""
        normalized = normalize_tool_args(
            {"intent": "question_advice", "assistantText": "ok", "proposedActionDrafts": [], "extra": 1},
            {},
        )
        assert set(normalized) == {"intent", "assistantText", "proposedActionDrafts", "entities"}


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
