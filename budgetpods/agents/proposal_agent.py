"""
AI Proposal Agent

DESIGN DECISION: The model is an optional second opinion on top of the
deterministic interpreter. It is asked to call exactly one function tool,
and its arguments go through the same checks a client request would.

CRITICAL BOUNDARIES:

- CAN: Phrase the assistant reply and propose up to three drafts
- CAN: Suggest pod-name candidates for the client's picker
- CANNOT: Reference a pod id that is not in the household's pod list
- CANNOT: Propose a budget_transfer for a transfer the user already made
- CANNOT: Propose any action for an advice question
- NEVER: Persist anything; the orchestrator decides what is stored

Any failure raises AIProposeError with a stage naming where it failed.
`generate_actions` wraps that into a result that never raises.

The LLM is a TRANSLATOR, not an ORACLE. Pod names in the drafts are
always rewritten from the authoritative pod list.
"""

import asyncio
import json
from enum import Enum
from typing import Any, Optional

import httpx
import structlog
from pydantic import BaseModel, Field, ValidationError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from budgetpods.agents.tool_schema import TOOL_NAME, ProposeToolArgs, tool_definition
from budgetpods.config import Settings, get_settings
from budgetpods.models.budget import (
    BudgetAdjustDraft,
    BudgetAdjustPayload,
    BudgetRepairRestoreDonorDraft,
    BudgetRepairRestoreDonorPayload,
    BudgetTransferDraft,
    BudgetTransferPayload,
    ChatIntent,
    ParsedEntitiesHints,
    PodSnapshot,
    ProposedActionDraft,
)


logger = structlog.get_logger(__name__)

MAX_AI_MESSAGE_CHARS = 500
PREVIEW_MAX_CHARS = 2000
CANDIDATE_LIMIT = 8

SYSTEM_PROMPT = "\n".join([
    "You are a budgeting assistant.",
    "Intent rules:",
    "- observed_transfer: DO NOT propose budget_transfer. Propose repair options instead.",
    "- request_budget_change: budget_transfer is allowed.",
    "- question_advice: no actions; return assistantText only.",
])


class AIProposeStage(str, Enum):
    """Where a model call failed."""
    MISSING_KEY = "missing_key"
    TIMEOUT = "timeout"
    API_ERROR = "api_error"
    TOOL_MISSING = "tool_missing"
    TOOL_PARSE = "tool_parse"
    INVALID_ARGS = "invalid_args"


_SCHEMA_STAGES = {
    AIProposeStage.TOOL_MISSING,
    AIProposeStage.TOOL_PARSE,
    AIProposeStage.INVALID_ARGS,
}


class AIProposeError(Exception):
    """The model step failed; the caller falls back to deterministic drafts."""

    def __init__(self, stage: AIProposeStage, message: str):
        super().__init__(message)
        self.stage = AIProposeStage(stage)
        self.message = message

    @property
    def is_schema_failure(self) -> bool:
        return self.stage in _SCHEMA_STAGES

    @property
    def warning(self) -> str:
        """Client-facing warning code for this failure."""
        if self.stage == AIProposeStage.MISSING_KEY:
            return "AI_DISABLED_NO_KEY"
        if self.stage == AIProposeStage.TIMEOUT:
            return "AI_TIMEOUT"
        if self.is_schema_failure:
            return "AI_SCHEMA_INVALID"
        return "AI_ERROR"


class _RetryableUpstreamError(Exception):
    """5xx or transport failure; worth one more attempt."""


class AIProposal(BaseModel):
    """A validated, pod-resolved model answer."""

    intent: ChatIntent
    assistant_text: str
    drafts: list[ProposedActionDraft] = Field(default_factory=list)
    entities: ParsedEntitiesHints


class GenerateActionsResult(BaseModel):
    ok: bool
    ai_used: bool = False
    assistant_text: Optional[str] = None
    drafts: list[ProposedActionDraft] = Field(default_factory=list)
    entities: Optional[ParsedEntitiesHints] = None
    intent: Optional[ChatIntent] = None
    warnings: list[str] = Field(default_factory=list)
    error: Optional[str] = None
    validation_error: Optional[str] = None


# =============================================================================
# Prompt and response helpers
# =============================================================================

def _preview(value: Any, max_length: int = PREVIEW_MAX_CHARS) -> str:
    try:
        text = json.dumps(value, default=str)
    except (TypeError, ValueError):
        return "[unstringifiable]"
    return f"{text[:max_length]}...<truncated>" if len(text) > max_length else text


def build_prompt(message_text: str, pods: list[PodSnapshot], intent: ChatIntent) -> str:
    """User prompt: rules, the message and one line per pod."""
    pod_lines = []
    for p in pods:
        balance_updated_at = p.balance_updated_at.isoformat() if p.balance_updated_at else None
        category = p.category.value if p.category else None
        pod_lines.append(
            f"- id={p.id} name={json.dumps(p.name)} category={json.dumps(category)}"
            f" budgeted_amount_in_cents={p.budgeted_amount_in_cents}"
            f" balance_amount_in_cents={json.dumps(p.balance_amount_in_cents)}"
            f" balance_updated_at={json.dumps(balance_updated_at)}"
            f" balance_error={json.dumps(p.balance_error)}"
        )

    return "\n".join([
        "You are an assistant that proposes budget actions.",
        f"Always call the {TOOL_NAME} tool.",
        "Only use pod ids from the provided pod list.",
        "Each proposed action draft must include type and payload.kind.",
        "Payload.kind must match the draft type.",
        "Required payload fields:",
        "- budget_transfer: amount_in_cents, from_pod_id, from_pod_name, to_pod_id, to_pod_name",
        "- budget_adjust: delta_in_cents, pod_id, pod_name",
        "- budget_repair_restore_donor: amount_in_cents, donor_pod_id, donor_pod_name, "
        "funding_pod_id, funding_pod_name",
        "Keep proposedActionDrafts length <= 3.",
        "Do not include any keys outside the tool schema.",
        "",
        f"Intent hint: {ChatIntent(intent).value}",
        f"User message: {json.dumps(message_text, ensure_ascii=False)}",
        "",
        "Pods:",
        *pod_lines,
    ])


def _args_from_call(call: Any, tool_name: str) -> Any:
    if not isinstance(call, dict):
        return None
    function = call.get("function") if isinstance(call.get("function"), dict) else {}
    name = call.get("name") or function.get("name")
    if name != tool_name:
        return None
    for value in (call.get("arguments"), call.get("arguments_json"), function.get("arguments")):
        if value is not None:
            return value
    return None


def extract_tool_args(raw: Any, tool_name: str = TOOL_NAME) -> Any:
    """
    Find the tool call's arguments in a model response.

    Looks at Responses API output items, their content parts and tool_calls,
    then at a chat-completions style choices[0].message.tool_calls.

    Returns:
        The raw arguments (usually a JSON string), or None
    """
    if not isinstance(raw, dict):
        return None

    output = raw.get("output")
    if isinstance(output, list):
        for item in output:
            found = _args_from_call(item, tool_name)
            if found is not None:
                return found
            if not isinstance(item, dict):
                continue
            for nested_key in ("content", "tool_calls"):
                nested = item.get(nested_key)
                if isinstance(nested, list):
                    for part in nested:
                        found = _args_from_call(part, tool_name)
                        if found is not None:
                            return found

    choices = raw.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        message = choices[0].get("message") or {}
        tool_calls = message.get("tool_calls") if isinstance(message, dict) else None
        if isinstance(tool_calls, list):
            for call in tool_calls:
                found = _args_from_call(call, tool_name)
                if found is not None:
                    return found

    return None


def parse_tool_args(raw_args: Any) -> Any:
    """Decode string arguments as JSON; objects pass through."""
    if isinstance(raw_args, str):
        try:
            return json.loads(raw_args)
        except json.JSONDecodeError as e:
            raise AIProposeError(AIProposeStage.TOOL_PARSE, "AI tool arguments were not JSON") from e
    if isinstance(raw_args, (dict, list)):
        return raw_args
    raise AIProposeError(AIProposeStage.TOOL_PARSE, "AI tool arguments were not JSON")


_NAME_FIELDS = {
    "budget_transfer": [("from_pod_id", "from_pod_name"), ("to_pod_id", "to_pod_name")],
    "budget_adjust": [("pod_id", "pod_name")],
    "budget_repair_restore_donor": [
        ("donor_pod_id", "donor_pod_name"),
        ("funding_pod_id", "funding_pod_name"),
    ],
}


def _first_present(*values):
    for value in values:
        if value is not None:
            return value
    return None


def normalize_tool_args(args: Any, pods_by_id: dict[str, PodSnapshot]) -> Any:
    """
    Repair common near-misses before validation.

    - the discriminator may arrive as `type`, `kind` or only `payload.kind`
    - missing pod names are filled in from the pod list

    Only the four known top-level keys are kept.
    """
    if not isinstance(args, dict):
        return args

    drafts = args.get("proposedActionDrafts")
    if isinstance(drafts, list):
        normalized = []
        for draft in drafts:
            if not isinstance(draft, dict):
                normalized.append(draft)
                continue
            payload = dict(draft["payload"]) if isinstance(draft.get("payload"), dict) else {}
            kind = _first_present(draft.get("type"), draft.get("kind"), payload.get("kind"))
            if isinstance(kind, str):
                payload["kind"] = kind
                for id_field, name_field in _NAME_FIELDS.get(kind, []):
                    pod_id = payload.get(id_field)
                    pod = pods_by_id.get(pod_id) if isinstance(pod_id, str) else None
                    if not payload.get(name_field) and pod is not None:
                        payload[name_field] = pod.name

            normalized.append({"type": kind, "payload": payload})
        drafts = normalized

    return {
        "intent": args.get("intent"),
        "assistantText": args.get("assistantText"),
        "proposedActionDrafts": drafts,
        "entities": args.get("entities"),
    }


def resolve_drafts(
    drafts: list[ProposedActionDraft],
    pods_by_id: dict[str, PodSnapshot],
) -> list[ProposedActionDraft]:
    """
    Re-check drafts against the household's pods and rewrite their names.

    Raises:
        AIProposeError(invalid_args): Unknown pod id
    """
    def pod(pod_id: str) -> PodSnapshot:
        found = pods_by_id.get(pod_id)
        if found is None:
            raise AIProposeError(AIProposeStage.INVALID_ARGS, "AI draft referenced unknown pod id")
        return found

    resolved: list[ProposedActionDraft] = []
    for draft in drafts:
        p = draft.payload
        if isinstance(p, BudgetTransferPayload):
            source, target = pod(p.from_pod_id), pod(p.to_pod_id)
            resolved.append(BudgetTransferDraft(payload=BudgetTransferPayload(
                amount_in_cents=p.amount_in_cents,
                from_pod_id=source.id,
                from_pod_name=source.name,
                to_pod_id=target.id,
                to_pod_name=target.name,
            )))
        elif isinstance(p, BudgetAdjustPayload):
            target = pod(p.pod_id)
            resolved.append(BudgetAdjustDraft(payload=BudgetAdjustPayload(
                delta_in_cents=p.delta_in_cents,
                pod_id=target.id,
                pod_name=target.name,
            )))
        elif isinstance(p, BudgetRepairRestoreDonorPayload):
            donor, funding = pod(p.donor_pod_id), pod(p.funding_pod_id)
            resolved.append(BudgetRepairRestoreDonorDraft(payload=BudgetRepairRestoreDonorPayload(
                amount_in_cents=p.amount_in_cents,
                donor_pod_id=donor.id,
                donor_pod_name=donor.name,
                funding_pod_id=funding.id,
                funding_pod_name=funding.name,
                option_label=p.option_label,
            )))
        else:
            raise AIProposeError(AIProposeStage.INVALID_ARGS, "Unsupported action type")
    return resolved


def check_intent_rules(args: ProposeToolArgs) -> None:
    """
    Raises:
        AIProposeError(invalid_args): Drafts not allowed for the intent
    """
    types = [d.type for d in args.proposed_action_drafts]
    if args.intent == ChatIntent.OBSERVED_TRANSFER and "budget_transfer" in types:
        raise AIProposeError(
            AIProposeStage.INVALID_ARGS,
            "observed_transfer intent cannot include budget_transfer actions",
        )
    if args.intent == ChatIntent.QUESTION_ADVICE and types:
        raise AIProposeError(
            AIProposeStage.INVALID_ARGS,
            "question_advice intent cannot include proposed actions",
        )


# =============================================================================
# Agent
# =============================================================================

class ProposalAgent:
    """
    Calls an OpenAI-compatible Responses endpoint for budget proposals.

    RESPONSIBILITIES:
    - Build the prompt and force the propose_budget_actions tool
    - Retry once on 5xx or transport failure
    - Turn the tool call into validated, pod-resolved drafts
    """

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = "https://api.openai.com/v1",
        model: str = "gpt-5.2",
        timeout_ms: int = 10_000,
        retry_backoff_ms: int = 200,
        debug: bool = False,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._api_key = api_key
        self._url = f"{base_url.rstrip('/')}/responses"
        self._model = model
        self._timeout = timeout_ms / 1000
        self._retry_backoff = retry_backoff_ms / 1000
        self._debug = debug
        self._client = client

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> "ProposalAgent":
        settings = settings or get_settings()
        ai = settings.ai
        openai = settings.openai
        return cls(
            api_key=openai.api_key,
            base_url=openai.base_url,
            model=ai.model,
            timeout_ms=ai.timeout_ms,
            retry_backoff_ms=ai.retry_backoff_ms,
            debug=ai.debug,
            client=client,
        )

    def _debug_log(self, event: str, **details) -> None:
        if self._debug:
            logger.info(event, **details)

    async def _post_once(self, client: httpx.AsyncClient, body: dict) -> Any:
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }
        try:
            response = await asyncio.wait_for(
                client.post(self._url, json=body, headers=headers, timeout=self._timeout),
                timeout=self._timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise AIProposeError(AIProposeStage.TIMEOUT, "OpenAI request timed out") from e
        except httpx.TransportError as e:
            raise _RetryableUpstreamError("OpenAI request failed") from e

        try:
            parsed = response.json() if response.content else None
        except ValueError as e:
            raise _RetryableUpstreamError("OpenAI request failed") from e

        if response.is_success:
            return parsed

        error = parsed.get("error") if isinstance(parsed, dict) else None
        message = (
            (error.get("message") if isinstance(error, dict) else None)
            or (parsed.get("message") if isinstance(parsed, dict) else None)
            or f"OpenAI request failed (status {response.status_code})"
        )
        if response.is_server_error:
            raise _RetryableUpstreamError(message)
        raise AIProposeError(AIProposeStage.API_ERROR, message)

    async def _call_responses_api(self, body: dict) -> Any:
        async def attempt_all(client: httpx.AsyncClient) -> Any:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(2),
                wait=wait_fixed(self._retry_backoff),
                retry=retry_if_exception_type(_RetryableUpstreamError),
                reraise=True,
            ):
                with attempt:
                    return await self._post_once(client, body)

        try:
            if self._client is not None:
                return await attempt_all(self._client)
            async with httpx.AsyncClient() as client:
                return await attempt_all(client)
        except _RetryableUpstreamError as e:
            raise AIProposeError(AIProposeStage.API_ERROR, str(e)) from e

    async def propose(
        self,
        message_text: str,
        pods: list[PodSnapshot],
        intent: ChatIntent = ChatIntent.REQUEST_BUDGET_CHANGE,
        trace_id: str = "unknown",
    ) -> AIProposal:
        """
        Ask the model for a proposal.

        Args:
            message_text: User's message
            pods: Active pods of the household
            intent: Intent hint from the classifier
            trace_id: Request trace id for logs

        Returns:
            AIProposal with drafts resolved against `pods`

        Raises:
            AIProposeError: On any failure, with its stage
        """
        if not self._api_key:
            raise AIProposeError(AIProposeStage.MISSING_KEY, "Missing OPENAI_API_KEY")

        message_text = (message_text or "").strip()
        body = {
            "model": self._model,
            "input": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_prompt(message_text, pods, intent)},
            ],
            "tools": [tool_definition()],
            "tool_choice": {"type": "function", "name": TOOL_NAME},
        }

        logger.info(
            "ai_propose_request",
            trace_id=trace_id,
            model=self._model,
            timeout_ms=int(self._timeout * 1000),
            message_chars=len(message_text),
            pod_count=len(pods),
        )

        raw = await self._call_responses_api(body)

        raw_args = extract_tool_args(raw, TOOL_NAME)
        self._debug_log(
            "ai_propose_tool_call",
            trace_id=trace_id,
            tool_call_found=raw_args is not None,
            raw_args_type=type(raw_args).__name__,
            raw_args_preview=_preview(raw_args),
        )
        if raw_args is None or raw_args == "":
            raise AIProposeError(AIProposeStage.TOOL_MISSING, "AI response missing tool call")

        parsed_args = parse_tool_args(raw_args)
        pods_by_id = {p.id: p for p in pods}
        normalized = normalize_tool_args(parsed_args, pods_by_id)
        self._debug_log("ai_propose_validation_input", trace_id=trace_id, args_preview=_preview(normalized))

        try:
            validated = ProposeToolArgs.model_validate(normalized)
        except ValidationError as e:
            logger.warning(
                "ai_propose_invalid_args",
                trace_id=trace_id,
                error_count=e.error_count(),
                args_preview=_preview(normalized),
            )
            raise AIProposeError(AIProposeStage.INVALID_ARGS, e.json(include_url=False)) from e

        check_intent_rules(validated)
        drafts = resolve_drafts(validated.proposed_action_drafts, pods_by_id)

        base_candidates = [p.name for p in pods][:CANDIDATE_LIMIT]
        model_entities = validated.entities
        model_candidates = model_entities.candidates if model_entities else []
        merged = list(dict.fromkeys([*base_candidates, *model_candidates]))[:CANDIDATE_LIMIT]
        overrides = (
            model_entities.model_dump(exclude_unset=True, exclude={"candidates"})
            if model_entities else {}
        )
        entities = ParsedEntitiesHints(**{"candidates": merged, **overrides})

        logger.info(
            "ai_propose_validated",
            trace_id=trace_id,
            intent=validated.intent.value,
            assistant_text_length=len(validated.assistant_text),
            draft_count=len(drafts),
            draft_types=[d.type for d in drafts],
        )

        return AIProposal(
            intent=validated.intent,
            assistant_text=validated.assistant_text,
            drafts=drafts,
            entities=entities,
        )

    async def generate_actions(
        self,
        message_text: str,
        pods: list[PodSnapshot],
        intent: Optional[ChatIntent] = None,
        trace_id: str = "unknown",
    ) -> GenerateActionsResult:
        """
        Same as `propose`, but never raises.

        Over-long messages are not sent at all.
        """
        message_text = (message_text or "").strip()
        if len(message_text) > MAX_AI_MESSAGE_CHARS:
            return GenerateActionsResult(
                ok=False,
                error="Message too long for AI",
                warnings=["AI_SKIPPED_MESSAGE_TOO_LONG"],
            )

        try:
            proposal = await self.propose(
                message_text,
                pods,
                intent=intent or ChatIntent.REQUEST_BUDGET_CHANGE,
                trace_id=trace_id,
            )
        except AIProposeError as e:
            return GenerateActionsResult(
                ok=False,
                error=e.message,
                warnings=[e.warning],
                validation_error=e.message if e.stage == AIProposeStage.INVALID_ARGS else None,
            )

        return GenerateActionsResult(
            ok=True,
            ai_used=True,
            assistant_text=proposal.assistant_text,
            drafts=proposal.drafts,
            entities=proposal.entities,
            intent=proposal.intent,
        )
