"""
Tool contract for the proposal model.

Two views of the same contract:
- TOOL_PARAMETERS_SCHEMA: JSON Schema sent to the model as the function
  tool's parameters
- ProposeToolArgs: the pydantic model the returned arguments must pass

CRITICAL: The model's output is untrusted. Passing ProposeToolArgs only
proves the shape; pod ids are checked against the household afterwards.
"""

from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from budgetpods.models.budget import ChatIntent, ParsedEntitiesHints, ProposedActionDraft


TOOL_NAME = "propose_budget_actions"
TOOL_DESCRIPTION = "Propose budget actions based on a user message."
MAX_DRAFTS = 3

INTENT_VALUES = [i.value for i in ChatIntent]


class ProposeToolArgs(BaseModel):
    """Validated arguments of a propose_budget_actions call."""

    model_config = ConfigDict(alias_generator=to_camel, extra="forbid")

    intent: ChatIntent
    assistant_text: Annotated[str, Field(min_length=1)]
    proposed_action_drafts: Annotated[list[ProposedActionDraft], Field(max_length=MAX_DRAFTS)]
    entities: Optional[ParsedEntitiesHints] = None


def _string(**extra) -> dict:
    return {"type": "string", "minLength": 1, **extra}


def _nullable_string() -> dict:
    return {"anyOf": [_string(), {"type": "null"}]}


def _draft_schema(kind: str, fields: dict, required: list[str]) -> dict:
    return {
        "type": "object",
        "additionalProperties": False,
        "properties": {
            "type": {"const": kind, "description": "Draft discriminator; must match payload.kind."},
            "payload": {
                "type": "object",
                "additionalProperties": False,
                "properties": {
                    "kind": {"const": kind, "description": "Payload discriminator; must match draft type."},
                    **fields,
                },
                "required": ["kind", *required],
            },
        },
        "required": ["type", "payload"],
    }


TOOL_PARAMETERS_SCHEMA = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "intent": {"type": "string", "enum": INTENT_VALUES},
        "assistantText": _string(),
        "proposedActionDrafts": {
            "type": "array",
            "maxItems": MAX_DRAFTS,
            "items": {
                "oneOf": [
                    _draft_schema(
                        "budget_transfer",
                        {
                            "amount_in_cents": {"type": "integer", "minimum": 1},
                            "from_pod_id": _string(),
                            "from_pod_name": _string(),
                            "to_pod_id": _string(),
                            "to_pod_name": _string(),
                        },
                        ["amount_in_cents", "from_pod_id", "from_pod_name", "to_pod_id", "to_pod_name"],
                    ),
                    _draft_schema(
                        "budget_adjust",
                        {
                            "delta_in_cents": {"type": "integer"},
                            "pod_id": _string(),
                            "pod_name": _string(),
                        },
                        ["delta_in_cents", "pod_id", "pod_name"],
                    ),
                    _draft_schema(
                        "budget_repair_restore_donor",
                        {
                            "amount_in_cents": {"type": "integer", "minimum": 1},
                            "donor_pod_id": _string(),
                            "donor_pod_name": _string(),
                            "funding_pod_id": _string(),
                            "funding_pod_name": _string(),
                            "option_label": _string(),
                        },
                        [
                            "amount_in_cents",
                            "donor_pod_id",
                            "donor_pod_name",
                            "funding_pod_id",
                            "funding_pod_name",
                        ],
                    ),
                ]
            },
        },
        "entities": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "fromCandidate": _nullable_string(),
                "toCandidate": _nullable_string(),
                "fundingCandidate": _nullable_string(),
                "candidates": {"type": "array", "items": _string()},
            },
            "required": ["candidates"],
        },
    },
    "required": ["intent", "assistantText", "proposedActionDrafts"],
}


def tool_definition() -> dict:
    """The `tools` entry of a Responses API request."""
    return {
        "type": "function",
        "name": TOOL_NAME,
        "description": TOOL_DESCRIPTION,
        "parameters": TOOL_PARAMETERS_SCHEMA,
    }
