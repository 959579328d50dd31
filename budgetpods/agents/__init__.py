"""
AI Agents package.

Optional model step of the propose flow.
"""

from budgetpods.agents.proposal_agent import (
    AIProposal,
    AIProposeError,
    AIProposeStage,
    GenerateActionsResult,
    ProposalAgent,
)
from budgetpods.agents.tool_schema import TOOL_NAME, TOOL_PARAMETERS_SCHEMA, ProposeToolArgs

__all__ = [
    "AIProposal",
    "AIProposeError",
    "AIProposeStage",
    "GenerateActionsResult",
    "ProposalAgent",
    "TOOL_NAME",
    "TOOL_PARAMETERS_SCHEMA",
    "ProposeToolArgs",
]
