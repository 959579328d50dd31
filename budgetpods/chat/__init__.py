"""
Chat interpretation package.

Deterministic pieces of the propose flow: pod-name matching, intent
classification, funding option selection and the message interpreter.
"""

from budgetpods.chat.funding import (
    MOVE_TO_POD_NAME,
    PROTECTED_POD_NAMES,
    FundingOptions,
    SplitOption,
    select_funding_options,
)
from budgetpods.chat.intent import classify_intent
from budgetpods.chat.interpreter import (
    HELP_TEXT,
    HELP_TEXT_PREFIX,
    interpret_message,
    is_observed_phrasing,
    parse_usd_to_cents,
)
from budgetpods.chat.names import normalize_name, rank_candidates, resolve_unique_pod

__all__ = [
    "MOVE_TO_POD_NAME",
    "PROTECTED_POD_NAMES",
    "FundingOptions",
    "SplitOption",
    "select_funding_options",
    "classify_intent",
    "HELP_TEXT",
    "HELP_TEXT_PREFIX",
    "interpret_message",
    "is_observed_phrasing",
    "parse_usd_to_cents",
    "normalize_name",
    "rank_candidates",
    "resolve_unique_pod",
]
