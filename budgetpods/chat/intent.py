"""
Surface-level intent classification.

Decides whether a message reports a completed transfer, asks for advice,
or requests a budget change. The orchestrator uses it to route between the
deterministic interpreter and the model.
"""

import re

from budgetpods.models.budget import ChatIntent


_NORMALIZE_RE = re.compile(r"[^a-z0-9?]+")

OBSERVED_PATTERNS = [
    re.compile(r"\bi\s+moved\b"),
    re.compile(r"\bi\s+transferred\b"),
    re.compile(r"\bi\s+already\s+moved\b"),
    re.compile(r"\bi\s+just\s+moved\b"),
    re.compile(r"\bi\s+sent\b"),
    re.compile(r"\bi\s+paid\b"),
    re.compile(r"\bi\s+took\s+from\b"),
]

QUESTION_PHRASES = ["got any ideas", "how should", "what should", "can we"]


def classify_intent(message_text: str) -> ChatIntent:
    normalized = _NORMALIZE_RE.sub(" ", (message_text or "").lower())
    normalized = " ".join(normalized.split())

    if any(p.search(normalized) for p in OBSERVED_PATTERNS):
        return ChatIntent.OBSERVED_TRANSFER

    if any(phrase in normalized for phrase in QUESTION_PHRASES) or normalized.endswith("?"):
        return ChatIntent.QUESTION_ADVICE

    return ChatIntent.REQUEST_BUDGET_CHANGE
