"""
Deterministic Message Interpreter

Turns one chat message into budget action drafts using a handful of fixed
phrasings. It never calls out and never guesses: when a pod reference or
amount is ambiguous it asks instead of drafting.

Phrasings, in priority order:
1. "<verb> $X from <A> to <B>"
   - reported as already done ("I moved...", "moved...") -> repair drafts
   - requested ("move...", "can you transfer...") -> one budget_transfer
2. "<Pod> is short $X" -> one budget_adjust
3. "rent due soon" -> clarifying question
4. anything else -> help text

DESIGN DECISION: This always runs, even when the model is enabled. Its
result is the fallback whenever the model step fails.
"""

import math
import re
from typing import Optional

from budgetpods.chat.funding import MOVE_TO_POD_NAME, select_funding_options
from budgetpods.chat.names import rank_candidates, resolve_unique_pod, unique_names
from budgetpods.models.budget import (
    BudgetAdjustDraft,
    BudgetAdjustPayload,
    BudgetRepairRestoreDonorDraft,
    BudgetRepairRestoreDonorPayload,
    BudgetTransferDraft,
    BudgetTransferPayload,
    InterpretResult,
    ObservedTransferEvent,
    ParsedEntitiesHints,
    PodSnapshot,
)


HELP_TEXT = (
    "I can help with:\n"
    "- “moved $80 from Groceries to Education”\n"
    "- “Groceries is short $40”\n"
    "- “rent due soon” (I’ll ask a quick follow-up)\n"
    "\n"
    "Try one of those formats."
)
HELP_TEXT_PREFIX = "I can help with:"

OPTION_LABELS = ["A", "B", "C"]

_AMOUNT = r"\$?\s*([\d,]+(?:\.\d{1,2})?)"

MOVE_RE = re.compile(
    r"^\s*(?:i\s+(?:already\s+)?(?:moved|transferred)"
    r"|i\s+had\s+to\s+(?:move|transfer)"
    r"|i\s+need\s+to\s+(?:move|transfer)"
    r"|can\s+you\s+(?:move|transfer)"
    r"|(?:move|transfer|moved|transferred))"
    r"\s+" + _AMOUNT + r"\s+from\s+(.+?)\s+to\s+(.+?)\s*$",
    re.IGNORECASE,
)
SHORTFALL_RE = re.compile(r"^\s*(.+?)\s+is\s+short\s+" + _AMOUNT + r"\s*$", re.IGNORECASE)
RENT_DUE_RE = re.compile(r"\brent\s+due\s+soon\b", re.IGNORECASE)

OBSERVED_RES = [
    re.compile(r"\bi\s+(?:already\s+)?moved\b"),
    re.compile(r"\bi\s+transferred\b"),
    re.compile(r"\bi\s+had\s+to\s+move\b"),
    re.compile(r"\bi\s+had\s+to\s+transfer\b"),
    re.compile(r"^\s*(?:moved|transferred)\b"),
]


def strip_outer_quotes(s: str) -> str:
    s = s.strip()
    s = re.sub(r"^[“\"']+", "", s)
    s = re.sub(r"[”\"']+$", "", s)
    return s.strip()


def is_observed_phrasing(message_text: str) -> bool:
    """True when the message reports a transfer the user already made."""
    text = strip_outer_quotes(message_text).lower()
    return any(p.search(text) for p in OBSERVED_RES)


def parse_usd_to_cents(raw: str) -> Optional[int]:
    """
    Parse "1,234.5" style dollar text to cents.

    Returns None for empty, non-numeric, non-finite or non-positive input.
    Rounds half away from zero, like the clients do.
    """
    cleaned = raw.replace(",", "").strip()
    if not cleaned:
        return None
    try:
        n = float(cleaned)
    except ValueError:
        return None
    if not math.isfinite(n) or n <= 0:
        return None
    return int(math.floor(n * 100 + 0.5))


def format_usd(cents: int) -> str:
    return f"${cents / 100:.2f}"


def interpret_message(message_text: str, pods: list[PodSnapshot]) -> InterpretResult:
    """
    Interpret one message against the household's active pods.

    Args:
        message_text: Raw chat message
        pods: Active pods, in household order

    Returns:
        InterpretResult. Drafts are empty whenever the message needs a
        clarifying answer.
    """
    message_text = (message_text or "").strip()
    stripped = strip_outer_quotes(message_text)
    pod_names = [p.name for p in pods]

    move = MOVE_RE.match(stripped)
    if move:
        return _interpret_move(message_text, stripped, move, pods, pod_names)

    shortfall = SHORTFALL_RE.match(message_text)
    if shortfall:
        return _interpret_shortfall(message_text, shortfall, pods, pod_names)

    if RENT_DUE_RE.search(message_text):
        return InterpretResult(
            assistant_text="Got it. Which pod is “rent” for you, and how much is due?",
            entities=ParsedEntitiesHints(
                to_candidate="rent",
                candidates=rank_candidates("rent", pod_names),
            ),
        )

    return InterpretResult(
        assistant_text=HELP_TEXT,
        entities=ParsedEntitiesHints(candidates=pod_names[:8]),
    )


def _interpret_move(
    message_text: str,
    stripped: str,
    match: re.Match,
    pods: list[PodSnapshot],
    pod_names: list[str],
) -> InterpretResult:
    amount_raw, from_raw, to_raw = match.group(1), match.group(2).strip(), match.group(3).strip()
    amount_in_cents = parse_usd_to_cents(amount_raw)

    candidates = unique_names(
        rank_candidates(from_raw, pod_names),
        rank_candidates(to_raw, pod_names),
    )
    entities = ParsedEntitiesHints(
        from_candidate=from_raw or None,
        to_candidate=to_raw or None,
        candidates=candidates,
    )

    if amount_in_cents is None:
        return InterpretResult(
            assistant_text=(
                f"I couldn’t parse the amount in “{message_text}”. "
                "Try something like: moved $80 from Groceries to Education."
            ),
            entities=entities,
        )

    source = resolve_unique_pod(from_raw, pods)
    target = resolve_unique_pod(to_raw, pods)

    if source is None or target is None:
        return InterpretResult(
            assistant_text=(
                f"Which pods did you mean? I couldn’t uniquely match “{from_raw}” and/or “{to_raw}”."
            ),
            entities=entities,
        )

    if source.id == target.id:
        return InterpretResult(
            assistant_text=(
                f"Those look like the same pod (“{source.name}”). Which pod should receive the money?"
            ),
            entities=entities,
        )

    if is_observed_phrasing(stripped):
        observed = ObservedTransferEvent(
            amount_in_cents=amount_in_cents,
            from_pod_id=source.id,
            from_pod_name=source.name,
            to_pod_id=target.id,
            to_pod_name=target.name,
            raw_message_text=message_text,
        )
        return _propose_repair(observed, source, pods, pod_names, entities)

    return InterpretResult(
        assistant_text=(
            f"Proposed: move {format_usd(amount_in_cents)} of budget "
            f"from {source.name} to {target.name}."
        ),
        drafts=[
            BudgetTransferDraft(payload=BudgetTransferPayload(
                amount_in_cents=amount_in_cents,
                from_pod_id=source.id,
                from_pod_name=source.name,
                to_pod_id=target.id,
                to_pod_name=target.name,
            ))
        ],
        entities=entities,
    )


def _propose_repair(
    observed: ObservedTransferEvent,
    donor: PodSnapshot,
    pods: list[PodSnapshot],
    pod_names: list[str],
    entities: ParsedEntitiesHints,
) -> InterpretResult:
    options = select_funding_options(pods, donor.id, observed.amount_in_cents)

    if options.single_options:
        funding_candidate = options.single_options[0].name
    elif options.split_options:
        funding_candidate = options.split_options[0].a.name
    else:
        funding_candidate = MOVE_TO_POD_NAME

    repair_entities = entities.model_copy(update={
        "funding_candidate": funding_candidate,
        "candidates": unique_names(
            entities.candidates,
            rank_candidates(funding_candidate, pod_names),
        ),
    })

    def repair(funding: PodSnapshot, amount: int, label: Optional[str]):
        return BudgetRepairRestoreDonorDraft(payload=BudgetRepairRestoreDonorPayload(
            amount_in_cents=amount,
            donor_pod_id=donor.id,
            donor_pod_name=donor.name,
            funding_pod_id=funding.id,
            funding_pod_name=funding.name,
            option_label=label,
        ))

    if options.is_empty:
        text = "Got it, logged that transfer. Which pod should I pull from to repair the budget plan?"
        drafts = []
    elif options.split_options:
        drafts = []
        for label, split in zip(OPTION_LABELS, options.split_options):
            drafts.append(repair(split.a, split.a_amount, label))
            drafts.append(repair(split.b, split.b_amount, label))
        text = (
            "Got it, logged that transfer. I can split the repair across a couple of funding pods."
        )
        if len(drafts) > 2:
            text += " Here are a few options."
    else:
        singles = options.single_options
        labelled = len(singles) > 1
        drafts = [
            repair(pod, observed.amount_in_cents, label if labelled else None)
            for label, pod in zip(OPTION_LABELS, singles)
        ]
        text = (
            "Got it, logged that transfer. Here are a few ways to repair your budget plan."
            if labelled
            else "Got it, logged that transfer. Here’s the cleanest way to repair your budget plan."
        )

    return InterpretResult(
        assistant_text=text,
        drafts=drafts,
        entities=repair_entities,
        observed_transfer_event=observed,
    )


def _interpret_shortfall(
    message_text: str,
    match: re.Match,
    pods: list[PodSnapshot],
    pod_names: list[str],
) -> InterpretResult:
    pod_raw = match.group(1).strip()
    amount_in_cents = parse_usd_to_cents(match.group(2))
    entities = ParsedEntitiesHints(
        to_candidate=pod_raw or None,
        candidates=rank_candidates(pod_raw, pod_names),
    )

    if amount_in_cents is None:
        return InterpretResult(
            assistant_text=(
                f"I couldn’t parse the amount in “{message_text}”. "
                "Try something like: Groceries is short $40."
            ),
            entities=entities,
        )

    pod = resolve_unique_pod(pod_raw, pods)
    if pod is None:
        return InterpretResult(
            assistant_text=f"Which pod did you mean by “{pod_raw}”?",
            entities=entities,
        )

    return InterpretResult(
        assistant_text=(
            f"Proposed: increase {pod.name} budget by {format_usd(amount_in_cents)}."
        ),
        drafts=[
            BudgetAdjustDraft(payload=BudgetAdjustPayload(
                delta_in_cents=amount_in_cents,
                pod_id=pod.id,
                pod_name=pod.name,
            ))
        ],
        entities=entities,
    )
