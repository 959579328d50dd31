"""
Funding Option Selection

When the user reports money already moved out of a pod, the donor's budget
plan needs repairing: some other pod's budget gives up the same amount.
This module picks which pods to suggest.

DESIGN DECISION: Suggestions are deterministic and ordered by a fixed
preference:
1. The "Move to ___" holding pod, if the household has one
2. Category: Savings, Discretionary, Pressing, Necessities, everything else
3. Name

A single pod that covers the whole amount always beats a split. Bill pods
(rent, utilities, phones...) are only offered when nothing else qualifies.

CRITICAL: The donor is never a candidate. A repair funded by the pod it
restores is invalid, so the donor neither takes a single slot nor blocks
the split search.
"""

from dataclasses import dataclass, field

from budgetpods.chat.names import normalize_name
from budgetpods.models.budget import PodCategory, PodSnapshot


MOVE_TO_POD_NAME = "Move to ___"

PROTECTED_POD_NAMES = frozenset(
    normalize_name(name)
    for name in (
        "Rent",
        "Utilities",
        "AES Electric",
        "Citizens Gas Water",
        "Phones",
        "Wifi",
        "Sequence Billing",
    )
)

DEFAULT_MAX_OPTIONS = 3

_CATEGORY_RANK = {
    PodCategory.SAVINGS: 1,
    PodCategory.DISCRETIONARY: 2,
    PodCategory.PRESSING: 3,
    PodCategory.NECESSITIES: 4,
}
_DEFAULT_RANK = 5


@dataclass(frozen=True)
class SplitOption:
    """Two pods that together cover the amount; `a` gives all it can."""
    a: PodSnapshot
    b: PodSnapshot
    a_amount: int
    b_amount: int


@dataclass
class FundingOptions:
    single_options: list[PodSnapshot] = field(default_factory=list)
    split_options: list[SplitOption] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.single_options and not self.split_options


@dataclass(frozen=True)
class _Candidate:
    pod: PodSnapshot
    available: int
    is_protected: bool
    is_move_to: bool


def available_to_reduce(pod: PodSnapshot) -> int:
    return max(0, pod.budgeted_amount_in_cents or 0)


def is_protected_pod_name(name: str) -> bool:
    return normalize_name(name) in PROTECTED_POD_NAMES


def category_rank(category) -> int:
    return _CATEGORY_RANK.get(category, _DEFAULT_RANK)


def _sort_key(c: _Candidate):
    return (
        not c.is_move_to,
        category_rank(c.pod.category),
        c.pod.name.casefold(),
        c.pod.name,
    )


def select_funding_options(
    pods: list[PodSnapshot],
    donor_pod_id: str,
    amount_in_cents: int,
    max_options: int = DEFAULT_MAX_OPTIONS,
) -> FundingOptions:
    """
    Suggest pods whose budgets can absorb a repair of `amount_in_cents`.

    Args:
        pods: All active pods of the household; the donor is skipped
        donor_pod_id: Pod the money was taken from
        amount_in_cents: Amount to restore to the donor
        max_options: Cap on single and split suggestions

    Returns:
        FundingOptions with either single options or split options
        (never both). Empty when nothing can cover the amount.
    """
    candidates = [
        _Candidate(
            pod=pod,
            available=available_to_reduce(pod),
            is_protected=is_protected_pod_name(pod.name),
            is_move_to=pod.name == MOVE_TO_POD_NAME,
        )
        for pod in pods
        if pod.id != donor_pod_id
    ]

    full = [c for c in candidates if c.available >= amount_in_cents]
    full_unprotected = [c for c in full if not c.is_protected]
    singles = sorted(full_unprotected or full, key=_sort_key)[:max_options]
    if singles:
        return FundingOptions(single_options=[c.pod for c in singles])

    partial = [c for c in candidates if c.available > 0]
    partial_unprotected = [c for c in partial if not c.is_protected]
    pool = partial_unprotected if len(partial_unprotected) >= 2 else partial
    ranked = sorted(pool, key=_sort_key)

    splits: list[SplitOption] = []
    for i, a in enumerate(ranked):
        for b in ranked[i + 1:]:
            a_amount = min(a.available, amount_in_cents)
            remaining = amount_in_cents - a_amount
            if 0 < remaining <= b.available:
                splits.append(SplitOption(a=a.pod, b=b.pod, a_amount=a_amount, b_amount=remaining))
            if len(splits) >= max_options:
                return FundingOptions(split_options=splits)

    return FundingOptions(split_options=splits)
