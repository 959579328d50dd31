"""Ledger package: budget arithmetic and rejection reasons for applying actions."""

from budgetpods.ledger.applier import (
    NegativeBudgetError,
    apply_payloads_to_budget_map,
    compute_changes,
    referenced_pod_ids,
)
from budgetpods.ledger.errors import (
    ActionConflictError,
    ActionsNotFoundError,
    ApplyRejectedError,
    ForeignPodError,
    PodMissingError,
)

__all__ = [
    "NegativeBudgetError",
    "apply_payloads_to_budget_map",
    "compute_changes",
    "referenced_pod_ids",
    "ActionConflictError",
    "ActionsNotFoundError",
    "ApplyRejectedError",
    "ForeignPodError",
    "PodMissingError",
]
