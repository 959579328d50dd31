"""
Ledger Applier

Pure budget arithmetic for an apply batch. The ApplyFlow loads actions and
budgets, calls into here, and only writes when this module accepted the
whole batch.

CRITICAL: A batch is all-or-nothing. The first payload that would leave a
pod's budget below zero rejects the batch, and the caller writes nothing.

Transfers and repairs move budget between two pods, so they conserve the
total across touched pods. Only budget_adjust changes the total.
"""

from typing import Iterable, Mapping, MutableMapping

from budgetpods.models.budget import (
    BudgetAdjustPayload,
    BudgetChange,
    BudgetRepairRestoreDonorPayload,
    BudgetTransferPayload,
)


class NegativeBudgetError(ValueError):
    """Applying a payload would leave a pod's budget below zero."""

    def __init__(self, pod_name: str, next_in_cents: int):
        self.pod_name = pod_name
        self.next_in_cents = next_in_cents
        super().__init__(
            f"Budget for {pod_name} would become negative ({next_in_cents} cents)."
        )


def _assert_non_negative(next_in_cents: int, pod_name: str) -> None:
    if next_in_cents < 0:
        raise NegativeBudgetError(pod_name, next_in_cents)


def apply_payloads_to_budget_map(
    payloads: Iterable,
    budget_by_pod_id: MutableMapping[str, int],
) -> None:
    """
    Apply payloads in order to a pod_id -> budget map, in place.

    Pods missing from the map start at zero.

    Raises:
        NegativeBudgetError: A payload would drive a budget negative.
            The map is left partially updated; callers work on a copy.
        TypeError: Unknown payload type
    """
    for payload in payloads:
        if isinstance(payload, BudgetTransferPayload):
            amount = payload.amount_in_cents
            from_next = budget_by_pod_id.get(payload.from_pod_id, 0) - amount
            to_next = budget_by_pod_id.get(payload.to_pod_id, 0) + amount
            _assert_non_negative(from_next, payload.from_pod_name)
            budget_by_pod_id[payload.from_pod_id] = from_next
            budget_by_pod_id[payload.to_pod_id] = to_next

        elif isinstance(payload, BudgetAdjustPayload):
            next_in_cents = budget_by_pod_id.get(payload.pod_id, 0) + payload.delta_in_cents
            _assert_non_negative(next_in_cents, payload.pod_name)
            budget_by_pod_id[payload.pod_id] = next_in_cents

        elif isinstance(payload, BudgetRepairRestoreDonorPayload):
            amount = payload.amount_in_cents
            donor_next = budget_by_pod_id.get(payload.donor_pod_id, 0) + amount
            funding_next = budget_by_pod_id.get(payload.funding_pod_id, 0) - amount
            _assert_non_negative(funding_next, payload.funding_pod_name)
            budget_by_pod_id[payload.donor_pod_id] = donor_next
            budget_by_pod_id[payload.funding_pod_id] = funding_next

        else:
            raise TypeError(f"Unsupported action payload: {type(payload).__name__}")


def compute_changes(
    pod_ids: Iterable[str],
    pod_names: Mapping[str, str],
    before: Mapping[str, int],
    after: Mapping[str, int],
) -> list[BudgetChange]:
    """
    Per-pod net change of a batch, in `pod_ids` order.

    Pods whose budget did not move, or whose name is unknown, are omitted.
    """
    changes = []
    for pod_id in pod_ids:
        before_in_cents = before.get(pod_id, 0)
        after_in_cents = after.get(pod_id, 0)
        delta = after_in_cents - before_in_cents
        if delta == 0 or pod_id not in pod_names:
            continue
        changes.append(BudgetChange(
            pod_id=pod_id,
            pod_name=pod_names[pod_id],
            delta_in_cents=delta,
            before_in_cents=before_in_cents,
            after_in_cents=after_in_cents,
        ))
    return changes


def referenced_pod_ids(payloads: Iterable) -> list[str]:
    """Distinct pod ids touched by the payloads, in first-seen order."""
    return list(dict.fromkeys(pid for p in payloads for pid in p.pod_ids()))
