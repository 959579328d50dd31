"""
Shared fixtures.

No test talks to a real model endpoint, auth service or datastore:
storage is InMemoryStorage and outbound HTTP goes through httpx.MockTransport.
"""

import pytest

from budgetpods.audit import AuditLogger
from budgetpods.config import Settings
from budgetpods.models.budget import PodCategory, PodSnapshot
from budgetpods.services import InMemoryStorage


HOUSEHOLD_ID = "11111111-1111-4111-8111-111111111111"
OTHER_HOUSEHOLD_ID = "22222222-2222-4222-8222-222222222222"
USER_ID = "00000000-0000-0000-0000-000000000001"
TOKEN = "test-token"


@pytest.fixture
def env(monkeypatch):
    """Environment with the model switched off and no auth service."""
    for name in (
        "AI_ENABLED",
        "AI_DEBUG",
        "OPENAI_API_KEY",
        "OPENAI_BASE_URL",
        "AUTH_URL",
        "AUTH_DEV_TOKEN",
        "RATE_LIMIT_MAX",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


@pytest.fixture
def settings(env) -> Settings:
    return Settings()


@pytest.fixture
def audit_logger() -> AuditLogger:
    return AuditLogger(keep_history=True)


@pytest.fixture
def make_pod():
    """Factory for PodSnapshot; the id is derived from the name."""

    def _make(
        name: str,
        budget: int = 0,
        category: PodCategory = None,
        pod_id: str = None,
    ) -> PodSnapshot:
        return PodSnapshot(
            id=pod_id or "pod-" + "-".join(name.lower().split()),
            name=name,
            budgeted_amount_in_cents=budget,
            category=category,
        )

    return _make


@pytest.fixture
def storage() -> InMemoryStorage:
    """Household with one member and a small set of pods."""
    store = InMemoryStorage()
    store.add_member(HOUSEHOLD_ID, USER_ID)
    store.add_pod(HOUSEHOLD_ID, "Groceries", 1000, PodCategory.NECESSITIES, pod_id="pod-groceries")
    store.add_pod(HOUSEHOLD_ID, "Education", 0, PodCategory.PRESSING, pod_id="pod-education")
    store.add_pod(HOUSEHOLD_ID, "Move to ___", 5000, PodCategory.SAVINGS, pod_id="pod-move-to")
    store.add_pod(HOUSEHOLD_ID, "Health", 2000, PodCategory.NECESSITIES, pod_id="pod-health")
    store.add_pod(HOUSEHOLD_ID, "Moving Fund", 30000, PodCategory.SAVINGS, pod_id="pod-moving-fund")
    return store
