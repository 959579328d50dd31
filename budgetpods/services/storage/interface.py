"""
Abstract Collaborator Interfaces

DESIGN DECISION: Everything the engine needs from the outside world is an
abstract interface here. This allows us to:
1. Swap the hosted datastore for another backend
2. Use in-memory storage for testing and single-instance runs
3. Keep business logic decoupled from storage implementation

The interface is intentionally simple - we're not building a full ORM.
Just the operations the propose and apply flows perform.

Storage handles are passed into the flows explicitly; there is no
process-wide client.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from budgetpods.models.budget import (
    BudgetEvent,
    ChatMessage,
    ChatThread,
    PodRecord,
    PodSettings,
    PodWithSettings,
    ProposedAction,
    ProposedActionDraft,
)


class VerifiedUser(BaseModel):
    user_id: str
    email: Optional[str] = None


class RateLimitResult(BaseModel):
    allowed: bool
    remaining: int
    reset_at_ms: int


class AuthProviderInterface(ABC):
    """Turns an Authorization header into a user."""

    @abstractmethod
    async def verify_user(self, authorization: Optional[str]) -> VerifiedUser:
        """
        Verify the bearer token carried by an Authorization header.

        Args:
            authorization: Raw header value, or None when absent

        Returns:
            The verified user

        Raises:
            AuthenticationError: Missing, malformed or rejected token
        """
        pass


class HouseholdStorageInterface(ABC):

    @abstractmethod
    async def assert_user_in_household(self, user_id: str, household_id: str) -> None:
        """
        Check household membership.

        Raises:
            MembershipError: If the user is not a member
        """
        pass


class PodStorageInterface(ABC):
    """
    Pods and their planning settings.

    CRITICAL: Only the ledger applier calls `upsert_budgeted_amounts`.
    """

    @abstractmethod
    async def list_pods_with_settings(
        self,
        household_id: str,
        active_only: bool = True,
    ) -> list[PodWithSettings]:
        """
        List a household's pods joined with their settings.

        Args:
            household_id: Household to list
            active_only: Skip pods marked inactive

        Returns:
            Pods with settings (settings may be None)
        """
        pass

    @abstractmethod
    async def list_pods_by_ids(self, pod_ids: list[str]) -> list[PodRecord]:
        """
        Fetch pods by id across all households.

        Unknown ids are silently absent from the result; the caller
        decides whether that is an error.
        """
        pass

    @abstractmethod
    async def list_pod_settings_by_pod_ids(self, pod_ids: list[str]) -> list[PodSettings]:
        pass

    @abstractmethod
    async def upsert_budgeted_amounts(self, budgets: dict[str, int]) -> None:
        """
        Overwrite budgeted amounts, creating settings rows where missing.

        Args:
            budgets: pod_id -> new budgeted amount in cents
        """
        pass


class ChatStorageInterface(ABC):

    @abstractmethod
    async def get_or_create_thread(self, household_id: str) -> ChatThread:
        """Return the household's single chat thread, creating it if needed."""
        pass

    @abstractmethod
    async def insert_chat_message(self, message: ChatMessage) -> ChatMessage:
        pass


class ActionStorageInterface(ABC):
    """
    Proposed actions and their status.

    Status only moves proposed -> applied or proposed -> failed.
    """

    @abstractmethod
    async def insert_proposed_actions(
        self,
        household_id: str,
        message_id: str,
        drafts: list[ProposedActionDraft],
    ) -> list[ProposedAction]:
        """
        Persist drafts as pending actions linked to an assistant message.

        Args:
            household_id: Owning household
            message_id: Assistant message that produced the drafts
            drafts: Validated drafts, in order

        Returns:
            The stored actions, in draft order, all with status proposed
        """
        pass

    @abstractmethod
    async def get_actions_by_ids(
        self,
        household_id: str,
        action_ids: list[str],
    ) -> list[ProposedAction]:
        """
        Fetch actions of one household by id.

        Actions of other households are treated as absent.
        """
        pass

    @abstractmethod
    async def mark_applied(
        self,
        household_id: str,
        action_ids: list[str],
        applied_by: str,
        applied_at: datetime,
    ) -> None:
        """
        Raises:
            InvalidTransitionError: If an action is not in proposed status
        """
        pass

    @abstractmethod
    async def mark_failed(
        self,
        household_id: str,
        action_id: str,
        applied_by: str,
        applied_at: datetime,
    ) -> None:
        pass


class BudgetEventStorageInterface(ABC):
    """
    The append-only ledger.

    Events are never updated or deleted.
    """

    @abstractmethod
    async def insert_budget_events(self, events: list[BudgetEvent]) -> list[BudgetEvent]:
        pass

    @abstractmethod
    async def has_recent_observed_transfer(
        self,
        household_id: str,
        from_pod_id: str,
        to_pod_id: str,
        amount_in_cents: int,
        since: datetime,
    ) -> bool:
        """
        Check for an observed_transfer event with the same pods and amount.

        Args:
            since: Only events created at or after this instant count

        Returns:
            True if a matching event exists
        """
        pass


class RateLimiterInterface(ABC):

    @abstractmethod
    def check(self, key: str, window_ms: int, max_requests: int) -> RateLimitResult:
        """
        Count one request against `key` and report whether it is allowed.

        Args:
            key: Bucket key, e.g. "<route>:<user>:<household>"
            window_ms: Length of the fixed window
            max_requests: Requests allowed per window
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class InvalidTransitionError(StorageError):
    """Attempted an action status change the state machine forbids."""
    pass


class AuthenticationError(Exception):
    """Missing, malformed or rejected credentials."""
    pass


class MembershipError(Exception):
    """User is not a member of the household."""
    pass
