"""Services package."""

from budgetpods.services.auth import (
    RemoteAuthProvider,
    StaticTokenAuthProvider,
    extract_bearer_token,
)
from budgetpods.services.rate_limit import InMemoryRateLimiter
from budgetpods.services.storage import (
    ActionStorageInterface,
    AuthenticationError,
    AuthProviderInterface,
    BudgetEventStorageInterface,
    ChatStorageInterface,
    HouseholdStorageInterface,
    InMemoryStorage,
    InvalidTransitionError,
    MembershipError,
    NotFoundError,
    PodStorageInterface,
    RateLimiterInterface,
    RateLimitResult,
    StorageError,
    VerifiedUser,
)

__all__ = [
    # Auth
    "RemoteAuthProvider",
    "StaticTokenAuthProvider",
    "extract_bearer_token",
    # Rate limiting
    "InMemoryRateLimiter",
    # Storage services
    "ActionStorageInterface",
    "AuthenticationError",
    "AuthProviderInterface",
    "BudgetEventStorageInterface",
    "ChatStorageInterface",
    "HouseholdStorageInterface",
    "InMemoryStorage",
    "InvalidTransitionError",
    "MembershipError",
    "NotFoundError",
    "PodStorageInterface",
    "RateLimiterInterface",
    "RateLimitResult",
    "StorageError",
    "VerifiedUser",
]
