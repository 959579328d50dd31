"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Currently implements an in-memory backend, but designed to be swappable.
"""

from budgetpods.services.storage.interface import (
    ActionStorageInterface,
    AuthenticationError,
    AuthProviderInterface,
    BudgetEventStorageInterface,
    ChatStorageInterface,
    HouseholdStorageInterface,
    InvalidTransitionError,
    MembershipError,
    NotFoundError,
    PodStorageInterface,
    RateLimiterInterface,
    RateLimitResult,
    StorageError,
    VerifiedUser,
)
from budgetpods.services.storage.memory import InMemoryStorage

__all__ = [
    # Interfaces
    "ActionStorageInterface",
    "AuthProviderInterface",
    "BudgetEventStorageInterface",
    "ChatStorageInterface",
    "HouseholdStorageInterface",
    "PodStorageInterface",
    "RateLimiterInterface",
    "RateLimitResult",
    "VerifiedUser",
    # Exceptions
    "AuthenticationError",
    "InvalidTransitionError",
    "MembershipError",
    "NotFoundError",
    "StorageError",
    # In-memory implementation
    "InMemoryStorage",
]
