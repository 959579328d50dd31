"""Reasons an apply batch is rejected before anything is written."""

from typing import Any, Optional


class ApplyRejectedError(Exception):
    """Base class; `code` is the client-facing error code."""

    code = "BAD_REQUEST"

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ActionsNotFoundError(ApplyRejectedError):
    code = "NOT_FOUND"

    def __init__(self, missing: list[str]):
        super().__init__("Some actionIds were not found", {"missing": missing})
        self.missing = missing


class ActionConflictError(ApplyRejectedError):
    """An action in the batch is not pending and the batch is not a replay."""

    code = "CONFLICT"

    def __init__(self, action_id: str, status: str):
        super().__init__(
            f"Action {action_id} is not in proposed status",
            {"status": status},
        )


class PodMissingError(ApplyRejectedError):
    code = "BAD_REQUEST"

    def __init__(self, pod_id: str):
        super().__init__(f"Pod not found for pod_id={pod_id}")


class ForeignPodError(ApplyRejectedError):
    code = "FORBIDDEN"

    def __init__(self, pod_id: str):
        super().__init__(f"Pod {pod_id} is not in this household")
