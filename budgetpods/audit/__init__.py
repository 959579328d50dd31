"""Audit logging package."""

from budgetpods.audit.logger import AuditLogger, create_trace_id

__all__ = ["AuditLogger", "create_trace_id"]
