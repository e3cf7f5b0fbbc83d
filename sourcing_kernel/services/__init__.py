"""Kernel services: audit trail and the conflict-retry transaction runner."""

from sourcing_kernel.services.audit_trail import AuditTrail
from sourcing_kernel.services.base import BaseService
from sourcing_kernel.services.conflict_retry import run_with_conflict_retry

__all__ = ["AuditTrail", "BaseService", "run_with_conflict_retry"]
