"""Kernel ORM models."""

from sourcing_kernel.models.audit_record import AuditAction, AuditRecord

__all__ = ["AuditAction", "AuditRecord"]
