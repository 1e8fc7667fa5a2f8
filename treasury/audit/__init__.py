"""Audit package."""

from treasury.audit.logger import AuditLogger, create_correlation_id
from treasury.audit.trail import AuditIntegrityError, AuditTrail

__all__ = ["AuditIntegrityError", "AuditLogger", "AuditTrail", "create_correlation_id"]
