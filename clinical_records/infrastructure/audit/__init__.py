"""Audit infrastructure components.

This package provides infrastructure components for audit logging of the
field-level changes applied by reconciliation.
"""

from clinical_records.infrastructure.audit.change_audit_logger import ChangeAuditLogger

__all__ = ['ChangeAuditLogger']
