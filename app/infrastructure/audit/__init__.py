"""
Audit logging infrastructure for lifecycle evidence (decisions, registrations,
payment-guard refusals).
"""

from app.infrastructure.audit.audit_logger import AuditLogger, audit_logger

__all__ = ["AuditLogger", "audit_logger"]
