"""Services for the ledger kernel (write side)."""

from ledger_kernel.services.auditor_service import (
    AuditAction,
    AuditorService,
    AuditRecord,
    AuditSink,
    InMemoryAuditSink,
    LoggingAuditSink,
)
from ledger_kernel.services.period_service import PeriodService
from ledger_kernel.services.posting_service import PostingService
from ledger_kernel.services.validation_service import ValidationService

__all__ = [
    "AuditAction",
    "AuditRecord",
    "AuditSink",
    "AuditorService",
    "InMemoryAuditSink",
    "LoggingAuditSink",
    "PeriodService",
    "PostingService",
    "ValidationService",
]
