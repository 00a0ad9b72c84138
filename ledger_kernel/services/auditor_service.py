"""
AuditorService -- structured audit events for every state transition.

Responsibility:
    Builds an ``AuditRecord`` (action, entity, actor, before/after values,
    payload) for each significant state change and hands it to an
    ``AuditSink``.  Audit storage is the sink's concern, not the kernel's.

Architecture position:
    Kernel > Services -- called by PeriodService, ValidationService,
    PostingService and the YearEndCloseOrchestrator.

Invariants enforced:
    - Every period status change, fiscal year close and rule change
      produces exactly one record with before and after values.
    - Timestamps come from the injected Clock.

Failure modes:
    - Exceptions raised by a sink propagate; the caller's transaction is
      then rolled back, so no state change goes unaudited.

Audit relevance:
    This IS the audit boundary.  ``LoggingAuditSink`` writes each record as
    a structured ``audit_event`` log line; ``InMemoryAuditSink`` collects
    them for tests and previews.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Protocol
from uuid import UUID

from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.context import LedgerContext
from ledger_kernel.logging_config import get_logger

logger = get_logger("services.auditor")


class AuditAction(str, Enum):
    """Audited state changes."""

    FISCAL_YEAR_CREATED = "fiscal_year_created"
    FISCAL_YEAR_STATUS_CHANGED = "fiscal_year_status_changed"
    FISCAL_YEAR_UPDATED = "fiscal_year_updated"
    FISCAL_YEAR_DELETED = "fiscal_year_deleted"
    FISCAL_YEAR_SET_CURRENT = "fiscal_year_set_current"
    FISCAL_YEAR_CLOSED = "fiscal_year_closed"
    PERIOD_CREATED = "period_created"
    PERIOD_STATUS_CHANGED = "period_status_changed"
    RULE_CREATED = "rule_created"
    RULE_UPDATED = "rule_updated"
    RULE_TOGGLED = "rule_toggled"
    RULE_DELETED = "rule_deleted"
    ENTRY_POSTED = "entry_posted"
    OPENING_BALANCES_GENERATED = "opening_balances_generated"


@dataclass(frozen=True)
class AuditRecord:
    """One audited state change."""

    action: AuditAction
    entity_type: str
    entity_id: UUID
    organization_id: UUID
    actor_id: UUID
    occurred_at: datetime
    correlation_id: str
    before: dict[str, Any] | None = None
    after: dict[str, Any] | None = None
    payload: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action.value,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id),
            "organization_id": str(self.organization_id),
            "actor_id": str(self.actor_id),
            "occurred_at": self.occurred_at.isoformat(),
            "correlation_id": self.correlation_id,
            "before": self.before,
            "after": self.after,
            "payload": self.payload,
        }


class AuditSink(Protocol):
    """Receiver of audit records (external audit log)."""

    def record(self, audit_record: AuditRecord) -> None: ...


class LoggingAuditSink:
    """Writes each record as a structured ``audit_event`` log line."""

    def __init__(self, logger_name: str = "audit"):
        self._logger = get_logger(logger_name)

    def record(self, audit_record: AuditRecord) -> None:
        self._logger.info("audit_event", extra=audit_record.to_dict())


class InMemoryAuditSink:
    """Collects records in memory."""

    def __init__(self) -> None:
        self.records: list[AuditRecord] = []

    def record(self, audit_record: AuditRecord) -> None:
        self.records.append(audit_record)

    def actions(self) -> list[AuditAction]:
        return [r.action for r in self.records]

    def for_entity(self, entity_id: UUID) -> list[AuditRecord]:
        return [r for r in self.records if r.entity_id == entity_id]

    def clear(self) -> None:
        self.records.clear()


class AuditorService:
    """
    Builds audit records and forwards them to the sink.

    Contract:
        Domain-specific ``record_*`` methods build the before/after payloads
        so callers never assemble records by hand.

    Non-goals:
        - Does NOT persist records; the sink does.
    """

    def __init__(self, sink: AuditSink | None = None, clock: Clock | None = None):
        self._sink = sink or LoggingAuditSink()
        self._clock = clock or SystemClock()

    def _emit(
        self,
        context: LedgerContext,
        action: AuditAction,
        entity_type: str,
        entity_id: UUID,
        before: dict[str, Any] | None = None,
        after: dict[str, Any] | None = None,
        **payload: Any,
    ) -> AuditRecord:
        audit_record = AuditRecord(
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            organization_id=context.organization_id,
            actor_id=context.actor_id,
            occurred_at=self._clock.now(),
            correlation_id=context.correlation_id,
            before=before,
            after=after,
            payload=payload,
        )
        self._sink.record(audit_record)
        logger.debug(
            "audit_record_emitted",
            extra={"action": action.value, "entity_type": entity_type, "entity_id": str(entity_id)},
        )
        return audit_record

    # Fiscal years and periods

    def record_fiscal_year_created(self, context: LedgerContext, fiscal_year_id: UUID, code: str, period_count: int) -> AuditRecord:
        return self._emit(
            context, AuditAction.FISCAL_YEAR_CREATED, "FiscalYear", fiscal_year_id,
            after={"code": code, "status": "open"}, period_count=period_count,
        )

    def record_fiscal_year_updated(
        self,
        context: LedgerContext,
        fiscal_year_id: UUID,
        before: dict[str, Any],
        after: dict[str, Any],
    ) -> AuditRecord:
        return self._emit(
            context, AuditAction.FISCAL_YEAR_UPDATED, "FiscalYear", fiscal_year_id,
            before=before, after=after,
        )

    def record_fiscal_year_deleted(self, context: LedgerContext, fiscal_year_id: UUID, code: str, period_count: int) -> AuditRecord:
        return self._emit(
            context, AuditAction.FISCAL_YEAR_DELETED, "FiscalYear", fiscal_year_id,
            before={"code": code}, after=None, period_count=period_count,
        )

    def record_current_fiscal_year(
        self,
        context: LedgerContext,
        fiscal_year_id: UUID,
        previous_current_id: UUID | None,
    ) -> AuditRecord:
        return self._emit(
            context, AuditAction.FISCAL_YEAR_SET_CURRENT, "FiscalYear", fiscal_year_id,
            before={"is_current": False}, after={"is_current": True},
            previous_current_id=str(previous_current_id) if previous_current_id else None,
        )

    def record_period_created(self, context: LedgerContext, period_id: UUID, period_number: int, period_type: str) -> AuditRecord:
        return self._emit(
            context, AuditAction.PERIOD_CREATED, "AccountingPeriod", period_id,
            after={"period_number": period_number, "period_type": period_type, "status": "open"},
        )

    def record_period_transition(
        self,
        context: LedgerContext,
        period_id: UUID,
        from_status: str,
        to_status: str,
        override: bool = False,
        pending_entries: int = 0,
    ) -> AuditRecord:
        return self._emit(
            context, AuditAction.PERIOD_STATUS_CHANGED, "AccountingPeriod", period_id,
            before={"status": from_status}, after={"status": to_status},
            override=override, pending_entries=pending_entries,
        )

    def record_fiscal_year_status_change(self, context: LedgerContext, fiscal_year_id: UUID, from_status: str, to_status: str) -> AuditRecord:
        return self._emit(
            context, AuditAction.FISCAL_YEAR_STATUS_CHANGED, "FiscalYear", fiscal_year_id,
            before={"status": from_status}, after={"status": to_status},
        )

    def record_fiscal_year_closed(
        self,
        context: LedgerContext,
        fiscal_year_id: UUID,
        from_status: str,
        closing_entry_id: UUID | None,
        net_income: str,
    ) -> AuditRecord:
        return self._emit(
            context, AuditAction.FISCAL_YEAR_CLOSED, "FiscalYear", fiscal_year_id,
            before={"status": from_status, "closing_entry_id": None},
            after={
                "status": "closed",
                "closing_entry_id": str(closing_entry_id) if closing_entry_id else None,
            },
            net_income=net_income,
        )

    def record_opening_balances(self, context: LedgerContext, fiscal_year_id: UUID, source_fiscal_year_id: UUID, count: int) -> AuditRecord:
        return self._emit(
            context, AuditAction.OPENING_BALANCES_GENERATED, "FiscalYear", fiscal_year_id,
            source_fiscal_year_id=str(source_fiscal_year_id), opening_balance_count=count,
        )

    # Rules

    def record_rule_change(
        self,
        context: LedgerContext,
        action: AuditAction,
        rule_id: UUID,
        before: dict[str, Any] | None,
        after: dict[str, Any] | None,
    ) -> AuditRecord:
        return self._emit(context, action, "ValidationRule", rule_id, before=before, after=after)

    # Entries

    def record_entry_posted(self, context: LedgerContext, entry_id: UUID, from_status: str, period_id: UUID | None) -> AuditRecord:
        return self._emit(
            context, AuditAction.ENTRY_POSTED, "JournalEntry", entry_id,
            before={"status": from_status}, after={"status": "posted"},
            period_id=str(period_id) if period_id else None,
        )
