"""
PostingService -- journal entry creation and admission to the books.

Responsibility:
    Creates DRAFT entries (period assignment, entry numbering, base amount
    conversion), moves them to PENDING, and posts them after a passing
    validation.  Also writes system entries (closing, opening) that are
    created directly in POSTED status.

Architecture position:
    Kernel > Services -- imperative shell.  Uses ValidationService for the
    verdict and locks the target AccountingPeriod for the status check.

Invariants enforced:
    - An entry is POSTED only when its verdict has ``can_post`` True.
    - Posting locks the target period and bumps its ``posted_entry_count``,
      so a post racing a period close either sees the CLOSED status or
      fails the period's version check.
    - base amounts = amount x exchange_rate, computed once at creation.
    - Flush-only: never commits or rolls back the session.

Failure modes:
    - EntryNotFoundError: entry not in the organization.
    - InvalidEntryStatusError: submit/post from a status that forbids it.
    - ClosedPeriodError: target period is CLOSED.
    - EntryValidationError: verdict has blocking failures.
    - OptimisticLockError: concurrent modification of the period.

Audit relevance:
    Each post produces an ``entry_posted`` audit record and a stored
    ValidationRun with the verdict that admitted it.
"""

from collections.abc import Sequence
from datetime import date
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ledger_kernel.domain.balance import line_currency
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.context import LedgerContext
from ledger_kernel.domain.dtos import EntryInfo, EntryLineInput
from ledger_kernel.domain.types import (
    UNPOSTED_STATUSES,
    EntryStatus,
    EntryType,
    PeriodStatus,
)
from ledger_kernel.domain.validator import check_balance
from ledger_kernel.exceptions import (
    ClosedPeriodError,
    EntryNotFoundError,
    EntryValidationError,
    InvalidEntryStatusError,
    OptimisticLockError,
    PeriodNotFoundError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.fiscal_year import AccountingPeriod
from ledger_kernel.models.journal import JournalEntry, JournalLine
from ledger_kernel.selectors.reference_selector import ReferenceSelector
from ledger_kernel.services.auditor_service import AuditorService
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.validation_service import ValidationService

logger = get_logger("services.posting")

ENTRY_NUMBER_PREFIXES: dict[EntryType, str] = {
    EntryType.STANDARD: "JE",
    EntryType.ADJUSTING: "AJ",
    EntryType.REVERSING: "RV",
    EntryType.CLOSING: "CL",
    EntryType.OPENING: "OB",
}


def format_entry_number(prefix: str, year: int, month: int, sequence: int) -> str:
    """``JE/2024/03/0007``"""
    return f"{prefix}/{year}/{month:02d}/{sequence:04d}"


def entry_to_info(entry: JournalEntry) -> EntryInfo:
    return EntryInfo(
        id=entry.id,
        entry_number=entry.entry_number,
        entry_date=entry.entry_date,
        entry_type=EntryType(entry.entry_type),
        status=EntryStatus(entry.status),
        period_id=entry.period_id,
        total_debit=entry.total_debit,
        total_credit=entry.total_credit,
        is_closing_entry=entry.is_closing_entry,
        posted_at=entry.posted_at,
    )


class PostingService(BaseService[JournalEntry]):
    """
    Entry lifecycle: DRAFT -> PENDING -> POSTED (DRAFT -> POSTED allowed).

    Contract:
        ``create_entry`` never rejects an entry for content; problems are
        reported by validation at post time.  ``post_entry`` is the only
        path from an unposted status to POSTED.

    Non-goals:
        - Does NOT reverse or correct posted entries.
        - Does NOT call ``session.commit()``.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        auditor: AuditorService | None = None,
        validation_service: ValidationService | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._auditor = auditor or AuditorService(clock=self._clock)
        self._validation = validation_service or ValidationService(
            session, clock=self._clock, auditor=self._auditor,
        )
        self._reference = ReferenceSelector(session)

    def create_entry(
        self,
        context: LedgerContext,
        entry_date: date,
        lines: Sequence[EntryLineInput],
        entry_type: EntryType = EntryType.STANDARD,
        description: str | None = None,
    ) -> EntryInfo:
        """
        Create a DRAFT entry in the REGULAR period covering ``entry_date``.

        ``period_id`` stays None when no period covers the date.  Posting
        assigns the period once one exists, otherwise validation fails.
        """
        entry_type = EntryType(entry_type)
        period = self._reference.get_regular_period_for_date(context.organization_id, entry_date)
        entry = JournalEntry(
            organization_id=context.organization_id,
            entry_number=self._next_entry_number(context, entry_type, entry_date),
            entry_date=entry_date,
            entry_type=entry_type.value,
            status=EntryStatus.DRAFT.value,
            period_id=period.id if period is not None else None,
            description=description,
            is_closing_entry=False,
            created_by_id=context.actor_id,
        )
        entry.lines = self._build_lines(context, lines)
        self.session.add(entry)
        self.session.flush()

        logger.info(
            "entry_created",
            extra={
                "entry_id": str(entry.id),
                "entry_number": entry.entry_number,
                "entry_type": entry_type.value,
                "line_count": len(entry.lines),
                "period_id": str(entry.period_id) if entry.period_id else None,
            },
        )
        return entry_to_info(entry)

    def submit_entry(self, context: LedgerContext, entry_id: UUID) -> EntryInfo:
        """DRAFT -> PENDING."""
        entry = self._get_entry(context, entry_id)
        if entry.status != EntryStatus.DRAFT:
            raise InvalidEntryStatusError(str(entry_id), EntryStatus(entry.status).value, "submit")
        entry.status = EntryStatus.PENDING.value
        entry.updated_by_id = context.actor_id
        self.session.flush()
        logger.info("entry_submitted", extra={"entry_id": str(entry_id)})
        return entry_to_info(entry)

    def post_entry(self, context: LedgerContext, entry_id: UUID) -> EntryInfo:
        """
        Validate and post an unposted entry.

        Raises:
            EntryNotFoundError: Entry not found.
            InvalidEntryStatusError: Entry already POSTED.
            ClosedPeriodError: Target period is CLOSED.
            EntryValidationError: Verdict has blocking failures.
            OptimisticLockError: Period modified concurrently.
        """
        with LogContext.bind(**context.log_fields(), entry_id=entry_id):
            entry = self._get_entry(context, entry_id)
            from_status = EntryStatus(entry.status)
            if from_status not in UNPOSTED_STATUSES:
                raise InvalidEntryStatusError(str(entry_id), from_status.value, "post")

            if entry.period_id is None:
                # Drafted before a period covered its date.
                covering = self._reference.get_regular_period_for_date(
                    context.organization_id, entry.entry_date,
                )
                if covering is not None:
                    entry.period_id = covering.id
                    logger.info("entry_period_assigned", extra={"period_id": str(covering.id)})

            period = None
            if entry.period_id is not None:
                period = self._lock_period(entry.period_id)
                if period.status == PeriodStatus.CLOSED:
                    logger.warning(
                        "post_rejected_closed_period",
                        extra={"period_id": str(period.id), "entry_date": str(entry.entry_date)},
                    )
                    raise ClosedPeriodError(period.name, str(entry.entry_date))

            verdict = self._validation.validate_entry(context, entry_id=entry_id)
            if not verdict.can_post:
                failed = tuple(item.rule_code for item in verdict.failed if item.is_blocking)
                logger.warning(
                    "post_rejected_validation",
                    extra={"failed_rule_codes": list(failed)},
                )
                raise EntryValidationError(str(entry_id), failed)

            entry.status = EntryStatus.POSTED.value
            entry.posted_at = self._clock.now()
            entry.posted_by_id = context.actor_id
            entry.updated_by_id = context.actor_id
            if period is not None:
                period.posted_entry_count += 1
            self._flush(period)

            self._auditor.record_entry_posted(context, entry.id, from_status.value, entry.period_id)
            logger.info(
                "entry_posted",
                extra={
                    "entry_number": entry.entry_number,
                    "period_id": str(entry.period_id) if entry.period_id else None,
                    "total_debit": str(entry.total_debit),
                    "warning_count": verdict.summary.warnings,
                },
            )
            return entry_to_info(entry)

    def post_system_entry(
        self,
        context: LedgerContext,
        *,
        period_id: UUID,
        entry_date: date,
        entry_type: EntryType,
        lines: Sequence[EntryLineInput],
        description: str,
        is_closing_entry: bool = False,
        source_account_ids: Sequence[UUID | None] | None = None,
    ) -> JournalEntry:
        """
        Write a balanced entry directly in POSTED status.

        Used by the year-end close.  Skips period status gating and custom
        rules; the balance check still applies.  Returns the ORM entry so
        the caller can record its id within the same unit of work.  The
        caller emits the audit record once its unit of work succeeds.

        Raises:
            PeriodNotFoundError: period_id unknown.
            EntryValidationError: Lines do not balance.
        """
        entry_type = EntryType(entry_type)
        balance = check_balance(lines, context)
        if not balance.is_balanced:
            raise EntryValidationError("(new system entry)", ("CORE_BALANCE",))

        period = self._lock_period(period_id)
        now = self._clock.now()
        entry = JournalEntry(
            organization_id=context.organization_id,
            entry_number=self._next_entry_number(context, entry_type, entry_date),
            entry_date=entry_date,
            entry_type=entry_type.value,
            status=EntryStatus.POSTED.value,
            period_id=period.id,
            description=description,
            is_closing_entry=is_closing_entry,
            posted_at=now,
            posted_by_id=context.actor_id,
            created_by_id=context.actor_id,
        )
        entry.lines = self._build_lines(context, lines, source_account_ids)
        period.posted_entry_count += 1
        self.session.add(entry)
        self._flush(period)

        logger.info(
            "system_entry_posted",
            extra={
                "entry_id": str(entry.id),
                "entry_number": entry.entry_number,
                "entry_type": entry_type.value,
                "line_count": len(entry.lines),
                "total_debit": str(balance.total_debits),
            },
        )
        return entry

    def get_entry(self, context: LedgerContext, entry_id: UUID) -> EntryInfo:
        return entry_to_info(self._get_entry(context, entry_id))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _build_lines(
        self,
        context: LedgerContext,
        lines: Sequence[EntryLineInput],
        source_account_ids: Sequence[UUID | None] | None = None,
    ) -> list[JournalLine]:
        built = []
        for number, line in enumerate(lines, start=1):
            built.append(JournalLine(
                line_number=number,
                account_id=line.account_id,
                debit_amount=line.debit_amount,
                credit_amount=line.credit_amount,
                currency=line_currency(line, context.base_currency),
                exchange_rate=line.exchange_rate,
                base_debit_amount=line.base_debit,
                base_credit_amount=line.base_credit,
                cost_center_id=line.cost_center_id,
                description=line.description,
                source_account_id=source_account_ids[number - 1] if source_account_ids else None,
                created_by_id=context.actor_id,
            ))
        return built

    def _next_entry_number(self, context: LedgerContext, entry_type: EntryType, entry_date: date) -> str:
        prefix = f"{ENTRY_NUMBER_PREFIXES[entry_type]}/{entry_date.year}/{entry_date.month:02d}/"
        count = self.session.scalar(
            select(func.count(JournalEntry.id)).where(
                JournalEntry.organization_id == context.organization_id,
                JournalEntry.entry_number.startswith(prefix),
            )
        ) or 0
        return format_entry_number(
            ENTRY_NUMBER_PREFIXES[entry_type], entry_date.year, entry_date.month, count + 1,
        )

    def _lock_period(self, period_id: UUID) -> AccountingPeriod:
        period = self.session.scalars(
            select(AccountingPeriod)
            .where(AccountingPeriod.id == period_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).first()
        if period is None:
            raise PeriodNotFoundError(str(period_id))
        return period

    def _flush(self, period: AccountingPeriod | None) -> None:
        try:
            self.session.flush()
        except StaleDataError as exc:
            entity_id = str(period.id) if period is not None else "unknown"
            logger.warning(
                "optimistic_lock_conflict",
                extra={"entity_type": "AccountingPeriod", "entity_id": entity_id},
            )
            raise OptimisticLockError("AccountingPeriod", entity_id) from exc

    def _get_entry(self, context: LedgerContext, entry_id: UUID) -> JournalEntry:
        entry = self.session.scalars(
            select(JournalEntry).where(
                JournalEntry.id == entry_id,
                JournalEntry.organization_id == context.organization_id,
            )
        ).first()
        if entry is None:
            raise EntryNotFoundError(str(entry_id))
        return entry
