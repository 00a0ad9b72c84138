"""
ledger_services.year_end_close_orchestrator -- Atomic fiscal year close.

Responsibility:
    Close a fiscal year in one unit of work: zero every revenue and expense
    account into retained earnings with a CLOSING entry, close all periods,
    close the year, and seed the next year's opening balances.  The
    arithmetic lives in ``ledger_kernel.domain.year_end``; the orchestrator
    adds locking, step sequencing, persistence and evidence.

Architecture position:
    Services -- stateful orchestration over the kernel.
    Composes PostingService (closing entry), LedgerSelector (balances),
    AuditorService (audit trail) and the pure period lifecycle.

Invariants enforced:
    - Atomicity: all steps run inside one SAVEPOINT
      (``session.begin_nested()``).  A failure in any step rolls back every
      step; the caller still owns the outer commit.
    - Close lock: the fiscal year and all its periods are read with
      SELECT ... FOR UPDATE before any check, and written with optimistic
      version checks.
    - A CLOSED year is rejected before any side effect.
    - No period may be OPEN when the close starts.
    - After the closing entry is posted, the summed balance of all revenue
      and expense accounts of the year is exactly zero.
    - Opening balances are seeded for balance-sheet accounts only.

Failure modes:
    - FiscalYearNotFoundError, FiscalYearAlreadyClosedError, OpenPeriodsError,
      InvalidFiscalYearError (closing date), AccountNotFoundError (retained
      earnings) -- preconditions, nothing written.
    - Kernel errors raised inside a step propagate unchanged after rollback.
    - Any other failure inside a step surfaces as
      YearEndCloseError(fiscal_year_id, step, reason) after rollback.

Audit relevance:
    Audit records (closing entry posted, each period status change, the
    year close, opening balances) are emitted only after every step
    succeeded, so the audit trail never describes a rolled-back close.
    Every log line of one close carries the same correlation_id.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.context import LedgerContext
from ledger_kernel.domain.dtos import ZERO, AccountBalance, EntryLineInput
from ledger_kernel.domain.period_lifecycle import last_regular_period, validate_transition
from ledger_kernel.domain.types import (
    BALANCE_SHEET_TYPES,
    EXPENSE_TYPES,
    REVENUE_TYPES,
    EntryStatus,
    EntryType,
    PeriodStatus,
)
from ledger_kernel.domain.year_end import (
    ClosingLine,
    OpeningBalanceSpec,
    build_closing_lines,
    compute_opening_balances,
    compute_year_end_closing,
    income_statement_totals,
    retained_earnings_line,
)
from ledger_kernel.exceptions import (
    AccountNotFoundError,
    FiscalYearAlreadyClosedError,
    FiscalYearClosedError,
    FiscalYearNotFoundError,
    InvalidFiscalYearError,
    LedgerKernelError,
    OpenPeriodsError,
    OptimisticLockError,
    PeriodNotFoundError,
    YearEndCloseError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.account import Account
from ledger_kernel.models.fiscal_year import AccountingPeriod, FiscalYear
from ledger_kernel.models.journal import JournalEntry
from ledger_kernel.models.opening_balance import OpeningBalance
from ledger_kernel.selectors.ledger_selector import LedgerSelector
from ledger_kernel.selectors.reference_selector import period_to_info
from ledger_kernel.services.auditor_service import AuditorService
from ledger_kernel.services.posting_service import PostingService
from ledger_services._close_types import (
    CLOSE_STEPS,
    ChangeSet,
    ClosePreview,
    CloseStep,
    YearEndCloseResult,
)

logger = get_logger("services.year_end_close")

_INCOME_STATEMENT_TYPES = REVENUE_TYPES | EXPENSE_TYPES


@dataclass
class _CloseState:
    """Working state threaded through the close steps."""

    fiscal_year: FiscalYear
    periods: list[AccountingPeriod]
    closing_date: date
    retained_earnings: Account
    generate_opening_balances: bool
    balances: list[AccountBalance] = field(default_factory=list)
    revenue_total: Decimal = ZERO
    expense_total: Decimal = ZERO
    closing_lines: list[ClosingLine] = field(default_factory=list)
    closing_entry: JournalEntry | None = None
    period_transitions: list[tuple[AccountingPeriod, PeriodStatus]] = field(default_factory=list)
    previous_year_status: PeriodStatus = PeriodStatus.SOFT_CLOSED
    closed_at: datetime | None = None
    next_fiscal_year: FiscalYear | None = None
    opening_balances: list[OpeningBalanceSpec] = field(default_factory=list)
    opening_balance_ids: list[UUID] = field(default_factory=list)
    steps_completed: list[CloseStep] = field(default_factory=list)

    @property
    def net_income(self) -> Decimal:
        return self.revenue_total - self.expense_total


class YearEndCloseOrchestrator:
    """
    Sequences the year-end close steps inside one savepoint.

    Contract:
        Receives its collaborators via constructor injection; defaults are
        built on the same session, clock and auditor.
    Guarantees:
        - ``close_fiscal_year`` either completes every step or leaves the
          database exactly as it found it.
        - ``preview_close`` performs the computation steps read-only and
          reports what would block a close.
    Non-goals:
        - Does not reopen a closed year.
        - Does not commit; the caller's ``session_scope()`` does.
    """

    def __init__(
        self,
        session: Session,
        posting_service: PostingService | None = None,
        auditor: AuditorService | None = None,
        clock: Clock | None = None,
        ledger_selector: LedgerSelector | None = None,
    ) -> None:
        self._session = session
        self._clock = clock or SystemClock()
        self._auditor = auditor or AuditorService(clock=self._clock)
        self._posting = posting_service or PostingService(
            session, clock=self._clock, auditor=self._auditor,
        )
        self._ledger = ledger_selector or LedgerSelector(session)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def close_fiscal_year(
        self,
        context: LedgerContext,
        fiscal_year_id: UUID,
        closing_date: date | None = None,
        *,
        generate_opening_balances: bool = True,
    ) -> YearEndCloseResult:
        """
        Close a fiscal year atomically.

        Args:
            context: Request context (organization, actor, correlation id).
            fiscal_year_id: Year to close.
            closing_date: Date of the closing entry; defaults to the year end.
            generate_opening_balances: Seed the next year's opening balances.

        Returns:
            YearEndCloseResult with net income, totals, the closing entry id
            and the ChangeSet of records written.
        """
        with LogContext.bind(**context.log_fields(), fiscal_year_id=fiscal_year_id):
            fiscal_year = self._lock_fiscal_year(context, fiscal_year_id)
            if fiscal_year.status == PeriodStatus.CLOSED:
                logger.warning("year_end_close_rejected_already_closed")
                raise FiscalYearAlreadyClosedError(str(fiscal_year_id))

            periods = self._lock_periods(fiscal_year_id)
            open_periods = [p for p in periods if p.status == PeriodStatus.OPEN]
            if open_periods:
                logger.warning(
                    "year_end_close_rejected_open_periods",
                    extra={"open_period_count": len(open_periods)},
                )
                raise OpenPeriodsError(
                    str(fiscal_year_id),
                    len(open_periods),
                    tuple(p.period_number for p in open_periods),
                )

            closing_date = closing_date or fiscal_year.end_date
            if not fiscal_year.start_date <= closing_date <= fiscal_year.end_date:
                raise InvalidFiscalYearError(
                    f"closing date {closing_date} outside fiscal year "
                    f"{fiscal_year.start_date} to {fiscal_year.end_date}"
                )

            state = _CloseState(
                fiscal_year=fiscal_year,
                periods=periods,
                closing_date=closing_date,
                retained_earnings=self._retained_earnings_account(context, fiscal_year),
                generate_opening_balances=generate_opening_balances,
                previous_year_status=PeriodStatus(fiscal_year.status),
            )

            logger.info(
                "year_end_close_started",
                extra={
                    "fiscal_year_code": fiscal_year.code,
                    "closing_date": str(closing_date),
                    "period_count": len(periods),
                },
            )

            self._run_steps(context, state)
            self._emit_audit(context, state)

            logger.info(
                "fiscal_year_closed",
                extra={
                    "fiscal_year_code": fiscal_year.code,
                    "net_income": str(state.net_income),
                    "closing_entry_id": (
                        str(state.closing_entry.id) if state.closing_entry else None
                    ),
                    "closed_period_count": len(state.period_transitions),
                    "opening_balance_count": len(state.opening_balances),
                },
            )
            return self._result(context, state)

    def preview_close(
        self,
        context: LedgerContext,
        fiscal_year_id: UUID,
        closing_date: date | None = None,
    ) -> ClosePreview:
        """Compute the closing lines read-only and list what blocks a close."""
        fiscal_year = self._get_fiscal_year(context, fiscal_year_id)
        closing_date = closing_date or fiscal_year.end_date
        blockers: list[str] = []

        if fiscal_year.status == PeriodStatus.CLOSED:
            blockers.append(f"fiscal year {fiscal_year.code} is already closed")
        open_count = sum(1 for p in fiscal_year.periods if p.status == PeriodStatus.OPEN)
        if open_count:
            blockers.append(f"{open_count} period(s) still open")
        if not fiscal_year.start_date <= closing_date <= fiscal_year.end_date:
            blockers.append(f"closing date {closing_date} outside fiscal year")

        balances = self._ledger.account_balances(
            context.organization_id, fiscal_year_id, _INCOME_STATEMENT_TYPES,
        )
        retained_earnings = None
        if fiscal_year.retained_earnings_account_id is not None:
            retained_earnings = self._session.get(Account, fiscal_year.retained_earnings_account_id)
        if retained_earnings is None:
            blockers.append("retained earnings account not configured")
            revenue, expense = income_statement_totals(balances)
            lines = tuple(build_closing_lines(balances))
        else:
            closing = compute_year_end_closing(balances, retained_earnings.id, retained_earnings.code)
            revenue, expense, lines = closing.revenue_total, closing.expense_total, closing.lines

        logger.info(
            "year_end_close_previewed",
            extra={
                "fiscal_year_id": str(fiscal_year_id),
                "net_income": str(revenue - expense),
                "blocker_count": len(blockers),
            },
        )
        return ClosePreview(
            fiscal_year_id=fiscal_year_id,
            closing_date=closing_date,
            revenue_total=revenue,
            expense_total=expense,
            net_income=revenue - expense,
            lines=lines,
            open_period_count=open_count,
            blockers=tuple(blockers),
        )

    # ------------------------------------------------------------------
    # Step sequencing
    # ------------------------------------------------------------------

    def _step_handlers(self) -> dict[CloseStep, Callable[[LedgerContext, _CloseState], None]]:
        return {
            CloseStep.COMPUTE_BALANCES: self._step_compute_balances,
            CloseStep.BUILD_CLOSING_LINES: self._step_build_closing_lines,
            CloseStep.ADD_RETAINED_EARNINGS_LINE: self._step_add_retained_earnings_line,
            CloseStep.POST_CLOSING_ENTRY: self._step_post_closing_entry,
            CloseStep.CLOSE_PERIODS: self._step_close_periods,
            CloseStep.CLOSE_FISCAL_YEAR: self._step_close_fiscal_year,
            CloseStep.SEED_OPENING_BALANCES: self._step_seed_opening_balances,
        }

    def _run_steps(self, context: LedgerContext, state: _CloseState) -> None:
        handlers = self._step_handlers()
        step = CLOSE_STEPS[0]
        try:
            with self._session.begin_nested():
                for step in CLOSE_STEPS:
                    handlers[step](context, state)
                    state.steps_completed.append(step)
                    logger.debug("close_step_completed", extra={"step": step.value})
        except LedgerKernelError as exc:
            logger.error(
                "year_end_close_failed",
                extra={"step": step.value, "error_code": exc.code, "reason": str(exc)},
            )
            raise
        except Exception as exc:
            logger.error(
                "year_end_close_failed",
                extra={"step": step.value, "error_code": YearEndCloseError.code, "reason": str(exc)},
            )
            raise YearEndCloseError(str(state.fiscal_year.id), step.value, str(exc)) from exc

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _step_compute_balances(self, context: LedgerContext, state: _CloseState) -> None:
        state.balances = self._ledger.account_balances(
            context.organization_id, state.fiscal_year.id, _INCOME_STATEMENT_TYPES,
        )
        state.revenue_total, state.expense_total = income_statement_totals(state.balances)

    def _step_build_closing_lines(self, context: LedgerContext, state: _CloseState) -> None:
        state.closing_lines = build_closing_lines(state.balances)

    def _step_add_retained_earnings_line(self, context: LedgerContext, state: _CloseState) -> None:
        line = retained_earnings_line(
            state.net_income, state.retained_earnings.id, state.retained_earnings.code,
        )
        if line is not None:
            state.closing_lines.append(line)

    def _step_post_closing_entry(self, context: LedgerContext, state: _CloseState) -> None:
        if not state.closing_lines:
            logger.info("closing_entry_skipped_no_activity")
            return

        period = last_regular_period([period_to_info(p) for p in state.periods])
        if period is None:
            raise PeriodNotFoundError(f"regular period of fiscal year {state.fiscal_year.id}")

        state.closing_entry = self._posting.post_system_entry(
            context,
            period_id=period.id,
            entry_date=state.closing_date,
            entry_type=EntryType.CLOSING,
            lines=[
                EntryLineInput(
                    account_id=line.account_id,
                    debit_amount=line.debit_amount,
                    credit_amount=line.credit_amount,
                    description=line.description,
                )
                for line in state.closing_lines
            ],
            description=f"Year-end closing entry {state.fiscal_year.code}",
            is_closing_entry=True,
            source_account_ids=[line.source_account_id for line in state.closing_lines],
        )

        residual = self._ledger.sum_closing_balance(
            context.organization_id, state.fiscal_year.id, _INCOME_STATEMENT_TYPES,
        )
        if residual != ZERO:
            raise YearEndCloseError(
                str(state.fiscal_year.id),
                CloseStep.POST_CLOSING_ENTRY.value,
                f"income statement accounts not zeroed, residual {residual}",
            )

    def _step_close_periods(self, context: LedgerContext, state: _CloseState) -> None:
        now = self._clock.now()
        for period in state.periods:
            current = PeriodStatus(period.status)
            if current == PeriodStatus.CLOSED:
                continue
            validate_transition(current, PeriodStatus.CLOSED, str(period.id))
            period.status = PeriodStatus.CLOSED.value
            period.closed_at = now
            period.closed_by_id = context.actor_id
            period.updated_by_id = context.actor_id
            state.period_transitions.append((period, current))
        self._flush("AccountingPeriod", state.fiscal_year.id)

    def _step_close_fiscal_year(self, context: LedgerContext, state: _CloseState) -> None:
        fiscal_year = state.fiscal_year
        state.closed_at = self._clock.now()
        fiscal_year.status = PeriodStatus.CLOSED.value
        fiscal_year.closing_entry_id = state.closing_entry.id if state.closing_entry else None
        fiscal_year.closed_at = state.closed_at
        fiscal_year.closed_by_id = context.actor_id
        fiscal_year.is_current = False
        fiscal_year.updated_by_id = context.actor_id
        self._flush("FiscalYear", fiscal_year.id)

    def _step_seed_opening_balances(self, context: LedgerContext, state: _CloseState) -> None:
        if not state.generate_opening_balances:
            return
        next_year = self._session.scalars(
            select(FiscalYear)
            .where(
                FiscalYear.organization_id == context.organization_id,
                FiscalYear.start_date > state.fiscal_year.end_date,
            )
            .order_by(FiscalYear.start_date)
        ).first()
        if next_year is None:
            logger.info("opening_balances_skipped_no_next_year")
            return
        if next_year.status == PeriodStatus.CLOSED:
            raise FiscalYearClosedError(str(next_year.id), "seed opening balances")
        state.next_fiscal_year = next_year

        balances = self._ledger.account_balances(
            context.organization_id, state.fiscal_year.id, BALANCE_SHEET_TYPES,
        )
        state.opening_balances = compute_opening_balances(balances)

        existing = {
            row.account_id: row
            for row in self._session.scalars(
                select(OpeningBalance).where(OpeningBalance.fiscal_year_id == next_year.id)
            )
        }
        rows = []
        for spec in state.opening_balances:
            row = existing.get(spec.account_id)
            if row is None:
                row = OpeningBalance(
                    organization_id=context.organization_id,
                    fiscal_year_id=next_year.id,
                    account_id=spec.account_id,
                    created_by_id=context.actor_id,
                )
                self._session.add(row)
            else:
                row.updated_by_id = context.actor_id
            row.source_fiscal_year_id = state.fiscal_year.id
            row.debit_balance = spec.debit_balance
            row.credit_balance = spec.credit_balance
            row.currency = context.base_currency
            rows.append(row)
        self._session.flush()
        state.opening_balance_ids = [row.id for row in rows]

    # ------------------------------------------------------------------
    # Evidence
    # ------------------------------------------------------------------

    def _emit_audit(self, context: LedgerContext, state: _CloseState) -> None:
        if state.closing_entry is not None:
            self._auditor.record_entry_posted(
                context, state.closing_entry.id, EntryStatus.DRAFT.value, state.closing_entry.period_id,
            )
        for period, from_status in state.period_transitions:
            self._auditor.record_period_transition(
                context, period.id, from_status.value, PeriodStatus.CLOSED.value,
            )
        self._auditor.record_fiscal_year_closed(
            context,
            state.fiscal_year.id,
            state.previous_year_status.value,
            state.closing_entry.id if state.closing_entry else None,
            str(state.net_income),
        )
        if state.next_fiscal_year is not None:
            self._auditor.record_opening_balances(
                context, state.next_fiscal_year.id, state.fiscal_year.id, len(state.opening_balances),
            )

    def _result(self, context: LedgerContext, state: _CloseState) -> YearEndCloseResult:
        entry = state.closing_entry
        return YearEndCloseResult(
            fiscal_year_id=state.fiscal_year.id,
            correlation_id=context.correlation_id,
            closing_date=state.closing_date,
            revenue_total=state.revenue_total,
            expense_total=state.expense_total,
            net_income=state.net_income,
            total_debit=sum((line.debit_amount for line in state.closing_lines), ZERO),
            total_credit=sum((line.credit_amount for line in state.closing_lines), ZERO),
            closing_entry_id=entry.id if entry else None,
            closing_entry_number=entry.entry_number if entry else None,
            closed_at=state.closed_at,
            change_set=ChangeSet(
                fiscal_year_id=state.fiscal_year.id,
                closing_entry_id=entry.id if entry else None,
                closed_period_ids=tuple(period.id for period, _ in state.period_transitions),
                opening_balance_ids=tuple(state.opening_balance_ids),
                next_fiscal_year_id=state.next_fiscal_year.id if state.next_fiscal_year else None,
            ),
            opening_balances=tuple(state.opening_balances),
            steps_completed=tuple(state.steps_completed),
        )

    # ------------------------------------------------------------------
    # Loading and locking
    # ------------------------------------------------------------------

    def _flush(self, entity_type: str, entity_id: UUID) -> None:
        try:
            self._session.flush()
        except StaleDataError as exc:
            raise OptimisticLockError(entity_type, str(entity_id)) from exc

    def _get_fiscal_year(self, context: LedgerContext, fiscal_year_id: UUID) -> FiscalYear:
        fiscal_year = self._session.scalars(
            select(FiscalYear).where(
                FiscalYear.id == fiscal_year_id,
                FiscalYear.organization_id == context.organization_id,
            )
        ).first()
        if fiscal_year is None:
            raise FiscalYearNotFoundError(str(fiscal_year_id))
        return fiscal_year

    def _lock_fiscal_year(self, context: LedgerContext, fiscal_year_id: UUID) -> FiscalYear:
        fiscal_year = self._session.scalars(
            select(FiscalYear)
            .where(
                FiscalYear.id == fiscal_year_id,
                FiscalYear.organization_id == context.organization_id,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).first()
        if fiscal_year is None:
            raise FiscalYearNotFoundError(str(fiscal_year_id))
        return fiscal_year

    def _lock_periods(self, fiscal_year_id: UUID) -> list[AccountingPeriod]:
        return list(self._session.scalars(
            select(AccountingPeriod)
            .where(AccountingPeriod.fiscal_year_id == fiscal_year_id)
            .order_by(AccountingPeriod.period_number)
            .with_for_update()
            .execution_options(populate_existing=True)
        ))

    def _retained_earnings_account(self, context: LedgerContext, fiscal_year: FiscalYear) -> Account:
        if fiscal_year.retained_earnings_account_id is None:
            raise AccountNotFoundError(f"retained earnings account of fiscal year {fiscal_year.code}")
        account = self._session.scalars(
            select(Account).where(
                Account.id == fiscal_year.retained_earnings_account_id,
                Account.organization_id == context.organization_id,
            )
        ).first()
        if account is None:
            raise AccountNotFoundError(str(fiscal_year.retained_earnings_account_id))
        return account

