"""
PeriodService -- fiscal year and accounting period lifecycle.

Responsibility:
    Creates fiscal years with their monthly periods and the optional
    adjusting period 13, drives period status transitions, keeps the fiscal
    year status in step with its periods and answers period lookups and
    fiscal year statistics.  Also renames, deletes and marks the current
    fiscal year.

Architecture position:
    Kernel > Services -- imperative shell over
    ``ledger_kernel.domain.period_lifecycle``.  The YearEndCloseOrchestrator
    in ledger_services/ is the only other writer of period status.

Invariants enforced:
    - Only transitions in LEGAL_TRANSITIONS are applied; CLOSED -> OPEN is
      rejected.
    - A period cannot be CLOSED while DRAFT/PENDING entries are attached,
      unless ``override=True``; the override is stored on the period, in
      the audit record and in a WARNING log line.
    - Periods of a CLOSED fiscal year never change status here.
    - Fiscal years of an organization never overlap.
    - Concurrent transitions of one period are linearized: the row is read
      with SELECT ... FOR UPDATE and written with an optimistic version
      check; the loser gets OptimisticLockError or sees the new status.
    - Flush-only: never commits or rolls back the session.

Failure modes:
    - InvalidPeriodTransitionError, PendingEntriesError,
      FiscalYearClosedError, OptimisticLockError on transitions.
    - FiscalYearOverlapError, DuplicateFiscalYearError,
      InvalidFiscalYearError, AccountNotFoundError on year creation.
    - AdjustingPeriodExistsError on a second adjusting period.
    - FiscalYearNotEmptyError when deleting a year that holds entries;
      FiscalYearNotOpenError when a non-OPEN year is made current.
    - PeriodNotFoundError / FiscalYearNotFoundError on lookups.

Audit relevance:
    Every status change is reported to the audit sink with before/after
    status and logged as ``period_transitioned``.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.context import LedgerContext
from ledger_kernel.domain.dtos import FiscalYearInfo, FiscalYearStatistics, PeriodInfo
from ledger_kernel.domain.period_lifecycle import (
    PeriodSpec,
    adjusting_period_spec,
    aggregate_year_status,
    generate_periods as generate_period_specs,
    validate_transition,
)
from ledger_kernel.domain.types import PeriodStatus, PeriodType
from ledger_kernel.exceptions import (
    AccountNotFoundError,
    AdjustingPeriodExistsError,
    DuplicateFiscalYearError,
    FiscalYearClosedError,
    FiscalYearNotEmptyError,
    FiscalYearNotFoundError,
    FiscalYearNotOpenError,
    FiscalYearOverlapError,
    InvalidFiscalYearError,
    OptimisticLockError,
    PendingEntriesError,
    PeriodNotFoundError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.account import Account
from ledger_kernel.models.fiscal_year import AccountingPeriod, FiscalYear
from ledger_kernel.selectors.ledger_selector import LedgerSelector
from ledger_kernel.selectors.reference_selector import (
    ReferenceSelector,
    fiscal_year_to_info,
    period_to_info,
)
from ledger_kernel.services.auditor_service import AuditorService
from ledger_kernel.services.base import BaseService

logger = get_logger("services.period")


def _audit_value(value):
    return str(value) if isinstance(value, UUID) else value


class PeriodService(BaseService[AccountingPeriod]):
    """
    Service for the fiscal year and period lifecycle.

    Contract:
        Public methods take the request's LedgerContext, act within its
        organization and return frozen DTOs.  Lifecycle methods flush
        within the caller's transaction.

    Guarantees:
        - Period status changes are serialized per period via
          ``SELECT ... FOR UPDATE`` plus the ``version`` column.
        - The fiscal year's status is re-aggregated after every change
          (OPEN while any period is OPEN, otherwise SOFT_CLOSED).

    Non-goals:
        - Does NOT close fiscal years (YearEndCloseOrchestrator).
        - Does NOT call ``session.commit()``.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        auditor: AuditorService | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._auditor = auditor or AuditorService(clock=self._clock)
        self._reference = ReferenceSelector(session)
        self._ledger = LedgerSelector(session)

    # ------------------------------------------------------------------
    # Fiscal years
    # ------------------------------------------------------------------

    def create_fiscal_year(
        self,
        context: LedgerContext,
        code: str,
        name: str,
        start_date: date,
        end_date: date,
        retained_earnings_account_id: UUID | None,
        is_calendar: bool = False,
        generate_periods: bool = True,
    ) -> FiscalYearInfo:
        """
        Create a fiscal year and, by default, its monthly periods.

        Raises:
            InvalidFiscalYearError: Bad date range (see generate_periods).
            DuplicateFiscalYearError: Code already used.
            FiscalYearOverlapError: Range overlaps an existing year.
            AccountNotFoundError: Retained earnings account not found.
        """
        if end_date <= start_date:
            raise InvalidFiscalYearError(f"end date {end_date} must be after start date {start_date}")
        specs: list[PeriodSpec] = (
            generate_period_specs(start_date, end_date, is_calendar)
            if generate_periods else []
        )

        existing_code = self.session.scalars(
            select(FiscalYear.id).where(
                FiscalYear.organization_id == context.organization_id,
                FiscalYear.code == code,
            )
        ).first()
        if existing_code is not None:
            raise DuplicateFiscalYearError(code)

        overlapping = self.session.scalars(
            select(FiscalYear).where(
                FiscalYear.organization_id == context.organization_id,
                FiscalYear.start_date <= end_date,
                FiscalYear.end_date >= start_date,
            )
        ).first()
        if overlapping is not None:
            raise FiscalYearOverlapError(
                code,
                overlapping.code,
                str(max(start_date, overlapping.start_date)),
                str(min(end_date, overlapping.end_date)),
            )

        if retained_earnings_account_id is not None:
            self._require_account(context, retained_earnings_account_id)

        fiscal_year = FiscalYear(
            organization_id=context.organization_id,
            code=code,
            name=name,
            start_date=start_date,
            end_date=end_date,
            is_calendar=is_calendar,
            is_current=False,
            status=PeriodStatus.OPEN.value,
            retained_earnings_account_id=retained_earnings_account_id,
            created_by_id=context.actor_id,
        )
        for spec in specs:
            fiscal_year.periods.append(self._new_period(context, spec))
        self.session.add(fiscal_year)
        self.session.flush()

        self._auditor.record_fiscal_year_created(context, fiscal_year.id, code, len(specs))
        logger.info(
            "fiscal_year_created",
            extra={
                "fiscal_year_id": str(fiscal_year.id),
                "fiscal_year_code": code,
                "start_date": str(start_date),
                "end_date": str(end_date),
                "period_count": len(specs),
            },
        )
        return fiscal_year_to_info(fiscal_year)

    def create_adjusting_period(self, context: LedgerContext, fiscal_year_id: UUID) -> PeriodInfo:
        """
        Create period 13 (ADJUSTING) on the fiscal year's end date.

        Raises:
            FiscalYearClosedError: Year is CLOSED.
            AdjustingPeriodExistsError: Year already has one.
        """
        fiscal_year = self._get_fiscal_year_for_update(context, fiscal_year_id)
        if fiscal_year.status == PeriodStatus.CLOSED:
            raise FiscalYearClosedError(str(fiscal_year_id), "create adjusting period")
        if any(p.period_type == PeriodType.ADJUSTING for p in fiscal_year.periods):
            raise AdjustingPeriodExistsError(str(fiscal_year_id))

        period = self._new_period(context, adjusting_period_spec(fiscal_year.end_date))
        fiscal_year.periods.append(period)
        self._sync_year_status(context, fiscal_year)
        self._flush("FiscalYear", fiscal_year_id)

        self._auditor.record_period_created(
            context, period.id, period.period_number, PeriodType.ADJUSTING.value,
        )
        logger.info(
            "adjusting_period_created",
            extra={"fiscal_year_id": str(fiscal_year_id), "period_id": str(period.id)},
        )
        return period_to_info(period)

    def get_fiscal_year(self, context: LedgerContext, fiscal_year_id: UUID) -> FiscalYearInfo:
        return fiscal_year_to_info(self._get_fiscal_year(context, fiscal_year_id))

    def list_fiscal_years(
        self,
        context: LedgerContext,
        status: PeriodStatus | None = None,
    ) -> list[FiscalYearInfo]:
        stmt = select(FiscalYear).where(FiscalYear.organization_id == context.organization_id)
        if status is not None:
            stmt = stmt.where(FiscalYear.status == PeriodStatus(status).value)
        return [fiscal_year_to_info(fy) for fy in self.session.scalars(stmt.order_by(FiscalYear.start_date))]

    def get_fiscal_year_statistics(self, context: LedgerContext, fiscal_year_id: UUID) -> FiscalYearStatistics:
        fiscal_year = self._get_fiscal_year(context, fiscal_year_id)
        statuses = [PeriodStatus(p.status) for p in fiscal_year.periods]
        totals = self._ledger.posted_totals(context.organization_id, fiscal_year_id)
        return FiscalYearStatistics(
            fiscal_year_id=fiscal_year_id,
            total_periods=len(statuses),
            open_periods=statuses.count(PeriodStatus.OPEN),
            soft_closed_periods=statuses.count(PeriodStatus.SOFT_CLOSED),
            closed_periods=statuses.count(PeriodStatus.CLOSED),
            journal_entry_count=totals.entry_count,
            total_debit=totals.total_debit,
            total_credit=totals.total_credit,
        )

    def update_fiscal_year(
        self,
        context: LedgerContext,
        fiscal_year_id: UUID,
        *,
        name: str | None = None,
        code: str | None = None,
        retained_earnings_account_id: UUID | None = None,
    ) -> FiscalYearInfo:
        """
        Rename or re-code a fiscal year, or change its retained earnings account.

        Arguments left as None are not changed.  An update that changes
        nothing writes no audit record.

        Raises:
            FiscalYearNotFoundError: Year not in the organization.
            FiscalYearClosedError: Year is CLOSED.
            DuplicateFiscalYearError: ``code`` used by another year.
            AccountNotFoundError: Retained earnings account not found.
        """
        fiscal_year = self._get_fiscal_year_for_update(context, fiscal_year_id)
        if fiscal_year.status == PeriodStatus.CLOSED:
            raise FiscalYearClosedError(str(fiscal_year_id), "update fiscal year")

        changes: dict = {}
        if name is not None and name != fiscal_year.name:
            changes["name"] = name
        if code is not None and code != fiscal_year.code:
            taken = self.session.scalars(
                select(FiscalYear.id).where(
                    FiscalYear.organization_id == context.organization_id,
                    FiscalYear.code == code,
                    FiscalYear.id != fiscal_year_id,
                )
            ).first()
            if taken is not None:
                raise DuplicateFiscalYearError(code)
            changes["code"] = code
        if (
            retained_earnings_account_id is not None
            and retained_earnings_account_id != fiscal_year.retained_earnings_account_id
        ):
            self._require_account(context, retained_earnings_account_id)
            changes["retained_earnings_account_id"] = retained_earnings_account_id

        if not changes:
            return fiscal_year_to_info(fiscal_year)

        before = {key: _audit_value(getattr(fiscal_year, key)) for key in changes}
        for key, value in changes.items():
            setattr(fiscal_year, key, value)
        fiscal_year.updated_by_id = context.actor_id
        self._flush("FiscalYear", fiscal_year_id)

        after = {key: _audit_value(value) for key, value in changes.items()}
        self._auditor.record_fiscal_year_updated(context, fiscal_year_id, before, after)
        logger.info(
            "fiscal_year_updated",
            extra={"fiscal_year_id": str(fiscal_year_id), "changed_fields": sorted(changes)},
        )
        return fiscal_year_to_info(fiscal_year)

    def delete_fiscal_year(self, context: LedgerContext, fiscal_year_id: UUID) -> None:
        """
        Delete a fiscal year and its periods.

        Only a year without journal entries and opening balances can be
        deleted; anything else must be closed instead.

        Raises:
            FiscalYearNotFoundError: Year not in the organization.
            FiscalYearClosedError: Year is CLOSED.
            FiscalYearNotEmptyError: Year holds entries or opening balances.
        """
        fiscal_year = self._get_fiscal_year_for_update(context, fiscal_year_id)
        if fiscal_year.status == PeriodStatus.CLOSED:
            raise FiscalYearClosedError(str(fiscal_year_id), "delete fiscal year")

        entry_count = self._ledger.count_entries(fiscal_year_id)
        opening_count = self._ledger.count_opening_balances(fiscal_year_id)
        if entry_count or opening_count:
            logger.warning(
                "fiscal_year_delete_refused",
                extra={
                    "fiscal_year_id": str(fiscal_year_id),
                    "entry_count": entry_count,
                    "opening_balance_count": opening_count,
                },
            )
            raise FiscalYearNotEmptyError(str(fiscal_year_id), entry_count, opening_count)

        code = fiscal_year.code
        period_count = len(fiscal_year.periods)
        self.session.delete(fiscal_year)
        self._flush("FiscalYear", fiscal_year_id)

        self._auditor.record_fiscal_year_deleted(context, fiscal_year_id, code, period_count)
        logger.info(
            "fiscal_year_deleted",
            extra={"fiscal_year_id": str(fiscal_year_id), "fiscal_year_code": code},
        )

    def set_current_fiscal_year(self, context: LedgerContext, fiscal_year_id: UUID) -> FiscalYearInfo:
        """
        Make an OPEN fiscal year the organization's current year.

        The previous current year, if any, loses the flag in the same flush.

        Raises:
            FiscalYearNotFoundError: Year not in the organization.
            FiscalYearNotOpenError: Year is SOFT_CLOSED or CLOSED.
        """
        fiscal_year = self._get_fiscal_year_for_update(context, fiscal_year_id)
        status = PeriodStatus(fiscal_year.status)
        if status != PeriodStatus.OPEN:
            raise FiscalYearNotOpenError(str(fiscal_year_id), status.value)
        if fiscal_year.is_current:
            return fiscal_year_to_info(fiscal_year)

        previous = self.session.scalars(
            select(FiscalYear)
            .where(
                FiscalYear.organization_id == context.organization_id,
                FiscalYear.is_current.is_(True),
            )
            .with_for_update()
        ).all()
        for other in previous:
            other.is_current = False
            other.updated_by_id = context.actor_id
        fiscal_year.is_current = True
        fiscal_year.updated_by_id = context.actor_id
        self._flush("FiscalYear", fiscal_year_id)

        previous_id = previous[0].id if previous else None
        self._auditor.record_current_fiscal_year(context, fiscal_year_id, previous_id)
        logger.info(
            "current_fiscal_year_set",
            extra={
                "fiscal_year_id": str(fiscal_year_id),
                "previous_current_id": str(previous_id) if previous_id else None,
            },
        )
        return fiscal_year_to_info(fiscal_year)

    def get_current_fiscal_year(self, context: LedgerContext) -> FiscalYearInfo | None:
        fiscal_year = self.session.scalars(
            select(FiscalYear).where(
                FiscalYear.organization_id == context.organization_id,
                FiscalYear.is_current.is_(True),
            )
        ).first()
        return fiscal_year_to_info(fiscal_year) if fiscal_year is not None else None

    # ------------------------------------------------------------------
    # Periods
    # ------------------------------------------------------------------

    def list_periods(self, context: LedgerContext, fiscal_year_id: UUID) -> list[PeriodInfo]:
        self._get_fiscal_year(context, fiscal_year_id)
        return self._reference.get_periods(fiscal_year_id)

    def get_period(self, context: LedgerContext, period_id: UUID) -> PeriodInfo:
        return period_to_info(self._get_period(context, period_id))

    def get_period_for_date(self, context: LedgerContext, on_date: date) -> PeriodInfo | None:
        """REGULAR period covering ``on_date``, or None."""
        return self._reference.get_regular_period_for_date(context.organization_id, on_date)

    def transition_period(
        self,
        context: LedgerContext,
        period_id: UUID,
        requested: PeriodStatus,
        *,
        override: bool = False,
    ) -> PeriodInfo:
        """
        Move a period to ``requested`` status.

        Args:
            context: Request context.
            period_id: Period to transition.
            requested: Target status.
            override: Close even though DRAFT/PENDING entries remain.

        Raises:
            PeriodNotFoundError: Period not in the organization.
            FiscalYearClosedError: The period's fiscal year is CLOSED.
            InvalidPeriodTransitionError: Transition not legal.
            PendingEntriesError: Unposted entries and no override.
            OptimisticLockError: Concurrent modification detected.
        """
        requested = PeriodStatus(requested)
        with LogContext.bind(**context.log_fields()):
            period = self._get_period_for_update(context, period_id)
            fiscal_year = period.fiscal_year
            if fiscal_year.status == PeriodStatus.CLOSED:
                raise FiscalYearClosedError(str(fiscal_year.id), "change period status")

            current = PeriodStatus(period.status)
            validate_transition(current, requested, str(period_id))

            pending = 0
            if requested == PeriodStatus.CLOSED:
                pending = self._ledger.count_unposted_entries(period_id)
                if pending and not override:
                    logger.warning(
                        "period_close_blocked_by_pending_entries",
                        extra={"period_id": str(period_id), "pending_count": pending},
                    )
                    raise PendingEntriesError(str(period_id), pending)

            period.status = requested.value
            period.updated_by_id = context.actor_id
            if requested == PeriodStatus.CLOSED:
                period.closed_at = self._clock.now()
                period.closed_by_id = context.actor_id
                if pending:
                    period.closed_with_override = True
                    logger.warning(
                        "period_closed_with_override",
                        extra={"period_id": str(period_id), "pending_count": pending},
                    )
            elif current == PeriodStatus.CLOSED:
                period.closed_at = None
                period.closed_by_id = None

            self._flush("AccountingPeriod", period_id)
            self._sync_year_status(context, fiscal_year)
            self._flush("FiscalYear", fiscal_year.id)

            self._auditor.record_period_transition(
                context,
                period.id,
                current.value,
                requested.value,
                override=bool(pending),
                pending_entries=pending,
            )
            logger.info(
                "period_transitioned",
                extra={
                    "period_id": str(period_id),
                    "period_number": period.period_number,
                    "from_status": current.value,
                    "to_status": requested.value,
                    "override": bool(pending),
                },
            )
            return period_to_info(period)

    def soft_close_period(self, context: LedgerContext, period_id: UUID) -> PeriodInfo:
        return self.transition_period(context, period_id, PeriodStatus.SOFT_CLOSED)

    def close_period(self, context: LedgerContext, period_id: UUID, *, override: bool = False) -> PeriodInfo:
        return self.transition_period(context, period_id, PeriodStatus.CLOSED, override=override)

    def reopen_period(self, context: LedgerContext, period_id: UUID) -> PeriodInfo:
        """One step back: CLOSED -> SOFT_CLOSED, SOFT_CLOSED -> OPEN."""
        current = PeriodStatus(self._get_period(context, period_id).status)
        target = PeriodStatus.SOFT_CLOSED if current == PeriodStatus.CLOSED else PeriodStatus.OPEN
        return self.transition_period(context, period_id, target)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_account(self, context: LedgerContext, account_id: UUID) -> None:
        account = self.session.scalars(
            select(Account.id).where(
                Account.organization_id == context.organization_id,
                Account.id == account_id,
            )
        ).first()
        if account is None:
            raise AccountNotFoundError(str(account_id))

    def _new_period(self, context: LedgerContext, spec: PeriodSpec) -> AccountingPeriod:
        return AccountingPeriod(
            period_number=spec.period_number,
            name=spec.name,
            start_date=spec.start_date,
            end_date=spec.end_date,
            status=PeriodStatus.OPEN.value,
            period_type=spec.period_type.value,
            posted_entry_count=0,
            closed_with_override=False,
            created_by_id=context.actor_id,
        )

    def _sync_year_status(self, context: LedgerContext, fiscal_year: FiscalYear) -> None:
        current = PeriodStatus(fiscal_year.status)
        aggregated = aggregate_year_status(p.status for p in fiscal_year.periods)
        if aggregated == current:
            return
        fiscal_year.status = aggregated.value
        fiscal_year.updated_by_id = context.actor_id
        self._auditor.record_fiscal_year_status_change(
            context, fiscal_year.id, current.value, aggregated.value,
        )
        logger.info(
            "fiscal_year_status_changed",
            extra={
                "fiscal_year_id": str(fiscal_year.id),
                "from_status": current.value,
                "to_status": aggregated.value,
            },
        )

    def _flush(self, entity_type: str, entity_id: UUID) -> None:
        try:
            self.session.flush()
        except StaleDataError as exc:
            logger.warning(
                "optimistic_lock_conflict",
                extra={"entity_type": entity_type, "entity_id": str(entity_id)},
            )
            raise OptimisticLockError(entity_type, str(entity_id)) from exc

    def _get_fiscal_year(self, context: LedgerContext, fiscal_year_id: UUID) -> FiscalYear:
        fiscal_year = self.session.scalars(
            select(FiscalYear).where(
                FiscalYear.id == fiscal_year_id,
                FiscalYear.organization_id == context.organization_id,
            )
        ).first()
        if fiscal_year is None:
            raise FiscalYearNotFoundError(str(fiscal_year_id))
        return fiscal_year

    def _get_fiscal_year_for_update(self, context: LedgerContext, fiscal_year_id: UUID) -> FiscalYear:
        fiscal_year = self.session.scalars(
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

    def _get_period(self, context: LedgerContext, period_id: UUID) -> AccountingPeriod:
        period = self.session.scalars(
            select(AccountingPeriod)
            .join(FiscalYear, FiscalYear.id == AccountingPeriod.fiscal_year_id)
            .where(
                AccountingPeriod.id == period_id,
                FiscalYear.organization_id == context.organization_id,
            )
        ).first()
        if period is None:
            raise PeriodNotFoundError(str(period_id))
        return period

    def _get_period_for_update(self, context: LedgerContext, period_id: UUID) -> AccountingPeriod:
        """Lock the period row and refresh it from the database."""
        period = self.session.scalars(
            select(AccountingPeriod)
            .join(FiscalYear, FiscalYear.id == AccountingPeriod.fiscal_year_id)
            .where(
                AccountingPeriod.id == period_id,
                FiscalYear.organization_id == context.organization_id,
            )
            .with_for_update(of=AccountingPeriod)
            .execution_options(populate_existing=True)
        ).first()
        if period is None:
            raise PeriodNotFoundError(str(period_id))
        return period

