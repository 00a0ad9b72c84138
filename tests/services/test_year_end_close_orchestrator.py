"""
YearEndCloseOrchestrator: atomic year-end close.

Covers the happy path (closing entry, period and year closure, opening
balances), every precondition, rollback of a failing step and the audit
trail emitted only after success.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from ledger_kernel.domain.types import (
    BALANCE_SHEET_TYPES,
    EXPENSE_TYPES,
    REVENUE_TYPES,
    EntryStatus,
    EntryType,
    PeriodStatus,
)
from ledger_kernel.exceptions import (
    AccountNotFoundError,
    FiscalYearAlreadyClosedError,
    FiscalYearClosedError,
    FiscalYearNotFoundError,
    InvalidFiscalYearError,
    OpenPeriodsError,
    OptimisticLockError,
    YearEndCloseError,
)
from ledger_kernel.models.fiscal_year import AccountingPeriod
from ledger_kernel.models.journal import JournalEntry
from ledger_kernel.models.opening_balance import OpeningBalance
from ledger_kernel.selectors.ledger_selector import LedgerSelector
from ledger_kernel.services.auditor_service import AuditAction
from ledger_services import YearEndCloseOrchestrator
from ledger_services._close_types import CLOSE_STEPS, CloseStep


@pytest.fixture
def profitable_2024(fiscal_year_2024, standard_accounts, line_factory, post_entry):
    """FY2024 with 100 000 revenue, 75 000 costs and 100 000 share capital."""
    debit, credit = line_factory
    a = standard_accounts
    post_entry(date(2024, 1, 10), [debit(a["cash"], "100000"), credit(a["capital"], "100000")])
    post_entry(date(2024, 2, 14), [debit(a["receivables"], "100000"), credit(a["sales"], "100000")])
    post_entry(date(2024, 3, 20), [debit(a["costs"], "75000"), credit(a["cash"], "75000")])
    return fiscal_year_2024


def _closing_entries(session):
    return session.scalars(
        select(JournalEntry).where(JournalEntry.is_closing_entry.is_(True))
    ).all()


class TestCloseFiscalYear:

    def test_profit_year(
        self, session, year_end_orchestrator, period_service, posting_service,
        ledger_context, profitable_2024, soft_close_all, deterministic_clock,
    ):
        soft_close_all(profitable_2024.id)

        result = year_end_orchestrator.close_fiscal_year(ledger_context, profitable_2024.id)

        assert result.revenue_total == Decimal("100000")
        assert result.expense_total == Decimal("75000")
        assert result.net_income == Decimal("25000")
        assert result.total_debit == result.total_credit == Decimal("100000")
        assert result.closing_entry_number == "CL/2024/12/0001"
        assert result.closing_date == date(2024, 12, 31)
        assert result.closed_at == deterministic_clock.now()
        assert result.steps_completed == CLOSE_STEPS

        entry = posting_service.get_entry(ledger_context, result.closing_entry_id)
        assert entry.status == EntryStatus.POSTED
        assert entry.entry_type == EntryType.CLOSING
        assert entry.is_closing_entry
        december = period_service.get_period_for_date(ledger_context, date(2024, 12, 31))
        assert entry.period_id == december.id

        fiscal_year = period_service.get_fiscal_year(ledger_context, profitable_2024.id)
        assert fiscal_year.status == PeriodStatus.CLOSED
        assert fiscal_year.closing_entry_id == result.closing_entry_id
        periods = period_service.list_periods(ledger_context, profitable_2024.id)
        assert {p.status for p in periods} == {PeriodStatus.CLOSED}

        residual = LedgerSelector(session).sum_closing_balance(
            ledger_context.organization_id, profitable_2024.id, REVENUE_TYPES | EXPENSE_TYPES,
        )
        assert residual == Decimal("0")

    def test_closing_lines_reference_source_accounts(
        self, session, year_end_orchestrator, ledger_context, profitable_2024, soft_close_all, standard_accounts,
    ):
        soft_close_all(profitable_2024.id)
        result = year_end_orchestrator.close_fiscal_year(ledger_context, profitable_2024.id)

        entry = session.get(JournalEntry, result.closing_entry_id)
        by_account = {line.account_id: line for line in entry.lines}
        costs = by_account[standard_accounts["costs"].id]
        assert costs.credit_amount == Decimal("75000")
        assert costs.source_account_id == standard_accounts["costs"].id
        retained = by_account[standard_accounts["retained_earnings"].id]
        assert retained.credit_amount == Decimal("25000")
        assert retained.source_account_id is None

    def test_loss_year_debits_retained_earnings(
        self, session, year_end_orchestrator, ledger_context, fiscal_year_2024,
        standard_accounts, line_factory, post_entry, soft_close_all,
    ):
        debit, credit = line_factory
        a = standard_accounts
        post_entry(date(2024, 5, 5), [debit(a["cash"], "4000"), credit(a["sales"], "4000")])
        post_entry(date(2024, 6, 6), [debit(a["other_costs"], "6500"), credit(a["cash"], "6500")])
        soft_close_all(fiscal_year_2024.id)

        result = year_end_orchestrator.close_fiscal_year(ledger_context, fiscal_year_2024.id)

        assert result.net_income == Decimal("-2500")
        entry = session.get(JournalEntry, result.closing_entry_id)
        retained = next(line for line in entry.lines if line.account_id == a["retained_earnings"].id)
        assert retained.debit_amount == Decimal("2500")

    def test_year_without_activity(
        self, session, year_end_orchestrator, period_service, ledger_context, fiscal_year_2024, soft_close_all,
    ):
        soft_close_all(fiscal_year_2024.id)

        result = year_end_orchestrator.close_fiscal_year(ledger_context, fiscal_year_2024.id)

        assert result.closing_entry_id is None
        assert result.closing_entry_number is None
        assert result.net_income == Decimal("0")
        assert _closing_entries(session) == []
        assert period_service.get_fiscal_year(ledger_context, fiscal_year_2024.id).status == PeriodStatus.CLOSED

    def test_custom_closing_date(self, year_end_orchestrator, ledger_context, profitable_2024, soft_close_all):
        soft_close_all(profitable_2024.id)
        result = year_end_orchestrator.close_fiscal_year(
            ledger_context, profitable_2024.id, closing_date=date(2024, 12, 30),
        )
        assert result.closing_date == date(2024, 12, 30)
        assert result.closing_entry_number == "CL/2024/12/0001"

    def test_already_closed_periods_are_kept(
        self, year_end_orchestrator, period_service, ledger_context, profitable_2024, soft_close_all,
    ):
        soft_close_all(profitable_2024.id)
        january = period_service.list_periods(ledger_context, profitable_2024.id)[0]
        period_service.close_period(ledger_context, january.id)

        result = year_end_orchestrator.close_fiscal_year(ledger_context, profitable_2024.id)

        assert len(result.change_set.closed_period_ids) == 11
        assert january.id not in result.change_set.closed_period_ids

    def test_adjusting_period_closed_but_not_used_for_closing_entry(
        self, year_end_orchestrator, period_service, posting_service, ledger_context, profitable_2024, soft_close_all,
    ):
        adjusting = period_service.create_adjusting_period(ledger_context, profitable_2024.id)
        soft_close_all(profitable_2024.id)

        result = year_end_orchestrator.close_fiscal_year(ledger_context, profitable_2024.id)

        assert adjusting.id in result.change_set.closed_period_ids
        entry = posting_service.get_entry(ledger_context, result.closing_entry_id)
        assert entry.period_id != adjusting.id

    def test_change_set(self, year_end_orchestrator, ledger_context, profitable_2024, fiscal_year_2025, soft_close_all):
        soft_close_all(profitable_2024.id)

        result = year_end_orchestrator.close_fiscal_year(ledger_context, profitable_2024.id)

        change_set = result.change_set
        assert change_set.fiscal_year_id == profitable_2024.id
        assert change_set.closing_entry_id == result.closing_entry_id
        assert len(change_set.closed_period_ids) == 12
        assert len(change_set.opening_balance_ids) == 4
        assert change_set.next_fiscal_year_id == fiscal_year_2025.id
        assert change_set.record_count == 18


class TestPreconditions:

    def test_open_periods_block_close(self, year_end_orchestrator, ledger_context, profitable_2024):
        with pytest.raises(OpenPeriodsError) as exc_info:
            year_end_orchestrator.close_fiscal_year(ledger_context, profitable_2024.id)

        assert exc_info.value.open_period_count == 12
        assert exc_info.value.code == "OPEN_PERIODS"

    def test_open_period_numbers_reported(
        self, session, year_end_orchestrator, period_service, ledger_context, profitable_2024,
    ):
        for period in period_service.list_periods(ledger_context, profitable_2024.id)[:11]:
            period_service.soft_close_period(ledger_context, period.id)

        with pytest.raises(OpenPeriodsError) as exc_info:
            year_end_orchestrator.close_fiscal_year(ledger_context, profitable_2024.id)

        assert exc_info.value.open_period_count == 1
        assert exc_info.value.open_period_numbers == (12,)
        assert _closing_entries(session) == []

    def test_second_close_rejected(self, year_end_orchestrator, ledger_context, profitable_2024, soft_close_all):
        soft_close_all(profitable_2024.id)
        year_end_orchestrator.close_fiscal_year(ledger_context, profitable_2024.id)

        with pytest.raises(FiscalYearAlreadyClosedError) as exc_info:
            year_end_orchestrator.close_fiscal_year(ledger_context, profitable_2024.id)
        assert exc_info.value.fiscal_year_id == str(profitable_2024.id)

    def test_closing_date_outside_year(self, year_end_orchestrator, ledger_context, profitable_2024, soft_close_all):
        soft_close_all(profitable_2024.id)
        with pytest.raises(InvalidFiscalYearError):
            year_end_orchestrator.close_fiscal_year(
                ledger_context, profitable_2024.id, closing_date=date(2025, 1, 1),
            )

    def test_missing_retained_earnings_account(
        self, year_end_orchestrator, period_service, ledger_context, soft_close_all,
    ):
        fiscal_year = period_service.create_fiscal_year(
            ledger_context,
            code="FY2026",
            name="Fiscal year 2026",
            start_date=date(2026, 1, 1),
            end_date=date(2026, 12, 31),
            retained_earnings_account_id=None,
        )
        soft_close_all(fiscal_year.id)

        with pytest.raises(AccountNotFoundError):
            year_end_orchestrator.close_fiscal_year(ledger_context, fiscal_year.id)
        assert period_service.get_fiscal_year(ledger_context, fiscal_year.id).status == PeriodStatus.SOFT_CLOSED

    def test_unknown_fiscal_year(self, year_end_orchestrator, ledger_context):
        with pytest.raises(FiscalYearNotFoundError):
            year_end_orchestrator.close_fiscal_year(ledger_context, uuid4())


class _FailingOrchestrator(YearEndCloseOrchestrator):
    """Raises inside the fiscal year step, after the entry and periods are written."""

    def __init__(self, *args, error: Exception, **kwargs):
        super().__init__(*args, **kwargs)
        self._error = error

    def _step_close_fiscal_year(self, context, state):
        raise self._error


class TestAtomicity:

    @pytest.fixture
    def failing_orchestrator(self, session, posting_service, auditor_service, deterministic_clock):
        def _build(error):
            return _FailingOrchestrator(
                session,
                posting_service=posting_service,
                auditor=auditor_service,
                clock=deterministic_clock,
                error=error,
            )
        return _build

    def test_failed_step_rolls_back_everything(
        self, session, failing_orchestrator, period_service, ledger_context,
        profitable_2024, soft_close_all, audit_sink,
    ):
        soft_close_all(profitable_2024.id)
        december = period_service.get_period_for_date(ledger_context, date(2024, 12, 31))
        audit_count = len(audit_sink.records)

        with pytest.raises(YearEndCloseError) as exc_info:
            failing_orchestrator(RuntimeError("disk full")).close_fiscal_year(ledger_context, profitable_2024.id)

        assert exc_info.value.step == CloseStep.CLOSE_FISCAL_YEAR.value
        assert exc_info.value.reason == "disk full"
        assert _closing_entries(session) == []
        periods = period_service.list_periods(ledger_context, profitable_2024.id)
        assert {p.status for p in periods} == {PeriodStatus.SOFT_CLOSED}
        assert session.get(AccountingPeriod, december.id).posted_entry_count == 0
        fiscal_year = period_service.get_fiscal_year(ledger_context, profitable_2024.id)
        assert fiscal_year.status == PeriodStatus.SOFT_CLOSED
        assert fiscal_year.closing_entry_id is None
        assert len(audit_sink.records) == audit_count

    def test_kernel_errors_propagate_unchanged(
        self, failing_orchestrator, ledger_context, profitable_2024, soft_close_all,
    ):
        soft_close_all(profitable_2024.id)
        conflict = OptimisticLockError("FiscalYear", str(profitable_2024.id))

        with pytest.raises(OptimisticLockError) as exc_info:
            failing_orchestrator(conflict).close_fiscal_year(ledger_context, profitable_2024.id)
        assert exc_info.value is conflict

    def test_retry_after_failure_succeeds(
        self, failing_orchestrator, year_end_orchestrator, ledger_context, profitable_2024, soft_close_all,
    ):
        soft_close_all(profitable_2024.id)
        with pytest.raises(YearEndCloseError):
            failing_orchestrator(RuntimeError("boom")).close_fiscal_year(ledger_context, profitable_2024.id)

        result = year_end_orchestrator.close_fiscal_year(ledger_context, profitable_2024.id)
        assert result.closing_entry_number == "CL/2024/12/0001"

    def test_failure_is_logged_with_step(
        self, failing_orchestrator, ledger_context, profitable_2024, soft_close_all, captured_logs,
    ):
        soft_close_all(profitable_2024.id)
        with pytest.raises(YearEndCloseError):
            failing_orchestrator(RuntimeError("boom")).close_fiscal_year(ledger_context, profitable_2024.id)

        log = next(r for r in captured_logs() if r["message"] == "year_end_close_failed")
        assert log["level"] == "ERROR"
        assert log["step"] == "close_fiscal_year"
        assert log["error_code"] == "YEAR_END_CLOSE_FAILED"


class TestOpeningBalances:

    def _rows(self, session, fiscal_year_id):
        return {
            row.account_id: row
            for row in session.scalars(
                select(OpeningBalance).where(OpeningBalance.fiscal_year_id == fiscal_year_id)
            )
        }

    def test_balance_sheet_accounts_seeded(
        self, session, year_end_orchestrator, ledger_context, profitable_2024,
        fiscal_year_2025, soft_close_all, standard_accounts,
    ):
        soft_close_all(profitable_2024.id)

        result = year_end_orchestrator.close_fiscal_year(ledger_context, profitable_2024.id)

        a = standard_accounts
        rows = self._rows(session, fiscal_year_2025.id)
        assert set(rows) == {a["cash"].id, a["receivables"].id, a["capital"].id, a["retained_earnings"].id}
        assert rows[a["cash"].id].debit_balance == Decimal("25000")
        assert rows[a["receivables"].id].debit_balance == Decimal("100000")
        assert rows[a["capital"].id].credit_balance == Decimal("100000")
        assert rows[a["retained_earnings"].id].credit_balance == Decimal("25000")
        assert {row.source_fiscal_year_id for row in rows.values()} == {profitable_2024.id}
        assert {row.currency for row in rows.values()} == {ledger_context.base_currency}
        assert result.opening_balance_count == 4
        assert sum(r.debit_balance for r in rows.values()) == sum(r.credit_balance for r in rows.values())

    def test_next_year_balances_include_opening(
        self, session, year_end_orchestrator, ledger_context, profitable_2024,
        fiscal_year_2025, soft_close_all, standard_accounts,
    ):
        soft_close_all(profitable_2024.id)
        year_end_orchestrator.close_fiscal_year(ledger_context, profitable_2024.id)

        balances = LedgerSelector(session).account_balances(
            ledger_context.organization_id, fiscal_year_2025.id, BALANCE_SHEET_TYPES,
        )
        cash = next(b for b in balances if b.account_id == standard_accounts["cash"].id)
        assert cash.balance == Decimal("25000")

    def test_existing_rows_updated_in_place(
        self, session, year_end_orchestrator, ledger_context, profitable_2024,
        fiscal_year_2025, soft_close_all, standard_accounts,
    ):
        cash = standard_accounts["cash"]
        stale = OpeningBalance(
            organization_id=ledger_context.organization_id,
            fiscal_year_id=fiscal_year_2025.id,
            account_id=cash.id,
            debit_balance=Decimal("1"),
            credit_balance=Decimal("0"),
            currency="PLN",
            created_by_id=ledger_context.actor_id,
        )
        session.add(stale)
        session.flush()
        soft_close_all(profitable_2024.id)

        result = year_end_orchestrator.close_fiscal_year(ledger_context, profitable_2024.id)

        rows = self._rows(session, fiscal_year_2025.id)
        assert rows[cash.id].id == stale.id
        assert rows[cash.id].debit_balance == Decimal("25000")
        assert stale.id in result.change_set.opening_balance_ids
        assert len(rows) == 4

    def test_seeding_disabled(
        self, session, year_end_orchestrator, ledger_context, profitable_2024, fiscal_year_2025, soft_close_all,
    ):
        soft_close_all(profitable_2024.id)

        result = year_end_orchestrator.close_fiscal_year(
            ledger_context, profitable_2024.id, generate_opening_balances=False,
        )

        assert self._rows(session, fiscal_year_2025.id) == {}
        assert result.change_set.next_fiscal_year_id is None
        assert result.opening_balances == ()
        assert CloseStep.SEED_OPENING_BALANCES in result.steps_completed

    def test_no_next_year(self, year_end_orchestrator, ledger_context, profitable_2024, soft_close_all):
        soft_close_all(profitable_2024.id)
        result = year_end_orchestrator.close_fiscal_year(ledger_context, profitable_2024.id)
        assert result.change_set.next_fiscal_year_id is None
        assert result.opening_balance_count == 0

    def test_closed_next_year_aborts_close(
        self, session, year_end_orchestrator, period_service, ledger_context,
        profitable_2024, fiscal_year_2025, soft_close_all,
    ):
        soft_close_all(fiscal_year_2025.id)
        year_end_orchestrator.close_fiscal_year(ledger_context, fiscal_year_2025.id)
        soft_close_all(profitable_2024.id)

        with pytest.raises(FiscalYearClosedError):
            year_end_orchestrator.close_fiscal_year(ledger_context, profitable_2024.id)

        assert period_service.get_fiscal_year(ledger_context, profitable_2024.id).status == PeriodStatus.SOFT_CLOSED
        assert _closing_entries(session) == []


class TestPreview:

    def test_preview_lists_open_periods(self, year_end_orchestrator, ledger_context, profitable_2024):
        preview = year_end_orchestrator.preview_close(ledger_context, profitable_2024.id)

        assert not preview.can_close
        assert preview.blockers == ("12 period(s) still open",)
        assert preview.open_period_count == 12
        assert preview.net_income == Decimal("25000")

    def test_preview_writes_nothing(
        self, session, year_end_orchestrator, ledger_context, profitable_2024, soft_close_all, audit_sink,
    ):
        soft_close_all(profitable_2024.id)
        audit_count = len(audit_sink.records)

        preview = year_end_orchestrator.preview_close(ledger_context, profitable_2024.id)

        assert preview.can_close
        assert len(preview.lines) == 3
        assert preview.total_debit == preview.total_credit == Decimal("100000")
        assert _closing_entries(session) == []
        assert len(audit_sink.records) == audit_count

    def test_preview_of_closed_year(self, year_end_orchestrator, ledger_context, profitable_2024, soft_close_all):
        soft_close_all(profitable_2024.id)
        year_end_orchestrator.close_fiscal_year(ledger_context, profitable_2024.id)

        preview = year_end_orchestrator.preview_close(ledger_context, profitable_2024.id)

        assert "fiscal year FY2024 is already closed" in preview.blockers
        assert not preview.can_close


class TestAuditAndLogging:

    def test_audit_records_follow_success(
        self, year_end_orchestrator, ledger_context, profitable_2024, fiscal_year_2025, soft_close_all, audit_sink,
    ):
        soft_close_all(profitable_2024.id)
        already = len(audit_sink.records)

        result = year_end_orchestrator.close_fiscal_year(ledger_context, profitable_2024.id)

        actions = [record.action for record in audit_sink.records[already:]]
        assert actions == (
            [AuditAction.ENTRY_POSTED]
            + [AuditAction.PERIOD_STATUS_CHANGED] * 12
            + [AuditAction.FISCAL_YEAR_CLOSED, AuditAction.OPENING_BALANCES_GENERATED]
        )
        closed = audit_sink.records[already + 13]
        assert closed.entity_id == profitable_2024.id
        assert closed.before["status"] == "soft_closed"
        assert Decimal(closed.payload["net_income"]) == Decimal("25000")
        assert {r.correlation_id for r in audit_sink.records[already:]} == {result.correlation_id}

    def test_completion_logged_with_correlation_id(
        self, year_end_orchestrator, ledger_context, profitable_2024, soft_close_all, captured_logs,
    ):
        soft_close_all(profitable_2024.id)
        year_end_orchestrator.close_fiscal_year(ledger_context, profitable_2024.id)

        log = next(r for r in captured_logs() if r["message"] == "fiscal_year_closed")
        assert log["correlation_id"] == ledger_context.correlation_id
        assert log["fiscal_year_id"] == str(profitable_2024.id)
        assert Decimal(log["net_income"]) == Decimal("25000")
        assert log["closed_period_count"] == 12
