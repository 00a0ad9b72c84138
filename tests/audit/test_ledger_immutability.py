"""
ORM-level immutability of the ledger audit trail.

Posted entries and their lines, CLOSED fiscal years and validation runs
reject UPDATE and DELETE at flush time, whichever service (or none)
made the change.  A failed flush leaves the session unusable, so each
test ends at the violation.
"""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select

from ledger_kernel.exceptions import ImmutabilityViolationError
from ledger_kernel.models.fiscal_year import FiscalYear
from ledger_kernel.models.journal import JournalEntry
from ledger_kernel.models.validation_run import ValidationRun


@pytest.fixture
def posted_entry(session, post_entry, fiscal_year_2024, standard_accounts, line_factory):
    debit, credit = line_factory
    info = post_entry(
        date(2024, 4, 2),
        [debit(standard_accounts["cash"], "320.00"), credit(standard_accounts["sales"], "320.00")],
        description="Cash sale",
    )
    return session.get(JournalEntry, info.id)


class TestJournalEntryImmutability:

    def test_posted_entry_field_update_rejected(self, session, posted_entry):
        posted_entry.description = "Rewritten history"

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()

        assert exc_info.value.entity_type == "JournalEntry"
        assert exc_info.value.entity_id == str(posted_entry.id)
        assert "description" in exc_info.value.reason

    def test_posted_entry_date_update_rejected(self, session, posted_entry):
        posted_entry.entry_date = date(2024, 5, 1)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_posted_entry_delete_rejected(self, session, posted_entry):
        session.delete(posted_entry)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_closing_flag_remains_mutable(self, session, posted_entry):
        posted_entry.is_closing_entry = True
        session.flush()
        assert session.get(JournalEntry, posted_entry.id).is_closing_entry

    def test_draft_entry_is_editable(
        self, session, posting_service, ledger_context, fiscal_year_2024, standard_accounts, line_factory,
    ):
        debit, credit = line_factory
        info = posting_service.create_entry(
            ledger_context,
            date(2024, 4, 2),
            [debit(standard_accounts["cash"], "1.00"), credit(standard_accounts["sales"], "1.00")],
        )
        draft = session.get(JournalEntry, info.id)

        draft.description = "Corrected before posting"
        draft.lines[0].debit_amount = Decimal("2.00")
        draft.lines[1].credit_amount = Decimal("2.00")
        session.flush()

        assert session.get(JournalEntry, info.id).description == "Corrected before posting"

    def test_violation_is_logged(self, session, posted_entry, captured_logs):
        posted_entry.description = "Rewritten history"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

        log = next(r for r in captured_logs() if r["message"] == "immutability_violation_blocked")
        assert log["level"] == "ERROR"
        assert log["field"] == "description"
        assert log["operation"] == "UPDATE"


class TestJournalLineImmutability:

    def test_line_amount_update_rejected(self, session, posted_entry):
        posted_entry.lines[0].debit_amount = Decimal("999.00")

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        assert exc_info.value.entity_type == "JournalLine"

    def test_line_delete_rejected(self, session, posted_entry):
        session.delete(posted_entry.lines[1])
        with pytest.raises(ImmutabilityViolationError):
            session.flush()


class TestFiscalYearImmutability:

    @pytest.fixture
    def closed_year(self, session, year_end_orchestrator, ledger_context, fiscal_year_2024, soft_close_all):
        soft_close_all(fiscal_year_2024.id)
        year_end_orchestrator.close_fiscal_year(ledger_context, fiscal_year_2024.id)
        return session.get(FiscalYear, fiscal_year_2024.id)

    def test_closed_year_update_rejected(self, session, closed_year):
        closed_year.end_date = date(2025, 1, 31)

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        assert exc_info.value.entity_type == "FiscalYear"

    def test_closed_year_cannot_be_reopened_directly(self, session, closed_year):
        closed_year.status = "open"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_open_year_is_editable(self, session, fiscal_year_2024):
        fiscal_year = session.get(FiscalYear, fiscal_year_2024.id)
        fiscal_year.name = "Calendar year 2024"
        session.flush()
        assert session.get(FiscalYear, fiscal_year_2024.id).name == "Calendar year 2024"


class TestValidationRunImmutability:

    @pytest.fixture
    def stored_run(self, session, validation_service, posting_service, ledger_context, fiscal_year_2024, standard_accounts, line_factory):
        debit, credit = line_factory
        info = posting_service.create_entry(
            ledger_context,
            date(2024, 4, 2),
            [debit(standard_accounts["cash"], "5.00"), credit(standard_accounts["sales"], "4.00")],
        )
        validation_service.validate_entry(ledger_context, entry_id=info.id)
        return session.scalars(select(ValidationRun).where(ValidationRun.entry_id == info.id)).one()

    def test_run_update_rejected(self, session, stored_run):
        stored_run.can_post = True

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        assert exc_info.value.entity_type == "ValidationRun"

    def test_run_delete_rejected(self, session, stored_run):
        session.delete(stored_run)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
