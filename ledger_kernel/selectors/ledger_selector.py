"""
Module: ledger_kernel.selectors.ledger_selector
Responsibility: Read-only balance aggregation over posted journal lines --
    the balance source of the year-end close and the fiscal year statistics.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Only POSTED entries contribute to balances.
    - A fiscal year's balances are the movements of entries attached to its
      periods plus the opening balances carried into the year.
    - All amounts are base currency Decimals, never floats.

Failure modes:
    - Returns empty results or zero balances when nothing is posted.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from ledger_kernel.domain.dtos import AMOUNT_QUANTUM, ZERO, AccountBalance
from ledger_kernel.domain.types import (
    UNPOSTED_STATUSES,
    AccountType,
    EntryStatus,
    NormalBalance,
)
from ledger_kernel.models.account import Account
from ledger_kernel.models.fiscal_year import AccountingPeriod
from ledger_kernel.models.journal import JournalEntry, JournalLine
from ledger_kernel.models.opening_balance import OpeningBalance
from ledger_kernel.selectors.base import BaseSelector


def _amount(value) -> Decimal:
    """Normalize a SQL aggregate to a 9-place Decimal."""
    if value is None:
        return ZERO
    return Decimal(str(value)).quantize(AMOUNT_QUANTUM)


@dataclass(frozen=True)
class PostedTotals:
    """Posted entry count and base totals of a fiscal year."""

    entry_count: int
    total_debit: Decimal
    total_credit: Decimal


class LedgerSelector(BaseSelector[JournalLine]):
    """
    Balance aggregation.

    Contract:
        Balances are computed at query time.  Callers that need a stable
        view during a multi-step operation lock the periods first.
    """

    def _year_period_ids(self, fiscal_year_id: UUID):
        return select(AccountingPeriod.id).where(
            AccountingPeriod.fiscal_year_id == fiscal_year_id
        )

    def account_balances(
        self,
        organization_id: UUID,
        fiscal_year_id: UUID,
        account_types: Iterable[AccountType] | None = None,
        include_opening: bool = True,
    ) -> list[AccountBalance]:
        """
        Per-account base debit and credit totals over a fiscal year.

        Args:
            organization_id: Organization scope.
            fiscal_year_id: Year whose periods' posted entries are summed.
            account_types: Restrict to these types (None = all).
            include_opening: Add the year's opening balances.

        Returns:
            One AccountBalance per account with any activity, by code.
        """
        type_values = (
            [AccountType(t).value for t in account_types]
            if account_types is not None else None
        )

        movement = (
            select(
                Account.id,
                Account.code,
                Account.account_type,
                Account.normal_balance,
                func.sum(JournalLine.base_debit_amount),
                func.sum(JournalLine.base_credit_amount),
            )
            .join(JournalLine, JournalLine.account_id == Account.id)
            .join(JournalEntry, JournalEntry.id == JournalLine.journal_entry_id)
            .where(
                JournalEntry.organization_id == organization_id,
                JournalEntry.status == EntryStatus.POSTED.value,
                JournalEntry.period_id.in_(self._year_period_ids(fiscal_year_id)),
            )
            .group_by(Account.id, Account.code, Account.account_type, Account.normal_balance)
        )
        if type_values is not None:
            movement = movement.where(Account.account_type.in_(type_values))

        totals: dict[UUID, list] = {}
        for account_id, code, account_type, normal_balance, debit, credit in self.session.execute(movement):
            totals[account_id] = [code, account_type, normal_balance, _amount(debit), _amount(credit)]

        if include_opening:
            opening = (
                select(
                    Account.id,
                    Account.code,
                    Account.account_type,
                    Account.normal_balance,
                    OpeningBalance.debit_balance,
                    OpeningBalance.credit_balance,
                )
                .join(OpeningBalance, OpeningBalance.account_id == Account.id)
                .where(
                    OpeningBalance.organization_id == organization_id,
                    OpeningBalance.fiscal_year_id == fiscal_year_id,
                )
            )
            if type_values is not None:
                opening = opening.where(Account.account_type.in_(type_values))
            for account_id, code, account_type, normal_balance, debit, credit in self.session.execute(opening):
                row = totals.setdefault(account_id, [code, account_type, normal_balance, ZERO, ZERO])
                row[3] += _amount(debit)
                row[4] += _amount(credit)

        balances = [
            AccountBalance(
                account_id=account_id,
                account_code=code,
                account_type=AccountType(account_type),
                normal_balance=NormalBalance(normal_balance),
                debit_total=debit,
                credit_total=credit,
            )
            for account_id, (code, account_type, normal_balance, debit, credit) in totals.items()
        ]
        return sorted(balances, key=lambda b: b.account_code)

    def sum_closing_balance(
        self,
        organization_id: UUID,
        fiscal_year_id: UUID,
        account_types: Iterable[AccountType],
    ) -> Decimal:
        """Summed closing balance (debit-positive) of the given account types."""
        balances = self.account_balances(organization_id, fiscal_year_id, account_types)
        return sum((b.balance for b in balances), ZERO)

    def count_unposted_entries(self, period_id: UUID) -> int:
        """DRAFT and PENDING entries attached to a period."""
        return self.session.scalar(
            select(func.count(JournalEntry.id)).where(
                JournalEntry.period_id == period_id,
                JournalEntry.status.in_([s.value for s in UNPOSTED_STATUSES]),
            )
        ) or 0

    def count_entries(self, fiscal_year_id: UUID) -> int:
        """Entries of any status attached to the year's periods."""
        return self.session.scalar(
            select(func.count(JournalEntry.id)).where(
                JournalEntry.period_id.in_(self._year_period_ids(fiscal_year_id)),
            )
        ) or 0

    def count_opening_balances(self, fiscal_year_id: UUID) -> int:
        return self.session.scalar(
            select(func.count(OpeningBalance.id)).where(OpeningBalance.fiscal_year_id == fiscal_year_id)
        ) or 0

    def posted_totals(self, organization_id: UUID, fiscal_year_id: UUID) -> PostedTotals:
        """Posted entry count and base debit/credit totals of a fiscal year."""
        posted = (
            JournalEntry.organization_id == organization_id,
            JournalEntry.status == EntryStatus.POSTED.value,
            JournalEntry.period_id.in_(self._year_period_ids(fiscal_year_id)),
        )
        entry_count = self.session.scalar(
            select(func.count(JournalEntry.id)).where(*posted)
        ) or 0
        debit, credit = self.session.execute(
            select(
                func.sum(JournalLine.base_debit_amount),
                func.sum(JournalLine.base_credit_amount),
            )
            .join(JournalEntry, JournalEntry.id == JournalLine.journal_entry_id)
            .where(*posted)
        ).one()
        return PostedTotals(
            entry_count=entry_count,
            total_debit=_amount(debit),
            total_credit=_amount(credit),
        )
