"""
Year-end computation -- closing lines and opening balances.

Responsibility:
    Turn the per-account balances of a fiscal year into the lines of the
    CLOSING entry (zeroing every revenue and expense account and moving net
    income to retained earnings) and into the opening balances of the next
    year (balance-sheet accounts only).

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  The
    YearEndCloseOrchestrator loads the balances, calls these functions step
    by step and persists what they return.

Invariants enforced:
    - net income = revenue total - expense total, where revenue is
      credit-positive and expense is debit-positive.
    - Each non-zero revenue/expense account gets exactly one line reversing
      its balance, tagged with the account as ``source_account_id``.
    - The closing lines, retained earnings line included, always balance:
      total debits == total credits.
    - Opening balances are produced for balance-sheet accounts only.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from ledger_kernel.domain.dtos import ZERO, AccountBalance
from ledger_kernel.domain.types import AccountClass


@dataclass(frozen=True)
class ClosingLine:
    """One line of the year-end CLOSING entry."""

    account_id: UUID
    account_code: str
    debit_amount: Decimal
    credit_amount: Decimal
    source_account_id: UUID | None
    description: str


@dataclass(frozen=True)
class YearEndClosing:
    """Result of the closing computation for one fiscal year."""

    revenue_total: Decimal
    expense_total: Decimal
    lines: tuple[ClosingLine, ...]

    @property
    def net_income(self) -> Decimal:
        return self.revenue_total - self.expense_total

    @property
    def total_debit(self) -> Decimal:
        return sum((line.debit_amount for line in self.lines), ZERO)

    @property
    def total_credit(self) -> Decimal:
        return sum((line.credit_amount for line in self.lines), ZERO)

    @property
    def is_balanced(self) -> bool:
        return self.total_debit == self.total_credit


@dataclass(frozen=True)
class OpeningBalanceSpec:
    """Opening balance of one balance-sheet account in the next year."""

    account_id: UUID
    account_code: str
    debit_balance: Decimal
    credit_balance: Decimal


def income_statement_totals(balances: Iterable[AccountBalance]) -> tuple[Decimal, Decimal]:
    """(revenue total, expense total) over REVENUE- and EXPENSE-class accounts."""
    revenue = ZERO
    expense = ZERO
    for balance in balances:
        if balance.account_class == AccountClass.REVENUE:
            revenue += balance.credit_total - balance.debit_total
        elif balance.account_class == AccountClass.EXPENSE:
            expense += balance.debit_total - balance.credit_total
    return revenue, expense


def build_closing_lines(balances: Iterable[AccountBalance]) -> list[ClosingLine]:
    """One reversing line per non-zero revenue/expense account, in code order."""
    lines: list[ClosingLine] = []
    for balance in sorted(balances, key=lambda b: b.account_code):
        if balance.account_class == AccountClass.BALANCE_SHEET or balance.balance == ZERO:
            continue
        net = balance.balance
        lines.append(ClosingLine(
            account_id=balance.account_id,
            account_code=balance.account_code,
            debit_amount=-net if net < ZERO else ZERO,
            credit_amount=net if net > ZERO else ZERO,
            source_account_id=balance.account_id,
            description=f"Year-end close of {balance.account_code}",
        ))
    return lines


def retained_earnings_line(
    net_income: Decimal,
    account_id: UUID,
    account_code: str,
) -> ClosingLine | None:
    """Credit on profit, debit on loss, nothing when net income is zero."""
    if net_income == ZERO:
        return None
    return ClosingLine(
        account_id=account_id,
        account_code=account_code,
        debit_amount=-net_income if net_income < ZERO else ZERO,
        credit_amount=net_income if net_income > ZERO else ZERO,
        source_account_id=None,
        description="Net income transferred to retained earnings",
    )


def compute_year_end_closing(
    balances: Iterable[AccountBalance],
    retained_earnings_account_id: UUID,
    retained_earnings_account_code: str,
) -> YearEndClosing:
    """Closing computation in one call (used by previews)."""
    balances = list(balances)
    revenue, expense = income_statement_totals(balances)
    lines = build_closing_lines(balances)
    re_line = retained_earnings_line(
        revenue - expense, retained_earnings_account_id, retained_earnings_account_code,
    )
    if re_line is not None:
        lines.append(re_line)
    return YearEndClosing(revenue_total=revenue, expense_total=expense, lines=tuple(lines))


def compute_opening_balances(balances: Iterable[AccountBalance]) -> list[OpeningBalanceSpec]:
    """Opening balances for the next year from post-close balances.

    A net debit balance opens on the debit side, a net credit balance on the
    credit side.  Zero balances and income-statement accounts are skipped.
    """
    specs: list[OpeningBalanceSpec] = []
    for balance in sorted(balances, key=lambda b: b.account_code):
        if balance.account_class != AccountClass.BALANCE_SHEET or balance.balance == ZERO:
            continue
        net = balance.balance
        specs.append(OpeningBalanceSpec(
            account_id=balance.account_id,
            account_code=balance.account_code,
            debit_balance=net if net > ZERO else ZERO,
            credit_balance=-net if net < ZERO else ZERO,
        ))
    return specs
