"""
ledger_services._close_types -- Year-end close DTOs.

Responsibility:
    Frozen dataclasses describing the steps, the preview and the outcome of
    a fiscal year close: which step failed, what the close would post, and
    exactly which records changed together.

Architecture position:
    Services -- these types live in ledger_services/ because the
    orchestrator that produces them lives here.  They depend only on the
    kernel's pure domain types.

Invariants enforced:
    - All DTOs are frozen dataclasses (immutable).
    - ``ChangeSet`` lists every record written by one close; nothing else
      changed in that unit of work.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from ledger_kernel.domain.year_end import ClosingLine, OpeningBalanceSpec


class CloseStep(str, Enum):
    """Ordered steps of the year-end close."""
    COMPUTE_BALANCES = "compute_balances"
    BUILD_CLOSING_LINES = "build_closing_lines"
    ADD_RETAINED_EARNINGS_LINE = "add_retained_earnings_line"
    POST_CLOSING_ENTRY = "post_closing_entry"
    CLOSE_PERIODS = "close_periods"
    CLOSE_FISCAL_YEAR = "close_fiscal_year"
    SEED_OPENING_BALANCES = "seed_opening_balances"


CLOSE_STEPS: tuple[CloseStep, ...] = tuple(CloseStep)


@dataclass(frozen=True)
class ChangeSet:
    """Records written together by one year-end close."""
    fiscal_year_id: UUID
    closing_entry_id: UUID | None
    closed_period_ids: tuple[UUID, ...]
    opening_balance_ids: tuple[UUID, ...] = ()
    next_fiscal_year_id: UUID | None = None

    @property
    def record_count(self) -> int:
        return (
            1
            + (1 if self.closing_entry_id else 0)
            + len(self.closed_period_ids)
            + len(self.opening_balance_ids)
        )


@dataclass(frozen=True)
class ClosePreview:
    """What a close would post, computed read-only."""
    fiscal_year_id: UUID
    closing_date: date
    revenue_total: Decimal
    expense_total: Decimal
    net_income: Decimal
    lines: tuple[ClosingLine, ...]
    open_period_count: int
    blockers: tuple[str, ...] = ()

    @property
    def can_close(self) -> bool:
        return not self.blockers

    @property
    def total_debit(self) -> Decimal:
        return sum((line.debit_amount for line in self.lines), Decimal("0"))

    @property
    def total_credit(self) -> Decimal:
        return sum((line.credit_amount for line in self.lines), Decimal("0"))


@dataclass(frozen=True)
class YearEndCloseResult:
    """Return type of close_fiscal_year()."""
    fiscal_year_id: UUID
    correlation_id: str
    closing_date: date
    revenue_total: Decimal
    expense_total: Decimal
    net_income: Decimal
    total_debit: Decimal
    total_credit: Decimal
    closing_entry_id: UUID | None
    closing_entry_number: str | None
    closed_at: datetime
    change_set: ChangeSet
    opening_balances: tuple[OpeningBalanceSpec, ...] = field(default_factory=tuple)
    steps_completed: tuple[CloseStep, ...] = CLOSE_STEPS

    @property
    def opening_balance_count(self) -> int:
        return len(self.opening_balances)
