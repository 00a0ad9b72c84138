"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Immutable structures that cross the boundary between the pure domain
    (validator, period lifecycle, year-end computation) and the imperative
    shell (services, selectors).  Reference data read from storage is
    converted into these DTOs before any domain logic sees it.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Free of ORM
    dependencies.

Invariants enforced:
    - Domain logic accepts and returns DTOs, never ORM entities.
    - Amounts are Decimal, never float.
    - A verdict's ``can_post`` is derived from its items, never set freely.

Data flow:
    EntryInput + AccountInfo + PeriodInfo + RuleInfo
        -> validate_entry() -> ValidationVerdict
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from types import MappingProxyType
from typing import Any
from uuid import UUID

from ledger_kernel.domain.types import (
    AccountClass,
    AccountType,
    EntryStatus,
    EntryType,
    NormalBalance,
    PeriodStatus,
    PeriodType,
    RuleCategory,
    Severity,
    account_class,
)

ZERO = Decimal("0")

# Scale of every stored amount column.
AMOUNT_QUANTUM = Decimal("0.000000001")


def to_amount_scale(value: Decimal) -> Decimal:
    """Round to the stored scale; values already within it are returned as-is."""
    if value.as_tuple().exponent >= AMOUNT_QUANTUM.as_tuple().exponent:
        return value
    return value.quantize(AMOUNT_QUANTUM, ROUND_HALF_UP)


# =============================================================================
# Reference data
# =============================================================================


@dataclass(frozen=True)
class AccountInfo:
    """
    Account as seen by the validator and the close computation.

    Contract:
        Snapshot of the account at lookup time.  Missing accounts are
        represented by absence from the lookup mapping, never by a
        placeholder AccountInfo.
    """

    id: UUID
    code: str
    name: str
    account_type: AccountType
    normal_balance: NormalBalance
    is_active: bool = True
    allows_posting: bool = True
    requires_cost_center: bool = False
    parent_id: UUID | None = None

    @property
    def account_class(self) -> AccountClass:
        return account_class(self.account_type)


@dataclass(frozen=True)
class PeriodInfo:
    """Pure domain representation of an accounting period."""

    id: UUID
    fiscal_year_id: UUID
    period_number: int
    name: str
    start_date: date
    end_date: date
    status: PeriodStatus
    period_type: PeriodType = PeriodType.REGULAR
    closed_at: datetime | None = None
    closed_with_override: bool = False

    def contains(self, on_date: date) -> bool:
        return self.start_date <= on_date <= self.end_date

    @property
    def is_open(self) -> bool:
        return self.status == PeriodStatus.OPEN


@dataclass(frozen=True)
class FiscalYearInfo:
    """Pure domain representation of a fiscal year."""

    id: UUID
    code: str
    name: str
    start_date: date
    end_date: date
    status: PeriodStatus
    is_calendar: bool
    retained_earnings_account_id: UUID | None
    closing_entry_id: UUID | None = None
    closed_at: datetime | None = None
    is_current: bool = False


@dataclass(frozen=True)
class RuleInfo:
    """
    Organization-defined validation rule as read from the rule source.

    Contract:
        ``conditions`` is the raw tagged payload; it is parsed into a rule
        kind by ``ledger_kernel.domain.rule_kinds`` at evaluation time.
        An empty ``applies_to`` means the rule applies to every entry type.
    """

    id: UUID
    code: str
    name: str
    category: RuleCategory
    severity: Severity
    conditions: Mapping[str, Any]
    applies_to: tuple[EntryType, ...] = ()
    is_active: bool = True
    error_message: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "conditions", MappingProxyType(dict(self.conditions)))

    def applies_to_entry(self, entry_type: EntryType) -> bool:
        return not self.applies_to or entry_type in self.applies_to


# =============================================================================
# Candidate entry
# =============================================================================


@dataclass(frozen=True)
class EntryLineInput:
    """
    One proposed line of a journal entry.

    ``currency`` of None means the organization's base currency.
    """

    account_id: UUID
    debit_amount: Decimal = ZERO
    credit_amount: Decimal = ZERO
    currency: str | None = None
    exchange_rate: Decimal = Decimal("1")
    cost_center_id: UUID | None = None
    description: str | None = None

    @property
    def base_debit(self) -> Decimal:
        return to_amount_scale(self.debit_amount * self.exchange_rate)

    @property
    def base_credit(self) -> Decimal:
        return to_amount_scale(self.credit_amount * self.exchange_rate)

    @property
    def base_amount(self) -> Decimal:
        """Base-currency magnitude of whichever side is used."""
        return max(self.base_debit, self.base_credit)


@dataclass(frozen=True)
class EntryInput:
    """A candidate journal entry submitted for validation."""

    entry_date: date
    lines: tuple[EntryLineInput, ...]
    entry_type: EntryType = EntryType.STANDARD
    description: str | None = None


# =============================================================================
# Validation verdict
# =============================================================================


@dataclass(frozen=True)
class BalanceInfo:
    """Base-currency balance summary of an entry.

    ``difference`` is signed: total_debits - total_credits.
    """

    total_debits: Decimal
    total_credits: Decimal
    difference: Decimal
    is_balanced: bool
    currency: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_debits": str(self.total_debits),
            "total_credits": str(self.total_credits),
            "difference": str(self.difference),
            "is_balanced": self.is_balanced,
            "currency": self.currency,
        }


@dataclass(frozen=True)
class ValidationResultItem:
    """Outcome of one check against one entry (or one line of it)."""

    rule_code: str
    rule_name: str
    passed: bool
    severity: Severity
    message: str
    details: Mapping[str, Any] | None = None
    line_number: int | None = None
    account_code: str | None = None

    @property
    def is_blocking(self) -> bool:
        return not self.passed and self.severity == Severity.ERROR

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule_code": self.rule_code,
            "rule_name": self.rule_name,
            "passed": self.passed,
            "severity": self.severity.value,
            "message": self.message,
            "details": dict(self.details) if self.details else None,
            "line_number": self.line_number,
            "account_code": self.account_code,
        }


@dataclass(frozen=True)
class ValidationSummary:
    """Counts over a verdict's items.  Severity counts include failed items only."""

    total_rules: int
    passed: int
    errors: int
    warnings: int
    infos: int

    @classmethod
    def from_items(cls, items: tuple[ValidationResultItem, ...]) -> ValidationSummary:
        failed = [i for i in items if not i.passed]
        return cls(
            total_rules=len(items),
            passed=len(items) - len(failed),
            errors=sum(1 for i in failed if i.severity == Severity.ERROR),
            warnings=sum(1 for i in failed if i.severity == Severity.WARNING),
            infos=sum(1 for i in failed if i.severity == Severity.INFO),
        )


@dataclass(frozen=True)
class ValidationVerdict:
    """
    Structured result of validating one entry.

    Contract:
        - ``can_post`` is True iff no ERROR item failed.  The balance check
          is an ERROR item, so ``can_post`` implies ``balance.is_balanced``.
        - ``is_valid`` is True iff no item of any severity failed and the
          entry is balanced.
        - Items are fully enumerated, in check order.
    """

    results: tuple[ValidationResultItem, ...]
    balance: BalanceInfo
    summary: ValidationSummary = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "summary", ValidationSummary.from_items(self.results))

    @property
    def can_post(self) -> bool:
        return not any(item.is_blocking for item in self.results)

    @property
    def is_valid(self) -> bool:
        return self.balance.is_balanced and all(item.passed for item in self.results)

    @property
    def failed(self) -> tuple[ValidationResultItem, ...]:
        return tuple(item for item in self.results if not item.passed)

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "can_post": self.can_post,
            "results": [item.to_dict() for item in self.results],
            "summary": {
                "total_rules": self.summary.total_rules,
                "passed": self.summary.passed,
                "errors": self.summary.errors,
                "warnings": self.summary.warnings,
                "infos": self.summary.infos,
            },
            "balance": self.balance.to_dict(),
        }


@dataclass(frozen=True)
class ValidationRunInfo:
    """Persisted verdict of a pre-post validation (audit record)."""

    id: UUID
    entry_id: UUID | None
    is_valid: bool
    can_post: bool
    error_count: int
    warning_count: int
    info_count: int
    results: tuple[Mapping[str, Any], ...]
    created_at: datetime | None = None


# =============================================================================
# Ledger read models
# =============================================================================


@dataclass(frozen=True)
class AccountBalance:
    """
    Base-currency movement of one account over a fiscal year.

    ``balance`` is signed debit-positive: debit_total - credit_total.
    """

    account_id: UUID
    account_code: str
    account_type: AccountType
    normal_balance: NormalBalance
    debit_total: Decimal
    credit_total: Decimal

    @property
    def balance(self) -> Decimal:
        return self.debit_total - self.credit_total

    @property
    def account_class(self) -> AccountClass:
        return account_class(self.account_type)


@dataclass(frozen=True)
class EntryInfo:
    """Journal entry header as returned by the posting service."""

    id: UUID
    entry_number: str
    entry_date: date
    entry_type: EntryType
    status: EntryStatus
    period_id: UUID | None
    total_debit: Decimal
    total_credit: Decimal
    is_closing_entry: bool = False
    posted_at: datetime | None = None


@dataclass(frozen=True)
class FiscalYearStatistics:
    """Period counts and posted totals for one fiscal year."""

    fiscal_year_id: UUID
    total_periods: int
    open_periods: int
    soft_closed_periods: int
    closed_periods: int
    journal_entry_count: int
    total_debit: Decimal
    total_credit: Decimal

    @property
    def is_balanced(self) -> bool:
        return self.total_debit == self.total_credit
