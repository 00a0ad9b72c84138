"""
Ledger value enumerations shared by the pure domain and the ORM models.

Responsibility:
    Single definition point for the closed vocabularies of the ledger:
    account taxonomy and its class groups, entry types and statuses, period
    and fiscal year states, rule categories and severities.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  Models import these enums so the
    stored string values and the domain values can never drift apart.
"""

from enum import Enum


class AccountType(str, Enum):
    """Account taxonomy.

    Contract: every type belongs to exactly one class group
    (see REVENUE_TYPES / EXPENSE_TYPES / BALANCE_SHEET_TYPES).
    """

    ASSET = "asset"
    CONTRA_ASSET = "contra_asset"
    LIABILITY = "liability"
    EQUITY = "equity"
    REVENUE = "revenue"
    OTHER_REVENUE = "other_revenue"
    EXPENSE = "expense"
    COST_BY_NATURE = "cost_by_nature"
    COST_BY_FUNCTION = "cost_by_function"
    OTHER_EXPENSE = "other_expense"


class AccountClass(str, Enum):
    """Financial statement class of an account type."""

    BALANCE_SHEET = "balance_sheet"
    REVENUE = "revenue"
    EXPENSE = "expense"


REVENUE_TYPES: frozenset[AccountType] = frozenset({
    AccountType.REVENUE,
    AccountType.OTHER_REVENUE,
})

EXPENSE_TYPES: frozenset[AccountType] = frozenset({
    AccountType.EXPENSE,
    AccountType.COST_BY_NATURE,
    AccountType.COST_BY_FUNCTION,
    AccountType.OTHER_EXPENSE,
})

BALANCE_SHEET_TYPES: frozenset[AccountType] = frozenset({
    AccountType.ASSET,
    AccountType.CONTRA_ASSET,
    AccountType.LIABILITY,
    AccountType.EQUITY,
})


def account_class(account_type: AccountType | str) -> AccountClass:
    """Class group of an account type."""
    account_type = AccountType(account_type)
    if account_type in REVENUE_TYPES:
        return AccountClass.REVENUE
    if account_type in EXPENSE_TYPES:
        return AccountClass.EXPENSE
    return AccountClass.BALANCE_SHEET


class NormalBalance(str, Enum):
    """Side on which an account's balance is conventionally expressed."""

    DEBIT = "debit"
    CREDIT = "credit"


class EntryType(str, Enum):
    """Journal entry tag."""

    STANDARD = "standard"
    ADJUSTING = "adjusting"
    CLOSING = "closing"
    OPENING = "opening"
    REVERSING = "reversing"


class EntryStatus(str, Enum):
    """Journal entry lifecycle.

    Contract: DRAFT -> PENDING -> POSTED (DRAFT -> POSTED allowed).
    POSTED is final.
    """

    DRAFT = "draft"
    PENDING = "pending"
    POSTED = "posted"


UNPOSTED_STATUSES: frozenset[EntryStatus] = frozenset({
    EntryStatus.DRAFT,
    EntryStatus.PENDING,
})


class PeriodStatus(str, Enum):
    """Accounting period (and fiscal year) status."""

    OPEN = "open"
    SOFT_CLOSED = "soft_closed"
    CLOSED = "closed"


class PeriodType(str, Enum):
    """Accounting period kind.  Only REGULAR periods answer date lookups."""

    REGULAR = "regular"
    ADJUSTING = "adjusting"
    OPENING = "opening"


class RuleCategory(str, Enum):
    """Validation rule category."""

    BALANCE = "balance"
    ACCOUNT = "account"
    PERIOD = "period"
    CURRENCY = "currency"
    BUSINESS = "business"
    CUSTOM = "custom"


class Severity(str, Enum):
    """Validation severity.  Only ERROR blocks posting."""

    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


# A fiscal year's status mirrors the aggregate of its periods.
FiscalYearStatus = PeriodStatus
