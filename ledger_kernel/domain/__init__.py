"""
Pure domain layer.

This package contains pure data transfer objects and domain logic
with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O

All domain objects are immutable and deterministic.
"""

from ledger_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from ledger_kernel.domain.context import LedgerContext
from ledger_kernel.domain.dtos import (
    AccountBalance,
    AccountInfo,
    BalanceInfo,
    EntryInput,
    EntryLineInput,
    FiscalYearInfo,
    PeriodInfo,
    RuleInfo,
    ValidationResultItem,
    ValidationSummary,
    ValidationVerdict,
)
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
)
from ledger_kernel.domain.validator import check_balance, validate_entry

__all__ = [
    # Time
    "Clock",
    "DeterministicClock",
    "SystemClock",
    # Context
    "LedgerContext",
    # DTOs
    "AccountBalance",
    "AccountInfo",
    "BalanceInfo",
    "EntryInput",
    "EntryLineInput",
    "FiscalYearInfo",
    "PeriodInfo",
    "RuleInfo",
    "ValidationResultItem",
    "ValidationSummary",
    "ValidationVerdict",
    # Enums
    "AccountClass",
    "AccountType",
    "EntryStatus",
    "EntryType",
    "NormalBalance",
    "PeriodStatus",
    "PeriodType",
    "RuleCategory",
    "Severity",
    # Validator
    "check_balance",
    "validate_entry",
]
