"""ORM models for the ledger kernel."""

from ledger_kernel.models.account import Account
from ledger_kernel.models.fiscal_year import AccountingPeriod, FiscalYear
from ledger_kernel.models.journal import JournalEntry, JournalLine
from ledger_kernel.models.opening_balance import OpeningBalance
from ledger_kernel.models.validation_rule import ValidationRule
from ledger_kernel.models.validation_run import ValidationRun

__all__ = [
    "Account",
    "AccountingPeriod",
    "FiscalYear",
    "JournalEntry",
    "JournalLine",
    "OpeningBalance",
    "ValidationRule",
    "ValidationRun",
]
