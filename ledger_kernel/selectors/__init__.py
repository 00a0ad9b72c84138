"""Read-only selectors for reference data and ledger balances."""

from ledger_kernel.selectors.base import BaseSelector
from ledger_kernel.selectors.ledger_selector import LedgerSelector, PostedTotals
from ledger_kernel.selectors.reference_selector import ReferenceSelector

__all__ = [
    "BaseSelector",
    "LedgerSelector",
    "PostedTotals",
    "ReferenceSelector",
]
