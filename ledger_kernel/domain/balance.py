"""
Balance arithmetic in the organization's base currency.

Each line contributes amount x exchange_rate on its side.  An entry is
balanced when |total debits - total credits| <= tolerance, regardless of how
the lines are split across currencies and rates.
"""

from collections.abc import Iterable
from decimal import Decimal

from ledger_kernel.domain.dtos import ZERO, BalanceInfo, EntryLineInput


def line_currency(line: EntryLineInput, base_currency: str) -> str:
    """Currency of a line, defaulting to the base currency."""
    return (line.currency or base_currency).upper()


def compute_balance(
    lines: Iterable[EntryLineInput],
    base_currency: str,
    tolerance: Decimal,
) -> BalanceInfo:
    """Sum base-currency debits and credits of ``lines``."""
    total_debits = ZERO
    total_credits = ZERO
    for line in lines:
        total_debits += line.base_debit
        total_credits += line.base_credit

    difference = total_debits - total_credits
    return BalanceInfo(
        total_debits=total_debits,
        total_credits=total_credits,
        difference=difference,
        is_balanced=abs(difference) <= tolerance,
        currency=base_currency,
    )
