"""
Ledger Kernel -- posting gate and period lifecycle for double-entry books.

- Balance & rule validation of candidate journal entries
- Accounting period and fiscal year lifecycle
- Structured audit reporting of every state transition
- Multi-currency balance checks in the organization's base currency
"""

__version__ = "0.1.0"
