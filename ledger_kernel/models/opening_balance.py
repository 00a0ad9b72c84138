"""
Module: ledger_kernel.models.opening_balance
Responsibility: ORM persistence for opening balances carried into a fiscal
    year from the closing balances of the previous one.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - At most one opening balance per (fiscal year, account).
    - Only balance-sheet accounts receive opening balances; the year-end
      close is the only writer.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import OrganizationScoped, TrackedBase, UUIDString


class OpeningBalance(OrganizationScoped, TrackedBase):
    """Opening balance of one account in one fiscal year."""

    __tablename__ = "opening_balances"

    __table_args__ = (
        UniqueConstraint("fiscal_year_id", "account_id", name="uq_opening_balance_year_account"),
    )

    fiscal_year_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("fiscal_years.id"),
        nullable=False,
    )

    account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=False,
    )

    source_fiscal_year_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("fiscal_years.id"),
        nullable=True,
    )

    debit_balance: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    credit_balance: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<OpeningBalance account={self.account_id} "
            f"Dr {self.debit_balance} Cr {self.credit_balance}>"
        )
