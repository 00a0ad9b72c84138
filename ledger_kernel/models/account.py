"""
Module: ledger_kernel.models.account
Responsibility: ORM persistence for the chart of accounts -- the target of
    every journal line.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/types.py only.

Invariants enforced:
    - code is unique per organization (uq_account_org_code).
    - Header accounts (allows_posting False) never appear as line targets;
      enforced by the validator (CORE_ACCOUNT_POSTABLE), not this model.

Failure modes:
    - IntegrityError on duplicate (organization_id, code).

Audit relevance:
    The account type decides whether an account is zeroed by the year-end
    close (REVENUE/EXPENSE class) or carried forward as an opening balance
    (BALANCE_SHEET class).
"""

from uuid import UUID

from sqlalchemy import Boolean, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import OrganizationScoped, TrackedBase, UUIDString
from ledger_kernel.domain.types import (
    AccountClass,
    AccountType,
    NormalBalance,
    account_class,
)


class Account(OrganizationScoped, TrackedBase):
    """
    Chart of accounts entry.

    Contract:
        The hierarchy is stored as a parent reference plus a materialized
        ``path`` of ancestor codes ("400/401/401-01").  Tree building is a
        pure function over a flat list (domain/account_tree.py).

    Non-goals:
        - This model does NOT maintain ``path``; callers set it on create.
    """

    __tablename__ = "accounts"

    __table_args__ = (
        UniqueConstraint("organization_id", "code", name="uq_account_org_code"),
        Index("idx_account_type", "account_type"),
        Index("idx_account_parent", "parent_id"),
    )

    code: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    account_type: Mapped[AccountType] = mapped_column(
        String(20),
        nullable=False,
    )

    normal_balance: Mapped[NormalBalance] = mapped_column(
        String(10),
        nullable=False,
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    # False for synthetic/header accounts that only aggregate children
    allows_posting: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    requires_cost_center: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )

    parent_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    path: Mapped[str | None] = mapped_column(
        String(500),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<Account {self.code}: {self.name}>"

    @property
    def account_class(self) -> AccountClass:
        return account_class(self.account_type)

    @property
    def is_debit_normal(self) -> bool:
        return self.normal_balance == NormalBalance.DEBIT
