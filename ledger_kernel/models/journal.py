"""
Module: ledger_kernel.models.journal
Responsibility: ORM persistence for journal entries and their lines -- the
    double-entry records admitted to the books.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/types.py only.

Invariants enforced:
    - Each line has exactly one non-zero side (checked by the validator).
    - base_debit_amount / base_credit_amount = amount x exchange_rate,
      computed once when the line is built.
    - A POSTED entry balances in base currency within tolerance and is
      immutable thereafter except ``is_closing_entry`` (db/immutability.py).

Failure modes:
    - ImmutabilityViolationError when modifying a posted entry or its lines.
    - IntegrityError on duplicate (organization_id, entry_number).

Audit relevance:
    Closing lines carry ``source_account_id`` so every zeroed revenue or
    expense balance can be traced back to the account it came from.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import OrganizationScoped, TrackedBase, UUIDString
from ledger_kernel.domain.types import EntryStatus, EntryType


class JournalEntry(OrganizationScoped, TrackedBase):
    """
    Journal entry header.

    Contract:
        DRAFT -> PENDING -> POSTED (DRAFT -> POSTED allowed).  ``period_id``
        is the REGULAR period covering ``entry_date``, assigned on create.

    Non-goals:
        - This model does NOT enforce balance; the validator and
          PostingService do.  ``is_balanced`` is a read-side convenience.
    """

    __tablename__ = "journal_entries"

    __table_args__ = (
        UniqueConstraint("organization_id", "entry_number", name="uq_journal_org_number"),
        Index("idx_journal_entry_date", "entry_date"),
        Index("idx_journal_status", "status"),
        Index("idx_journal_period", "period_id"),
    )

    entry_number: Mapped[str] = mapped_column(String(50), nullable=False)

    entry_date: Mapped[date] = mapped_column(Date, nullable=False)

    entry_type: Mapped[EntryType] = mapped_column(
        String(20),
        default=EntryType.STANDARD,
        nullable=False,
    )

    status: Mapped[EntryStatus] = mapped_column(
        String(10),
        default=EntryStatus.DRAFT,
        nullable=False,
    )

    period_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("accounting_periods.id"),
        nullable=True,
    )

    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    is_closing_entry: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    posted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    posted_by_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    lines: Mapped[list["JournalLine"]] = relationship(
        back_populates="entry",
        order_by="JournalLine.line_number",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<JournalEntry {self.entry_number} status={self.status}>"

    @property
    def is_posted(self) -> bool:
        return self.status == EntryStatus.POSTED

    @property
    def total_debit(self) -> Decimal:
        return sum((line.base_debit_amount for line in self.lines), Decimal("0"))

    @property
    def total_credit(self) -> Decimal:
        return sum((line.base_credit_amount for line in self.lines), Decimal("0"))

    @property
    def is_balanced(self) -> bool:
        return self.total_debit == self.total_credit


class JournalLine(TrackedBase):
    """
    Debit or credit line within a journal entry.

    Contract:
        Amounts are non-negative and in the line currency; the base columns
        hold the same amounts converted at ``exchange_rate``.
    """

    __tablename__ = "journal_lines"

    __table_args__ = (
        Index("idx_line_entry", "journal_entry_id"),
        Index("idx_line_account", "account_id"),
    )

    journal_entry_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id"),
        nullable=False,
    )

    line_number: Mapped[int] = mapped_column(Integer, nullable=False)

    account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=False,
    )

    debit_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    credit_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    exchange_rate: Mapped[Decimal] = mapped_column(default=Decimal("1"), nullable=False)

    base_debit_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    base_credit_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    cost_center_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Account whose balance this line zeroes (closing entries only)
    source_account_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=True,
    )

    entry: Mapped["JournalEntry"] = relationship(back_populates="lines")

    def __repr__(self) -> str:
        return (
            f"<JournalLine {self.line_number} Dr {self.debit_amount} "
            f"Cr {self.credit_amount} {self.currency}>"
        )
