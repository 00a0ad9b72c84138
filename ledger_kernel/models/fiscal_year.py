"""
Module: ledger_kernel.models.fiscal_year
Responsibility: ORM persistence for fiscal years and their accounting
    periods -- the temporal boundaries of the ledger.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/types.py only.

Invariants enforced:
    - Periods of one fiscal year are unique by number (uq_period_year_number).
    - Both tables carry a ``version`` column used by SQLAlchemy's optimistic
      concurrency control; a stale UPDATE raises StaleDataError, which
      services map to OptimisticLockError.
    - A CLOSED fiscal year is immutable (db/immutability.py).

Failure modes:
    - StaleDataError on concurrent modification of the same row.
    - IntegrityError on duplicate (organization_id, code) or period number.

Audit relevance:
    Period and fiscal year status changes are significant state transitions.
    Services report each one to the audit sink with before/after status.
    ``closed_with_override`` records that a period was closed while it still
    held unposted entries.
"""

from datetime import date, datetime
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
from ledger_kernel.domain.types import PeriodStatus, PeriodType


class FiscalYear(OrganizationScoped, TrackedBase):
    """
    Fiscal year of one organization.

    Contract:
        Fiscal years of an organization never overlap; PeriodService checks
        this at creation time.  Only the year-end close sets status CLOSED
        and records ``closing_entry_id``.
    """

    __tablename__ = "fiscal_years"

    __table_args__ = (
        UniqueConstraint("organization_id", "code", name="uq_fiscal_year_org_code"),
        Index("idx_fiscal_year_dates", "organization_id", "start_date", "end_date"),
    )

    code: Mapped[str] = mapped_column(String(20), nullable=False)

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    start_date: Mapped[date] = mapped_column(Date, nullable=False)

    end_date: Mapped[date] = mapped_column(Date, nullable=False)

    is_calendar: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # At most one current year per organization; only an OPEN year can be set.
    is_current: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    status: Mapped[PeriodStatus] = mapped_column(
        String(20),
        default=PeriodStatus.OPEN,
        nullable=False,
    )

    retained_earnings_account_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=True,
    )

    # No FK: journal_entries -> accounting_periods -> fiscal_years would cycle
    closing_entry_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    closed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    closed_by_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    periods: Mapped[list["AccountingPeriod"]] = relationship(
        back_populates="fiscal_year",
        order_by="AccountingPeriod.period_number",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<FiscalYear {self.code}: {self.status}>"

    @property
    def is_closed(self) -> bool:
        return self.status == PeriodStatus.CLOSED


class AccountingPeriod(TrackedBase):
    """
    Accounting period within a fiscal year.

    Contract:
        Regular periods are numbered 1..12 and contiguous; the optional
        ADJUSTING period is number 13 and spans only the year end date.
        ``posted_entry_count`` is incremented by every posting into the
        period, so a posting and a concurrent close conflict on ``version``.
    """

    __tablename__ = "accounting_periods"

    __table_args__ = (
        UniqueConstraint("fiscal_year_id", "period_number", name="uq_period_year_number"),
        Index("idx_period_dates", "start_date", "end_date"),
        Index("idx_period_status", "status"),
    )

    fiscal_year_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("fiscal_years.id"),
        nullable=False,
    )

    period_number: Mapped[int] = mapped_column(Integer, nullable=False)

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    start_date: Mapped[date] = mapped_column(Date, nullable=False)

    end_date: Mapped[date] = mapped_column(Date, nullable=False)

    status: Mapped[PeriodStatus] = mapped_column(
        String(20),
        default=PeriodStatus.OPEN,
        nullable=False,
    )

    period_type: Mapped[PeriodType] = mapped_column(
        String(20),
        default=PeriodType.REGULAR,
        nullable=False,
    )

    posted_entry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    closed_with_override: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    closed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    closed_by_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    fiscal_year: Mapped["FiscalYear"] = relationship(back_populates="periods")

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<AccountingPeriod {self.period_number} ({self.start_date}..{self.end_date}): {self.status}>"

    def contains_date(self, check_date: date) -> bool:
        return self.start_date <= check_date <= self.end_date
