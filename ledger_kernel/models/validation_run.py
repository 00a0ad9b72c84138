"""
Module: ledger_kernel.models.validation_run
Responsibility: ORM persistence for validation verdicts of persisted
    entries -- the audit record of a pre-post validation.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Immutable from creation: UPDATE and DELETE are blocked by
      db/immutability.py.
"""

from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Boolean, ForeignKey, Index, Integer
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import OrganizationScoped, TrackedBase, UUIDString


class ValidationRun(OrganizationScoped, TrackedBase):
    """One stored ValidationVerdict."""

    __tablename__ = "validation_runs"

    __table_args__ = (
        Index("idx_validation_run_entry", "entry_id"),
    )

    entry_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id"),
        nullable=True,
    )

    is_valid: Mapped[bool] = mapped_column(Boolean, nullable=False)

    can_post: Mapped[bool] = mapped_column(Boolean, nullable=False)

    error_count: Mapped[int] = mapped_column(Integer, nullable=False)

    warning_count: Mapped[int] = mapped_column(Integer, nullable=False)

    info_count: Mapped[int] = mapped_column(Integer, nullable=False)

    results: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False)

    balance: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    def __repr__(self) -> str:
        return f"<ValidationRun entry={self.entry_id} can_post={self.can_post}>"
