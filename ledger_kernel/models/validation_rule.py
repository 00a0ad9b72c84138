"""
Module: ledger_kernel.models.validation_rule
Responsibility: ORM persistence for organization-defined validation rules.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/types.py only.

Invariants enforced:
    - code is unique per organization (uq_rule_org_code).
    - ``conditions`` is a tagged rule-kind payload ({"kind": ..., ...}).
      ValidationService parses it on create/update, so a stored rule always
      names a supported kind at the time it was written.

Audit relevance:
    Rule creation, update, toggle and deletion are reported to the audit
    sink with before/after values.
"""

from typing import Any

from sqlalchemy import JSON, Boolean, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import OrganizationScoped, TrackedBase
from ledger_kernel.domain.types import RuleCategory, Severity


class ValidationRule(OrganizationScoped, TrackedBase):
    """Custom or business validation rule evaluated by the validator."""

    __tablename__ = "validation_rules"

    __table_args__ = (
        UniqueConstraint("organization_id", "code", name="uq_rule_org_code"),
        Index("idx_rule_active", "organization_id", "is_active"),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False)

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    category: Mapped[RuleCategory] = mapped_column(String(20), nullable=False)

    severity: Mapped[Severity] = mapped_column(
        String(10),
        default=Severity.ERROR,
        nullable=False,
    )

    conditions: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    # Entry type values; empty means every type
    applies_to: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    error_message: Mapped[str | None] = mapped_column(String(500), nullable=True)

    def __repr__(self) -> str:
        return f"<ValidationRule {self.code} active={self.is_active}>"
