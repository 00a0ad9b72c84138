"""
Module: ledger_kernel.selectors.reference_selector
Responsibility: Read-only lookups of the reference data the validator needs:
    accounts by id, the REGULAR period covering a date, and the active rules
    applicable to an entry type.  Also the ORM -> DTO conversions shared by
    the kernel services.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Account lookup omits unknown or foreign-organization ids; the validator
      treats omission as "not found".
    - Period lookup only ever returns REGULAR periods.  The adjusting period
      shares the year end date and is never returned.
"""

from collections.abc import Iterable
from datetime import date
from uuid import UUID

from sqlalchemy import select

from ledger_kernel.domain.dtos import AccountInfo, FiscalYearInfo, PeriodInfo, RuleInfo
from ledger_kernel.domain.types import (
    AccountType,
    EntryType,
    NormalBalance,
    PeriodStatus,
    PeriodType,
    RuleCategory,
    Severity,
)
from ledger_kernel.models.account import Account
from ledger_kernel.models.fiscal_year import AccountingPeriod, FiscalYear
from ledger_kernel.models.validation_rule import ValidationRule
from ledger_kernel.selectors.base import BaseSelector


def account_to_info(account: Account) -> AccountInfo:
    return AccountInfo(
        id=account.id,
        code=account.code,
        name=account.name,
        account_type=AccountType(account.account_type),
        normal_balance=NormalBalance(account.normal_balance),
        is_active=account.is_active,
        allows_posting=account.allows_posting,
        requires_cost_center=account.requires_cost_center,
        parent_id=account.parent_id,
    )


def period_to_info(period: AccountingPeriod) -> PeriodInfo:
    return PeriodInfo(
        id=period.id,
        fiscal_year_id=period.fiscal_year_id,
        period_number=period.period_number,
        name=period.name,
        start_date=period.start_date,
        end_date=period.end_date,
        status=PeriodStatus(period.status),
        period_type=PeriodType(period.period_type),
        closed_at=period.closed_at,
        closed_with_override=period.closed_with_override,
    )


def fiscal_year_to_info(fiscal_year: FiscalYear) -> FiscalYearInfo:
    return FiscalYearInfo(
        id=fiscal_year.id,
        code=fiscal_year.code,
        name=fiscal_year.name,
        start_date=fiscal_year.start_date,
        end_date=fiscal_year.end_date,
        status=PeriodStatus(fiscal_year.status),
        is_calendar=fiscal_year.is_calendar,
        retained_earnings_account_id=fiscal_year.retained_earnings_account_id,
        closing_entry_id=fiscal_year.closing_entry_id,
        closed_at=fiscal_year.closed_at,
        is_current=fiscal_year.is_current,
    )


def rule_to_info(rule: ValidationRule) -> RuleInfo:
    return RuleInfo(
        id=rule.id,
        code=rule.code,
        name=rule.name,
        category=RuleCategory(rule.category),
        severity=Severity(rule.severity),
        conditions=rule.conditions,
        applies_to=tuple(EntryType(t) for t in (rule.applies_to or [])),
        is_active=rule.is_active,
        error_message=rule.error_message,
    )


class ReferenceSelector(BaseSelector[Account]):
    """
    Account lookup, period lookup and rule source.

    Contract:
        Every method is scoped to one organization and returns frozen DTOs.
    """

    def get_accounts(
        self,
        organization_id: UUID,
        account_ids: Iterable[UUID],
    ) -> dict[UUID, AccountInfo]:
        """Accounts by id; unknown ids are omitted."""
        ids = set(account_ids)
        if not ids:
            return {}
        rows = self.session.scalars(
            select(Account).where(
                Account.organization_id == organization_id,
                Account.id.in_(ids),
            )
        )
        return {account.id: account_to_info(account) for account in rows}

    def list_accounts(self, organization_id: UUID) -> list[AccountInfo]:
        rows = self.session.scalars(
            select(Account)
            .where(Account.organization_id == organization_id)
            .order_by(Account.code)
        )
        return [account_to_info(account) for account in rows]

    def get_regular_period_for_date(
        self,
        organization_id: UUID,
        on_date: date,
    ) -> PeriodInfo | None:
        """REGULAR period covering ``on_date``, or None."""
        period = self.session.scalars(
            select(AccountingPeriod)
            .join(FiscalYear, FiscalYear.id == AccountingPeriod.fiscal_year_id)
            .where(
                FiscalYear.organization_id == organization_id,
                AccountingPeriod.period_type == PeriodType.REGULAR.value,
                AccountingPeriod.start_date <= on_date,
                AccountingPeriod.end_date >= on_date,
            )
            .order_by(AccountingPeriod.start_date)
        ).first()
        return period_to_info(period) if period is not None else None

    def get_periods(self, fiscal_year_id: UUID) -> list[PeriodInfo]:
        rows = self.session.scalars(
            select(AccountingPeriod)
            .where(AccountingPeriod.fiscal_year_id == fiscal_year_id)
            .order_by(AccountingPeriod.period_number)
        )
        return [period_to_info(period) for period in rows]

    def get_applicable_rules(
        self,
        organization_id: UUID,
        entry_type: EntryType,
    ) -> list[RuleInfo]:
        """Active rules that apply to ``entry_type``, ordered by code."""
        rows = self.session.scalars(
            select(ValidationRule)
            .where(
                ValidationRule.organization_id == organization_id,
                ValidationRule.is_active.is_(True),
            )
            .order_by(ValidationRule.code)
        )
        rules = [rule_to_info(rule) for rule in rows]
        return [rule for rule in rules if rule.applies_to_entry(EntryType(entry_type))]
