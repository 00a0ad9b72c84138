"""
ValidationService -- imperative shell around the pure validator.

Responsibility:
    Loads the reference data a verdict needs (accounts, the REGULAR period
    for the entry date, applicable rules), runs ``validate_entry`` and, for
    persisted entries, records the verdict as a ``ValidationRun``.  Also
    owns the organization's validation rule set (CRUD, toggle, defaults).

Architecture position:
    Kernel > Services -- imperative shell.  Reads through ReferenceSelector,
    delegates every decision to ``ledger_kernel.domain.validator``.

Invariants enforced:
    - A rule's ``conditions`` is parsed against the closed rule-kind set on
      create and update; an unsupported kind never reaches storage.
    - Flush-only: never commits or rolls back the session.
    - Every rule mutation is reported to the audit sink with before/after.

Failure modes:
    - EntryNotFoundError: ``entry_id`` not in the organization.
    - UnsupportedRuleKindError / InvalidRuleConditionError: bad rule payload,
      at rule creation or when a stored rule is evaluated.
    - RuleNotFoundError / DuplicateRuleCodeError: rule management.

Audit relevance:
    Stored ValidationRuns are immutable and form the pre-post audit record
    of an entry.
"""

from collections.abc import Iterable, Mapping
from typing import Any, Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.context import LedgerContext
from ledger_kernel.domain.dtos import (
    BalanceInfo,
    EntryInput,
    EntryLineInput,
    RuleInfo,
    ValidationRunInfo,
    ValidationVerdict,
)
from ledger_kernel.domain.rule_kinds import parse_rule_condition
from ledger_kernel.domain.types import EntryType, RuleCategory, Severity
from ledger_kernel.domain.validator import check_balance, validate_entry
from ledger_kernel.exceptions import (
    DuplicateRuleCodeError,
    EntryNotFoundError,
    RuleNotFoundError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.journal import JournalEntry
from ledger_kernel.models.validation_rule import ValidationRule
from ledger_kernel.models.validation_run import ValidationRun
from ledger_kernel.selectors.reference_selector import ReferenceSelector, rule_to_info
from ledger_kernel.services.auditor_service import AuditAction, AuditorService
from ledger_kernel.services.base import BaseService

logger = get_logger("services.validation")

_UPDATABLE_RULE_FIELDS = frozenset({
    "name",
    "description",
    "category",
    "severity",
    "conditions",
    "applies_to",
    "is_active",
    "error_message",
})


class RuleSpec(Protocol):
    """Shape of a configured default rule (see ledger_config.RuleDefinition)."""

    code: str
    name: str
    category: RuleCategory
    severity: Severity
    conditions: Mapping[str, Any]
    applies_to: tuple[EntryType, ...]
    description: str | None
    error_message: str | None
    is_active: bool


def entry_to_input(entry: JournalEntry) -> EntryInput:
    """Convert a persisted entry into the validator's input DTO."""
    return EntryInput(
        entry_date=entry.entry_date,
        entry_type=EntryType(entry.entry_type),
        description=entry.description,
        lines=tuple(
            EntryLineInput(
                account_id=line.account_id,
                debit_amount=line.debit_amount,
                credit_amount=line.credit_amount,
                currency=line.currency,
                exchange_rate=line.exchange_rate,
                cost_center_id=line.cost_center_id,
                description=line.description,
            )
            for line in entry.lines
        ),
    )


def _rule_snapshot(rule: ValidationRule) -> dict[str, Any]:
    return {
        "code": rule.code,
        "name": rule.name,
        "category": rule.category,
        "severity": rule.severity,
        "conditions": dict(rule.conditions),
        "applies_to": list(rule.applies_to or []),
        "is_active": rule.is_active,
        "error_message": rule.error_message,
    }


class ValidationService(BaseService[ValidationRun]):
    """
    Entry validation and rule management.

    Contract:
        ``validate_entry`` accepts either a persisted ``entry_id`` or an
        unsaved ``EntryInput`` (preview).  Only persisted entries get a
        stored ValidationRun.

    Non-goals:
        - Does NOT post entries (PostingService).
        - Does NOT call ``session.commit()``.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        auditor: AuditorService | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._auditor = auditor or AuditorService(clock=self._clock)
        self._reference = ReferenceSelector(session)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_entry(
        self,
        context: LedgerContext,
        *,
        entry_id: UUID | None = None,
        entry: EntryInput | None = None,
        store_result: bool = True,
    ) -> ValidationVerdict:
        """
        Validate a persisted entry or an unsaved candidate.

        Exactly one of ``entry_id`` and ``entry`` must be given.

        Raises:
            ValueError: Neither or both of entry_id/entry given.
            EntryNotFoundError: entry_id not found.
            ConfigurationError: An applicable rule is misconfigured.
        """
        if (entry_id is None) == (entry is None):
            raise ValueError("Pass exactly one of entry_id or entry")

        with LogContext.bind(**context.log_fields(), entry_id=entry_id):
            if entry_id is not None:
                entry = entry_to_input(self._get_entry(context, entry_id))

            verdict = self.evaluate(context, entry)

            if entry_id is not None and store_result:
                self._store_run(context, entry_id, verdict)

            logger.info(
                "entry_validated",
                extra={
                    "entry_type": entry.entry_type.value,
                    "is_valid": verdict.is_valid,
                    "can_post": verdict.can_post,
                    "error_count": verdict.summary.errors,
                    "warning_count": verdict.summary.warnings,
                    "stored": entry_id is not None and store_result,
                },
            )
            return verdict

    def evaluate(self, context: LedgerContext, entry: EntryInput) -> ValidationVerdict:
        """Load reference data and run the pure validator.  No writes."""
        accounts = self._reference.get_accounts(
            context.organization_id, {line.account_id for line in entry.lines},
        )
        period = self._reference.get_regular_period_for_date(
            context.organization_id, entry.entry_date,
        )
        rules = self._reference.get_applicable_rules(context.organization_id, entry.entry_type)
        return validate_entry(entry, accounts, period, rules, context)

    def check_balance(self, context: LedgerContext, lines: Iterable[EntryLineInput]) -> BalanceInfo:
        return check_balance(lines, context)

    def get_validation_history(
        self,
        context: LedgerContext,
        entry_id: UUID,
        limit: int = 20,
    ) -> list[ValidationRunInfo]:
        """Stored verdicts of an entry, newest first."""
        runs = self.session.scalars(
            select(ValidationRun)
            .where(
                ValidationRun.organization_id == context.organization_id,
                ValidationRun.entry_id == entry_id,
            )
            .order_by(ValidationRun.created_at.desc())
            .limit(limit)
        )
        return [
            ValidationRunInfo(
                id=run.id,
                entry_id=run.entry_id,
                is_valid=run.is_valid,
                can_post=run.can_post,
                error_count=run.error_count,
                warning_count=run.warning_count,
                info_count=run.info_count,
                results=tuple(run.results),
                created_at=run.created_at,
            )
            for run in runs
        ]

    def _get_entry(self, context: LedgerContext, entry_id: UUID) -> JournalEntry:
        entry = self.session.scalars(
            select(JournalEntry).where(
                JournalEntry.id == entry_id,
                JournalEntry.organization_id == context.organization_id,
            )
        ).first()
        if entry is None:
            raise EntryNotFoundError(str(entry_id))
        return entry

    def _store_run(self, context: LedgerContext, entry_id: UUID, verdict: ValidationVerdict) -> ValidationRun:
        run = ValidationRun(
            organization_id=context.organization_id,
            entry_id=entry_id,
            is_valid=verdict.is_valid,
            can_post=verdict.can_post,
            error_count=verdict.summary.errors,
            warning_count=verdict.summary.warnings,
            info_count=verdict.summary.infos,
            results=[item.to_dict() for item in verdict.results],
            balance=verdict.balance.to_dict(),
            created_at=self._clock.now(),
            created_by_id=context.actor_id,
        )
        self.session.add(run)
        self.session.flush()
        return run

    # ------------------------------------------------------------------
    # Rule management
    # ------------------------------------------------------------------

    def create_rule(
        self,
        context: LedgerContext,
        *,
        code: str,
        name: str,
        category: RuleCategory,
        severity: Severity,
        conditions: Mapping[str, Any],
        applies_to: Iterable[EntryType] = (),
        description: str | None = None,
        error_message: str | None = None,
        is_active: bool = True,
    ) -> RuleInfo:
        """
        Create a validation rule.

        Raises:
            UnsupportedRuleKindError / InvalidRuleConditionError: bad payload.
            DuplicateRuleCodeError: code already used in the organization.
        """
        parse_rule_condition(conditions)

        if self._find_rule_by_code(context, code) is not None:
            raise DuplicateRuleCodeError(code)

        rule = ValidationRule(
            organization_id=context.organization_id,
            code=code,
            name=name,
            description=description,
            category=RuleCategory(category).value,
            severity=Severity(severity).value,
            conditions=dict(conditions),
            applies_to=[EntryType(t).value for t in applies_to],
            is_active=is_active,
            error_message=error_message,
            created_by_id=context.actor_id,
        )
        self.session.add(rule)
        self.session.flush()

        self._auditor.record_rule_change(
            context, AuditAction.RULE_CREATED, rule.id, None, _rule_snapshot(rule),
        )
        logger.info("rule_created", extra={"rule_code": code, "rule_kind": conditions.get("kind")})
        return rule_to_info(rule)

    def get_rule(self, context: LedgerContext, rule_id: UUID) -> RuleInfo:
        return rule_to_info(self._get_rule(context, rule_id))

    def list_rules(
        self,
        context: LedgerContext,
        *,
        category: RuleCategory | None = None,
        is_active: bool | None = None,
        entry_type: EntryType | None = None,
    ) -> list[RuleInfo]:
        stmt = select(ValidationRule).where(
            ValidationRule.organization_id == context.organization_id,
        )
        if category is not None:
            stmt = stmt.where(ValidationRule.category == RuleCategory(category).value)
        if is_active is not None:
            stmt = stmt.where(ValidationRule.is_active.is_(is_active))
        rules = [rule_to_info(rule) for rule in self.session.scalars(stmt.order_by(ValidationRule.code))]
        if entry_type is not None:
            rules = [rule for rule in rules if rule.applies_to_entry(EntryType(entry_type))]
        return rules

    def update_rule(self, context: LedgerContext, rule_id: UUID, **changes: Any) -> RuleInfo:
        """
        Update rule fields.

        Raises:
            ValueError: Unknown field name.
            UnsupportedRuleKindError / InvalidRuleConditionError: bad payload.
        """
        unknown = set(changes) - _UPDATABLE_RULE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update rule fields: {', '.join(sorted(unknown))}")
        if "conditions" in changes:
            parse_rule_condition(changes["conditions"])
            changes["conditions"] = dict(changes["conditions"])
        if "category" in changes:
            changes["category"] = RuleCategory(changes["category"]).value
        if "severity" in changes:
            changes["severity"] = Severity(changes["severity"]).value
        if "applies_to" in changes:
            changes["applies_to"] = [EntryType(t).value for t in changes["applies_to"]]

        rule = self._get_rule(context, rule_id)
        before = _rule_snapshot(rule)
        for field_name, value in changes.items():
            setattr(rule, field_name, value)
        rule.updated_by_id = context.actor_id
        self.session.flush()

        self._auditor.record_rule_change(
            context, AuditAction.RULE_UPDATED, rule.id, before, _rule_snapshot(rule),
        )
        logger.info("rule_updated", extra={"rule_code": rule.code, "fields": sorted(changes)})
        return rule_to_info(rule)

    def toggle_rule(self, context: LedgerContext, rule_id: UUID, is_active: bool | None = None) -> RuleInfo:
        """Flip ``is_active`` (or set it explicitly)."""
        rule = self._get_rule(context, rule_id)
        before = rule.is_active
        rule.is_active = (not before) if is_active is None else is_active
        rule.updated_by_id = context.actor_id
        self.session.flush()

        self._auditor.record_rule_change(
            context, AuditAction.RULE_TOGGLED, rule.id,
            {"is_active": before}, {"is_active": rule.is_active},
        )
        logger.info("rule_toggled", extra={"rule_code": rule.code, "is_active": rule.is_active})
        return rule_to_info(rule)

    def delete_rule(self, context: LedgerContext, rule_id: UUID) -> None:
        rule = self._get_rule(context, rule_id)
        before = _rule_snapshot(rule)
        self.session.delete(rule)
        self.session.flush()

        self._auditor.record_rule_change(context, AuditAction.RULE_DELETED, rule_id, before, None)
        logger.info("rule_deleted", extra={"rule_code": before["code"]})

    def seed_default_rules(self, context: LedgerContext, rules: Iterable[RuleSpec]) -> list[RuleInfo]:
        """Install configured default rules whose code is not yet present."""
        created: list[RuleInfo] = []
        for spec in rules:
            if self._find_rule_by_code(context, spec.code) is not None:
                continue
            created.append(self.create_rule(
                context,
                code=spec.code,
                name=spec.name,
                category=spec.category,
                severity=spec.severity,
                conditions=spec.conditions,
                applies_to=spec.applies_to,
                description=spec.description,
                error_message=spec.error_message,
                is_active=spec.is_active,
            ))
        logger.info("default_rules_seeded", extra={"created_count": len(created)})
        return created

    def _find_rule_by_code(self, context: LedgerContext, code: str) -> ValidationRule | None:
        return self.session.scalars(
            select(ValidationRule).where(
                ValidationRule.organization_id == context.organization_id,
                ValidationRule.code == code,
            )
        ).first()

    def _get_rule(self, context: LedgerContext, rule_id: UUID) -> ValidationRule:
        rule = self.session.scalars(
            select(ValidationRule).where(
                ValidationRule.id == rule_id,
                ValidationRule.organization_id == context.organization_id,
            )
        ).first()
        if rule is None:
            raise RuleNotFoundError(str(rule_id))
        return rule
