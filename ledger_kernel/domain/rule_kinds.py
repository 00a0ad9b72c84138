"""
Rule kinds -- the closed set of organization-definable validation rules.

Responsibility:
    Parse a rule's ``conditions`` payload (a tagged variant
    ``{"kind": <name>, ...}``) into a typed, frozen rule object and evaluate
    it against a candidate entry.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Configuration is data, never code.  No payload field is evaluated,
      imported or executed; only the kinds registered in ``_RULE_KINDS`` exist.
    - Unknown kinds raise UnsupportedRuleKindError; malformed payloads
      (missing fields, unexpected fields, bad numbers) raise
      InvalidRuleConditionError.  Nothing is silently ignored.
    - Evaluation is side-effect free.

Extending:
    Add a RuleKind subclass, register it in ``_RULE_KINDS`` and bump
    ``RULE_KIND_SET_VERSION``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, ClassVar
from uuid import UUID

from ledger_kernel.domain.balance import line_currency
from ledger_kernel.domain.dtos import AccountInfo, EntryInput
from ledger_kernel.domain.types import AccountClass, AccountType
from ledger_kernel.exceptions import (
    InvalidRuleConditionError,
    UnsupportedRuleKindError,
)

RULE_KIND_SET_VERSION = 1


@dataclass(frozen=True)
class RuleSubject:
    """What a rule kind may look at: the entry and its resolved accounts."""

    entry: EntryInput
    accounts: Mapping[UUID, AccountInfo]
    base_currency: str

    def account_for_line(self, index: int) -> AccountInfo | None:
        return self.accounts.get(self.entry.lines[index].account_id)


@dataclass(frozen=True)
class RuleOutcome:
    """Pass/fail of one rule, before severity and naming are attached."""

    passed: bool
    message: str
    details: Mapping[str, Any] | None = None
    line_number: int | None = None
    account_code: str | None = None


# ---------------------------------------------------------------------------
# Payload helpers
# ---------------------------------------------------------------------------


def _check_fields(
    kind: str,
    payload: Mapping[str, Any],
    required: set[str],
    optional: frozenset[str] | set[str] = frozenset(),
) -> None:
    present = set(payload) - {"kind"}
    missing = required - present
    if missing:
        raise InvalidRuleConditionError(kind, f"missing field(s): {', '.join(sorted(missing))}")
    unexpected = present - required - set(optional)
    if unexpected:
        raise InvalidRuleConditionError(kind, f"unexpected field(s): {', '.join(sorted(unexpected))}")


def _positive_decimal(kind: str, field_name: str, value: Any) -> Decimal:
    if isinstance(value, bool):
        raise InvalidRuleConditionError(kind, f"{field_name} must be a number")
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        raise InvalidRuleConditionError(kind, f"{field_name} must be a number, got {value!r}") from None
    if not amount.is_finite() or amount <= 0:
        raise InvalidRuleConditionError(kind, f"{field_name} must be positive, got {value!r}")
    return amount


@dataclass(frozen=True)
class AccountMatcher:
    """
    Selects accounts by exactly one criterion.

    Payload forms: ``{"account_type": "expense"}``,
    ``{"account_class": "revenue"}`` or ``{"code_prefix": "22"}``.
    """

    account_type: AccountType | None = None
    account_class: AccountClass | None = None
    code_prefix: str | None = None

    @classmethod
    def from_payload(cls, kind: str, field_name: str, payload: Any) -> AccountMatcher:
        if not isinstance(payload, Mapping) or len(payload) != 1:
            raise InvalidRuleConditionError(
                kind, f"{field_name} must name exactly one of account_type, account_class, code_prefix"
            )
        key, value = next(iter(payload.items()))
        try:
            if key == "account_type":
                return cls(account_type=AccountType(value))
            if key == "account_class":
                return cls(account_class=AccountClass(value))
        except ValueError:
            raise InvalidRuleConditionError(kind, f"{field_name}.{key} has unknown value {value!r}") from None
        if key == "code_prefix" and isinstance(value, str) and value:
            return cls(code_prefix=value)
        raise InvalidRuleConditionError(kind, f"{field_name} has unsupported matcher {key!r}")

    def matches(self, account: AccountInfo) -> bool:
        if self.account_type is not None:
            return account.account_type == self.account_type
        if self.account_class is not None:
            return account.account_class == self.account_class
        return account.code.startswith(self.code_prefix or "")

    def describe(self) -> str:
        if self.account_type is not None:
            return f"account of type {self.account_type.value}"
        if self.account_class is not None:
            return f"{self.account_class.value} account"
        return f"account {self.code_prefix}*"


# ---------------------------------------------------------------------------
# Rule kinds
# ---------------------------------------------------------------------------


class RuleKind(ABC):
    """A parsed, evaluable rule condition."""

    kind: ClassVar[str]

    @classmethod
    @abstractmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> RuleKind:
        ...

    @abstractmethod
    def evaluate(self, subject: RuleSubject) -> RuleOutcome:
        ...


@dataclass(frozen=True)
class RequiresCooccurringAccount(RuleKind):
    """A line on a ``trigger`` account requires another line on a ``required`` account."""

    kind: ClassVar[str] = "requires_cooccurring_account"

    trigger: AccountMatcher
    required: AccountMatcher

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> RequiresCooccurringAccount:
        _check_fields(cls.kind, payload, {"trigger", "required"})
        return cls(
            trigger=AccountMatcher.from_payload(cls.kind, "trigger", payload["trigger"]),
            required=AccountMatcher.from_payload(cls.kind, "required", payload["required"]),
        )

    def evaluate(self, subject: RuleSubject) -> RuleOutcome:
        resolved = [
            (index, subject.account_for_line(index))
            for index in range(len(subject.entry.lines))
        ]
        triggered = [(i, a) for i, a in resolved if a is not None and self.trigger.matches(a)]
        if not triggered:
            return RuleOutcome(passed=True, message=f"No {self.trigger.describe()} in entry")

        trigger_indexes = {i for i, _ in triggered}
        satisfied = any(
            a is not None and i not in trigger_indexes and self.required.matches(a)
            for i, a in resolved
        )
        if satisfied:
            return RuleOutcome(passed=True, message=f"{self.required.describe()} present")

        first_index, first_account = triggered[0]
        return RuleOutcome(
            passed=False,
            message=f"Entry uses {self.trigger.describe()} without {self.required.describe()}",
            details={"trigger_lines": [i + 1 for i in sorted(trigger_indexes)]},
            line_number=first_index + 1,
            account_code=first_account.code,
        )


@dataclass(frozen=True)
class VatWithExpense(RuleKind):
    """A VAT account line (code prefix) should come with an expense-class line."""

    kind: ClassVar[str] = "vat_with_expense"

    vat_account_prefix: str = "22"

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> VatWithExpense:
        _check_fields(cls.kind, payload, set(), {"vat_account_prefix"})
        prefix = payload.get("vat_account_prefix", "22")
        if not isinstance(prefix, str) or not prefix:
            raise InvalidRuleConditionError(cls.kind, "vat_account_prefix must be a non-empty string")
        return cls(vat_account_prefix=prefix)

    def evaluate(self, subject: RuleSubject) -> RuleOutcome:
        return RequiresCooccurringAccount(
            trigger=AccountMatcher(code_prefix=self.vat_account_prefix),
            required=AccountMatcher(account_class=AccountClass.EXPENSE),
        ).evaluate(subject)


@dataclass(frozen=True)
class MaxLineAmount(RuleKind):
    """No single line may exceed ``max_amount`` in base currency."""

    kind: ClassVar[str] = "max_line_amount"

    max_amount: Decimal

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> MaxLineAmount:
        _check_fields(cls.kind, payload, {"max_amount"})
        return cls(max_amount=_positive_decimal(cls.kind, "max_amount", payload["max_amount"]))

    def evaluate(self, subject: RuleSubject) -> RuleOutcome:
        offenders = [
            index
            for index, line in enumerate(subject.entry.lines)
            if line.base_amount > self.max_amount
        ]
        if not offenders:
            return RuleOutcome(passed=True, message=f"All lines within {self.max_amount}")

        first = offenders[0]
        account = subject.account_for_line(first)
        return RuleOutcome(
            passed=False,
            message=(
                f"Line {first + 1} amount {subject.entry.lines[first].base_amount} "
                f"exceeds maximum {self.max_amount}"
            ),
            details={
                "max_amount": str(self.max_amount),
                "lines": [i + 1 for i in offenders],
            },
            line_number=first + 1,
            account_code=account.code if account else None,
        )


@dataclass(frozen=True)
class LargeAmount(RuleKind):
    """Entries whose base debit total exceeds ``threshold`` are flagged for review."""

    kind: ClassVar[str] = "large_amount"

    threshold: Decimal

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> LargeAmount:
        _check_fields(cls.kind, payload, {"threshold"})
        return cls(threshold=_positive_decimal(cls.kind, "threshold", payload["threshold"]))

    def evaluate(self, subject: RuleSubject) -> RuleOutcome:
        total = sum((line.base_debit for line in subject.entry.lines), Decimal("0"))
        if total <= self.threshold:
            return RuleOutcome(passed=True, message=f"Entry total within {self.threshold}")
        return RuleOutcome(
            passed=False,
            message=f"Entry total {total} exceeds threshold {self.threshold} and may require review",
            details={"total": str(total), "threshold": str(self.threshold)},
        )


@dataclass(frozen=True)
class AllowedCurrencies(RuleKind):
    """Every line must use one of ``currencies``."""

    kind: ClassVar[str] = "allowed_currencies"

    currencies: frozenset[str]

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> AllowedCurrencies:
        _check_fields(cls.kind, payload, {"currencies"})
        raw = payload["currencies"]
        if (
            isinstance(raw, (str, bytes))
            or not isinstance(raw, (list, tuple, set, frozenset))
            or not raw
            or not all(isinstance(c, str) and len(c) == 3 for c in raw)
        ):
            raise InvalidRuleConditionError(cls.kind, "currencies must be a non-empty list of ISO codes")
        return cls(currencies=frozenset(c.upper() for c in raw))

    def evaluate(self, subject: RuleSubject) -> RuleOutcome:
        for index, line in enumerate(subject.entry.lines):
            currency = line_currency(line, subject.base_currency)
            if currency not in self.currencies:
                return RuleOutcome(
                    passed=False,
                    message=f"Currency {currency} on line {index + 1} is not allowed",
                    details={"allowed": sorted(self.currencies)},
                    line_number=index + 1,
                )
        return RuleOutcome(passed=True, message="All line currencies allowed")


_RULE_KINDS: dict[str, type[RuleKind]] = {
    cls.kind: cls
    for cls in (
        RequiresCooccurringAccount,
        VatWithExpense,
        MaxLineAmount,
        LargeAmount,
        AllowedCurrencies,
    )
}


def supported_rule_kinds() -> tuple[str, ...]:
    """Names of all supported rule kinds, sorted."""
    return tuple(sorted(_RULE_KINDS))


def parse_rule_condition(payload: Mapping[str, Any]) -> RuleKind:
    """
    Parse a tagged condition payload into its rule kind.

    Raises:
        UnsupportedRuleKindError: ``kind`` is missing or not registered.
        InvalidRuleConditionError: the payload does not fit the kind.
    """
    if not isinstance(payload, Mapping):
        raise InvalidRuleConditionError("<unknown>", "conditions must be a mapping")
    kind = payload.get("kind")
    rule_cls = _RULE_KINDS.get(kind) if isinstance(kind, str) else None
    if rule_cls is None:
        raise UnsupportedRuleKindError(str(kind), supported_rule_kinds())
    return rule_cls.from_payload(payload)
