"""
Balance & Rule Validator -- pure admission check for a candidate entry.

Responsibility:
    Given an entry, the accounts it references, the REGULAR period covering
    its date and the organization's rules, produce a ValidationVerdict that
    enumerates every check.  Invoked for pre-save previews and for pre-post
    validation; the caller decides what to persist.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O, no locking.  Safe for
    unbounded parallel use.

Invariants enforced:
    - can_post iff no ERROR-severity item failed.  The balance check is an
      ERROR item, so a postable entry is always balanced.
    - Balanced iff |base debits - base credits| <= context tolerance,
      whatever the per-line currencies and rates.
    - Checks are never fail-fast: every check runs and contributes items.
    - Check order is fixed (balance, lines, period, currency, custom rules);
      it determines message order only.

Failure modes:
    - Validation failures are returned as data.
    - Unsupported or malformed custom rules raise ConfigurationError
      subclasses (from rule_kinds) -- a misconfigured rule never passes.
"""

from collections.abc import Iterable, Mapping, Sequence
from decimal import Decimal
from uuid import UUID

from ledger_kernel.domain.balance import compute_balance, line_currency
from ledger_kernel.domain.context import LedgerContext
from ledger_kernel.domain.dtos import (
    ZERO,
    AccountInfo,
    BalanceInfo,
    EntryInput,
    EntryLineInput,
    PeriodInfo,
    RuleInfo,
    ValidationResultItem,
    ValidationVerdict,
)
from ledger_kernel.domain.rule_kinds import RuleSubject, parse_rule_condition
from ledger_kernel.domain.types import PeriodStatus, Severity

# Built-in rule codes
CORE_BALANCE = "CORE_BALANCE"
CORE_ZERO_ENTRY = "CORE_ZERO_ENTRY"
CORE_ACCOUNT_EXISTS = "CORE_ACCOUNT_EXISTS"
CORE_ACCOUNT_ACTIVE = "CORE_ACCOUNT_ACTIVE"
CORE_ACCOUNT_POSTABLE = "CORE_ACCOUNT_POSTABLE"
CORE_COST_CENTER_REQUIRED = "CORE_COST_CENTER_REQUIRED"
CORE_LINE_AMOUNT = "CORE_LINE_AMOUNT"
CORE_PERIOD_EXISTS = "CORE_PERIOD_EXISTS"
CORE_PERIOD_OPEN = "CORE_PERIOD_OPEN"
CORE_PERIOD_SOFT_CLOSED = "CORE_PERIOD_SOFT_CLOSED"
CORE_MULTI_CURRENCY = "CORE_MULTI_CURRENCY"
CORE_EXCHANGE_RATE = "CORE_EXCHANGE_RATE"

_ONE = Decimal("1")


def check_balance(lines: Iterable[EntryLineInput], context: LedgerContext) -> BalanceInfo:
    """Quick balance check without reference data."""
    return compute_balance(lines, context.base_currency, context.balance_tolerance)


def validate_entry(
    entry: EntryInput,
    accounts: Mapping[UUID, AccountInfo],
    period: PeriodInfo | None,
    rules: Sequence[RuleInfo],
    context: LedgerContext,
) -> ValidationVerdict:
    """
    Validate a candidate entry against reference data.

    Args:
        entry: The candidate entry.
        accounts: Accounts by id.  Ids absent from the mapping are "not found".
        period: REGULAR period covering ``entry.entry_date``, or None.
        rules: Organization rules.  Inactive rules and rules not applying to
            the entry type are skipped here as well as at the rule source.
        context: Organization settings (base currency, tolerance).

    Returns:
        ValidationVerdict with every check's item, in check order.

    Raises:
        UnsupportedRuleKindError / InvalidRuleConditionError for a
        misconfigured custom rule.
    """
    balance = check_balance(entry.lines, context)

    items: list[ValidationResultItem] = []
    items.extend(_balance_items(balance))
    items.extend(_line_items(entry, accounts))
    items.extend(_period_items(entry, period))
    items.extend(_currency_items(entry, context.base_currency))
    items.extend(_custom_rule_items(entry, accounts, rules, context.base_currency))

    return ValidationVerdict(results=tuple(items), balance=balance)


# ---------------------------------------------------------------------------
# 1. Balance
# ---------------------------------------------------------------------------


def _balance_items(balance: BalanceInfo) -> list[ValidationResultItem]:
    is_zero = balance.total_debits == ZERO and balance.total_credits == ZERO
    return [
        ValidationResultItem(
            rule_code=CORE_BALANCE,
            rule_name="Entry Balance",
            passed=balance.is_balanced,
            severity=Severity.ERROR,
            message=(
                "Entry is balanced"
                if balance.is_balanced
                else f"Entry is not balanced. Difference: {balance.difference:.2f}"
            ),
            details={
                "total_debits": str(balance.total_debits),
                "total_credits": str(balance.total_credits),
                "difference": str(balance.difference),
            },
        ),
        ValidationResultItem(
            rule_code=CORE_ZERO_ENTRY,
            rule_name="Non-Zero Entry",
            passed=not is_zero,
            severity=Severity.ERROR,
            message="Entry has zero amounts" if is_zero else "Entry has valid amounts",
        ),
    ]


# ---------------------------------------------------------------------------
# 2. Per line
# ---------------------------------------------------------------------------


def _line_items(entry: EntryInput, accounts: Mapping[UUID, AccountInfo]) -> list[ValidationResultItem]:
    items: list[ValidationResultItem] = []
    for index, line in enumerate(entry.lines):
        line_number = index + 1
        amount_problem = _line_amount_problem(line)
        account = accounts.get(line.account_id)

        if account is None:
            items.append(ValidationResultItem(
                rule_code=CORE_ACCOUNT_EXISTS,
                rule_name="Account Exists",
                passed=False,
                severity=Severity.ERROR,
                message=f"Account not found: {line.account_id}",
                line_number=line_number,
                account_code=str(line.account_id),
            ))
        else:
            if not account.is_active:
                items.append(ValidationResultItem(
                    rule_code=CORE_ACCOUNT_ACTIVE,
                    rule_name="Account Active",
                    passed=False,
                    severity=Severity.ERROR,
                    message=f"Account is inactive: {account.code} - {account.name}",
                    line_number=line_number,
                    account_code=account.code,
                ))
            if not account.allows_posting:
                items.append(ValidationResultItem(
                    rule_code=CORE_ACCOUNT_POSTABLE,
                    rule_name="Account Allows Posting",
                    passed=False,
                    severity=Severity.ERROR,
                    message=f"Account does not allow posting (header account): {account.code}",
                    line_number=line_number,
                    account_code=account.code,
                ))
            if account.requires_cost_center and line.cost_center_id is None:
                items.append(ValidationResultItem(
                    rule_code=CORE_COST_CENTER_REQUIRED,
                    rule_name="Cost Center Required",
                    passed=False,
                    severity=Severity.ERROR,
                    message=f"Cost center required for account: {account.code}",
                    line_number=line_number,
                    account_code=account.code,
                ))

        if amount_problem is not None:
            items.append(ValidationResultItem(
                rule_code=CORE_LINE_AMOUNT,
                rule_name="Line Amount",
                passed=False,
                severity=Severity.ERROR,
                message=f"Line {line_number}: {amount_problem}",
                details={
                    "debit_amount": str(line.debit_amount),
                    "credit_amount": str(line.credit_amount),
                    "exchange_rate": str(line.exchange_rate),
                },
                line_number=line_number,
                account_code=account.code if account else None,
            ))
    return items


def _line_amount_problem(line: EntryLineInput) -> str | None:
    """Describe what is wrong with a line's amounts, or None."""
    if line.debit_amount < ZERO or line.credit_amount < ZERO:
        return "amounts must not be negative"
    if line.debit_amount == ZERO and line.credit_amount == ZERO:
        return "line has no amount"
    if line.debit_amount != ZERO and line.credit_amount != ZERO:
        return "line has both a debit and a credit amount"
    if line.exchange_rate <= ZERO:
        return "exchange rate must be positive"
    return None


# ---------------------------------------------------------------------------
# 3. Period
# ---------------------------------------------------------------------------


def _period_items(entry: EntryInput, period: PeriodInfo | None) -> list[ValidationResultItem]:
    if period is None:
        return [ValidationResultItem(
            rule_code=CORE_PERIOD_EXISTS,
            rule_name="Period Exists",
            passed=False,
            severity=Severity.ERROR,
            message=f"No accounting period found for date: {entry.entry_date.isoformat()}",
        )]

    details = {"period_id": str(period.id), "period_name": period.name}
    if period.status == PeriodStatus.CLOSED:
        return [ValidationResultItem(
            rule_code=CORE_PERIOD_OPEN,
            rule_name="Period Open",
            passed=False,
            severity=Severity.ERROR,
            message=f"Period is closed: {period.name}",
            details=details,
        )]
    if period.status == PeriodStatus.SOFT_CLOSED:
        return [ValidationResultItem(
            rule_code=CORE_PERIOD_SOFT_CLOSED,
            rule_name="Period Soft-Closed",
            passed=False,
            severity=Severity.WARNING,
            message=f"Period is soft-closed: {period.name}. Posting requires approval.",
            details=details,
        )]
    return [ValidationResultItem(
        rule_code=CORE_PERIOD_OPEN,
        rule_name="Period Open",
        passed=True,
        severity=Severity.INFO,
        message=f"Period is open: {period.name}",
        details=details,
    )]


# ---------------------------------------------------------------------------
# 4. Currency
# ---------------------------------------------------------------------------


def _currency_items(entry: EntryInput, base_currency: str) -> list[ValidationResultItem]:
    items: list[ValidationResultItem] = []
    currencies = sorted({line_currency(line, base_currency) for line in entry.lines})
    if len(currencies) > 1:
        items.append(ValidationResultItem(
            rule_code=CORE_MULTI_CURRENCY,
            rule_name="Multi-Currency Entry",
            passed=True,
            severity=Severity.INFO,
            message=f"Entry uses multiple currencies: {', '.join(currencies)}",
            details={"currencies": currencies, "base_currency": base_currency},
        ))

    for index, line in enumerate(entry.lines):
        currency = line_currency(line, base_currency)
        if currency != base_currency and line.exchange_rate == _ONE:
            items.append(ValidationResultItem(
                rule_code=CORE_EXCHANGE_RATE,
                rule_name="Exchange Rate Valid",
                passed=False,
                severity=Severity.WARNING,
                message=f"Exchange rate of 1 for {currency} may be incorrect",
                line_number=index + 1,
            ))
    return items


# ---------------------------------------------------------------------------
# 5. Custom / business rules
# ---------------------------------------------------------------------------


def _custom_rule_items(
    entry: EntryInput,
    accounts: Mapping[UUID, AccountInfo],
    rules: Sequence[RuleInfo],
    base_currency: str,
) -> list[ValidationResultItem]:
    subject = RuleSubject(entry=entry, accounts=accounts, base_currency=base_currency)
    items: list[ValidationResultItem] = []
    for rule in rules:
        if not rule.is_active or not rule.applies_to_entry(entry.entry_type):
            continue
        outcome = parse_rule_condition(rule.conditions).evaluate(subject)
        message = outcome.message
        if not outcome.passed and rule.error_message:
            message = rule.error_message
        items.append(ValidationResultItem(
            rule_code=rule.code,
            rule_name=rule.name,
            passed=outcome.passed,
            severity=rule.severity,
            message=message,
            details=outcome.details,
            line_number=outcome.line_number,
            account_code=outcome.account_code,
        ))
    return items
