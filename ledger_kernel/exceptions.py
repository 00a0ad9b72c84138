"""
Typed Exception Hierarchy for the Ledger Kernel.

===============================================================================
ERROR TAXONOMY
===============================================================================

The ledger distinguishes four kinds of failure:

  1. Validation failures -- expected, data-driven.  These are NEVER raised;
     they are returned as ``ValidationVerdict`` data so a caller sees every
     problem of an entry in one round trip.
  2. Precondition failures -- closing a year with open periods, closing an
     already-closed year, an illegal period transition.  Raised fail-fast,
     recoverable, and carry the offending entities and counts.
  3. Configuration errors -- an unsupported or malformed custom rule.
     Raised at rule creation AND at evaluation time; never silently passed.
  4. Consistency failures -- a step of the atomic year-end close failed or
     a concurrent writer won the race.  The whole unit of work is rolled back.

Every exception:
  - inherits from LedgerKernelError (catch by type, not by message)
  - has a class-level ``code`` (machine-readable, API-safe)
  - stores its context as attributes (survives logging and serialization)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    LedgerKernelError (base)
    |
    +-- PeriodError
    |   +-- PeriodNotFoundError
    |   +-- ClosedPeriodError
    |   +-- InvalidPeriodTransitionError
    |   +-- PendingEntriesError
    |   +-- AdjustingPeriodExistsError
    |
    +-- FiscalYearError
    |   +-- FiscalYearNotFoundError
    |   +-- FiscalYearOverlapError
    |   +-- DuplicateFiscalYearError
    |   +-- InvalidFiscalYearError
    |   +-- FiscalYearAlreadyClosedError
    |   +-- FiscalYearClosedError
    |   +-- FiscalYearNotOpenError
    |   +-- FiscalYearNotEmptyError
    |   +-- OpenPeriodsError
    |
    +-- AccountError
    |   +-- AccountNotFoundError
    |
    +-- ValidationRuleError
    |   +-- RuleNotFoundError
    |   +-- DuplicateRuleCodeError
    |
    +-- ConfigurationError
    |   +-- UnsupportedRuleKindError
    |   +-- InvalidRuleConditionError
    |
    +-- PostingError
    |   +-- EntryNotFoundError
    |   +-- InvalidEntryStatusError
    |   +-- EntryValidationError
    |
    +-- YearEndCloseError
    |
    +-- ConcurrencyError
    |   +-- OptimisticLockError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
HANDLING PATTERNS
===============================================================================

    try:
        orchestrator.close_fiscal_year(ctx, fiscal_year_id, closing_date)
    except OpenPeriodsError as e:
        return {"error": e.code, "open_periods": e.open_period_count}
    except ConcurrencyError:
        retry()

ConcurrencyError is the only category that is safe to retry blindly.
===============================================================================
"""


class LedgerKernelError(Exception):
    """
    Base exception for all ledger kernel errors.

    All subclasses must have a `code` class attribute for
    machine-readable error identification.
    """

    code: str = "LEDGER_KERNEL_ERROR"


# Period-related exceptions


class PeriodError(LedgerKernelError):
    """Base exception for accounting period errors."""

    code: str = "PERIOD_ERROR"


class PeriodNotFoundError(PeriodError):
    """No accounting period matches the given identifier or date."""

    code: str = "PERIOD_NOT_FOUND"

    def __init__(self, identifier: str):
        self.identifier = identifier
        super().__init__(f"Accounting period not found: {identifier}")


class ClosedPeriodError(PeriodError):
    """Attempted to post into a CLOSED accounting period."""

    code: str = "CLOSED_PERIOD"

    def __init__(self, period_name: str, entry_date: str):
        self.period_name = period_name
        self.entry_date = entry_date
        super().__init__(
            f"Cannot post to closed period {period_name} (entry_date: {entry_date})"
        )


class InvalidPeriodTransitionError(PeriodError):
    """Requested status change is not in the period state machine."""

    code: str = "INVALID_PERIOD_TRANSITION"

    def __init__(self, current_status: str, requested_status: str, period_id: str | None = None):
        self.current_status = current_status
        self.requested_status = requested_status
        self.period_id = period_id
        super().__init__(
            f"Illegal period transition {current_status} -> {requested_status}"
            + (f" (period {period_id})" if period_id else "")
        )


class PendingEntriesError(PeriodError):
    """Period close refused while DRAFT/PENDING entries remain."""

    code: str = "PENDING_ENTRIES"

    def __init__(self, period_id: str, pending_count: int):
        self.period_id = period_id
        self.pending_count = pending_count
        super().__init__(
            f"Period {period_id} has {pending_count} unposted entries; "
            "pass override=True to close anyway"
        )


class AdjustingPeriodExistsError(PeriodError):
    """A fiscal year may carry at most one adjusting period."""

    code: str = "ADJUSTING_PERIOD_EXISTS"

    def __init__(self, fiscal_year_id: str):
        self.fiscal_year_id = fiscal_year_id
        super().__init__(f"Fiscal year {fiscal_year_id} already has an adjusting period")


# Fiscal-year-related exceptions


class FiscalYearError(LedgerKernelError):
    """Base exception for fiscal year errors."""

    code: str = "FISCAL_YEAR_ERROR"


class FiscalYearNotFoundError(FiscalYearError):
    """Fiscal year does not exist in the organization scope."""

    code: str = "FISCAL_YEAR_NOT_FOUND"

    def __init__(self, fiscal_year_id: str):
        self.fiscal_year_id = fiscal_year_id
        super().__init__(f"Fiscal year not found: {fiscal_year_id}")


class FiscalYearOverlapError(FiscalYearError):
    """New fiscal year date range overlaps an existing one."""

    code: str = "FISCAL_YEAR_OVERLAP"

    def __init__(self, new_code: str, existing_code: str, overlap_start: str, overlap_end: str):
        self.new_code = new_code
        self.existing_code = existing_code
        self.overlap_start = overlap_start
        self.overlap_end = overlap_end
        super().__init__(
            f"Fiscal year {new_code} overlaps with {existing_code} "
            f"({overlap_start} to {overlap_end})"
        )


class DuplicateFiscalYearError(FiscalYearError):
    """Fiscal year code already used by the organization."""

    code: str = "DUPLICATE_FISCAL_YEAR"

    def __init__(self, fiscal_year_code: str):
        self.fiscal_year_code = fiscal_year_code
        super().__init__(f"Fiscal year with code {fiscal_year_code} already exists")


class InvalidFiscalYearError(FiscalYearError):
    """Fiscal year date range cannot produce a valid period set."""

    code: str = "INVALID_FISCAL_YEAR"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid fiscal year: {reason}")


class FiscalYearAlreadyClosedError(FiscalYearError):
    """Year-end close requested for a year that is already CLOSED."""

    code: str = "FISCAL_YEAR_ALREADY_CLOSED"

    def __init__(self, fiscal_year_id: str):
        self.fiscal_year_id = fiscal_year_id
        super().__init__(f"Fiscal year {fiscal_year_id} is already closed")


class FiscalYearClosedError(FiscalYearError):
    """Operation not permitted on a CLOSED fiscal year or its periods."""

    code: str = "FISCAL_YEAR_CLOSED"

    def __init__(self, fiscal_year_id: str, operation: str):
        self.fiscal_year_id = fiscal_year_id
        self.operation = operation
        super().__init__(f"Cannot {operation}: fiscal year {fiscal_year_id} is closed")


class FiscalYearNotOpenError(FiscalYearError):
    """Only an OPEN fiscal year can become the current one."""

    code: str = "FISCAL_YEAR_NOT_OPEN"

    def __init__(self, fiscal_year_id: str, status: str):
        self.fiscal_year_id = fiscal_year_id
        self.status = status
        super().__init__(f"Fiscal year {fiscal_year_id} is {status}, not open")


class FiscalYearNotEmptyError(FiscalYearError):
    """A fiscal year holding journal entries or opening balances cannot be deleted."""

    code: str = "FISCAL_YEAR_NOT_EMPTY"

    def __init__(self, fiscal_year_id: str, entry_count: int, opening_balance_count: int = 0):
        self.fiscal_year_id = fiscal_year_id
        self.entry_count = entry_count
        self.opening_balance_count = opening_balance_count
        super().__init__(
            f"Fiscal year {fiscal_year_id} holds {entry_count} journal entries "
            f"and {opening_balance_count} opening balances"
        )


class OpenPeriodsError(FiscalYearError):
    """Year-end close refused because periods are still OPEN."""

    code: str = "OPEN_PERIODS"

    def __init__(self, fiscal_year_id: str, open_period_count: int, open_period_numbers: tuple[int, ...] = ()):
        self.fiscal_year_id = fiscal_year_id
        self.open_period_count = open_period_count
        self.open_period_numbers = open_period_numbers
        super().__init__(
            f"Cannot close fiscal year {fiscal_year_id}: "
            f"{open_period_count} period(s) still open"
        )


# Account-related exceptions


class AccountError(LedgerKernelError):
    """Base exception for account errors."""

    code: str = "ACCOUNT_ERROR"


class AccountNotFoundError(AccountError):
    """Account was not found."""

    code: str = "ACCOUNT_NOT_FOUND"

    def __init__(self, account_ref: str):
        self.account_ref = account_ref
        super().__init__(f"Account not found: {account_ref}")


# Validation-rule-related exceptions


class ValidationRuleError(LedgerKernelError):
    """Base exception for validation rule management errors."""

    code: str = "VALIDATION_RULE_ERROR"


class RuleNotFoundError(ValidationRuleError):
    """Validation rule does not exist in the organization scope."""

    code: str = "RULE_NOT_FOUND"

    def __init__(self, rule_id: str):
        self.rule_id = rule_id
        super().__init__(f"Validation rule not found: {rule_id}")


class DuplicateRuleCodeError(ValidationRuleError):
    """Rule codes are unique per organization."""

    code: str = "DUPLICATE_RULE_CODE"

    def __init__(self, rule_code: str):
        self.rule_code = rule_code
        super().__init__(f"Validation rule with code {rule_code} already exists")


# Configuration errors


class ConfigurationError(LedgerKernelError):
    """Base exception for invalid organization configuration."""

    code: str = "CONFIGURATION_ERROR"


class UnsupportedRuleKindError(ConfigurationError):
    """Rule condition names a kind outside the supported set."""

    code: str = "UNSUPPORTED_RULE_KIND"

    def __init__(self, kind: str, supported: tuple[str, ...] = ()):
        self.kind = kind
        self.supported = supported
        super().__init__(
            f"Unsupported rule kind: {kind!r}"
            + (f" (supported: {', '.join(supported)})" if supported else "")
        )


class InvalidRuleConditionError(ConfigurationError):
    """Rule condition payload is malformed for its kind."""

    code: str = "INVALID_RULE_CONDITION"

    def __init__(self, kind: str, reason: str):
        self.kind = kind
        self.reason = reason
        super().__init__(f"Invalid condition for rule kind {kind!r}: {reason}")


# Posting-related exceptions


class PostingError(LedgerKernelError):
    """Base exception for entry posting errors."""

    code: str = "POSTING_ERROR"


class EntryNotFoundError(PostingError):
    """Journal entry does not exist in the organization scope."""

    code: str = "ENTRY_NOT_FOUND"

    def __init__(self, entry_id: str):
        self.entry_id = entry_id
        super().__init__(f"Journal entry not found: {entry_id}")


class InvalidEntryStatusError(PostingError):
    """Entry is not in a status that allows the requested operation."""

    code: str = "INVALID_ENTRY_STATUS"

    def __init__(self, entry_id: str, current_status: str, operation: str):
        self.entry_id = entry_id
        self.current_status = current_status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} entry {entry_id} in status {current_status}"
        )


class EntryValidationError(PostingError):
    """Entry failed ERROR-severity validation and cannot be posted."""

    code: str = "ENTRY_VALIDATION_FAILED"

    def __init__(self, entry_id: str, failed_rule_codes: tuple[str, ...]):
        self.entry_id = entry_id
        self.failed_rule_codes = failed_rule_codes
        super().__init__(
            f"Entry {entry_id} cannot be posted: {', '.join(failed_rule_codes)}"
        )


# Year-end close


class YearEndCloseError(LedgerKernelError):
    """A step of the atomic year-end close failed; nothing was committed."""

    code: str = "YEAR_END_CLOSE_FAILED"

    def __init__(self, fiscal_year_id: str, step: str, reason: str):
        self.fiscal_year_id = fiscal_year_id
        self.step = step
        self.reason = reason
        super().__init__(
            f"Year-end close of {fiscal_year_id} failed at step {step}: {reason}"
        )


# Concurrency-related exceptions


class ConcurrencyError(LedgerKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """Optimistic locking conflict detected."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


# Immutability-related exceptions


class ImmutabilityError(LedgerKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    Posted journal entries and their lines, closed fiscal years and
    validation runs are immutable.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
