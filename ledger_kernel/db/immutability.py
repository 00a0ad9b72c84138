"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

Posted journal entries, the lines of a posted entry, a CLOSED fiscal year
and recorded validation runs are the audit trail of the ledger.  They can
only be corrected by new entries, never edited in place.

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
We register listeners that intercept these events and check the rules:

    session.flush()
         |
         v
    [before_update event] --> _check_*_immutability() --> ImmutabilityViolationError
         |                                                        ^
         v                                                        |
    [before_delete event] --> _check_*_delete() -----------------+
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity          | When Immutable                 | Mutable fields
----------------|--------------------------------|-------------------------------
JournalEntry    | After status = POSTED          | is_closing_entry, audit fields
JournalLine     | When parent entry is POSTED    | audit fields
FiscalYear      | After status = CLOSED          | audit fields
ValidationRun   | ALWAYS (from creation)         | none

"Was posted" / "was closed" is read from attribute history, so the flush
that performs the DRAFT -> POSTED or SOFT_CLOSED -> CLOSED transition is
allowed and every later flush is checked.

===============================================================================
USAGE
===============================================================================

    from ledger_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # called by create_tables()

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from sqlalchemy import event, inspect, select
from sqlalchemy.orm.attributes import get_history

from ledger_kernel.exceptions import ImmutabilityViolationError
from ledger_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_FIELDS = frozenset({"updated_at", "updated_by_id", "version"})


def _status_value(status) -> str | None:
    if status is None:
        return None
    return getattr(status, "value", status)


def _status_before_flush(target) -> str | None:
    """Status the row had in the database before this flush."""
    history = get_history(target, "status")
    if history.deleted:
        return _status_value(history.deleted[0])
    if history.added:
        return None
    return _status_value(target.status)


def _raise_violation(entity_type: str, entity_id, reason: str, operation: str, field: str | None = None):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            "field": field,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _check_changed_fields(target, entity_type: str, allowed: frozenset[str], state: str) -> None:
    insp = inspect(target)
    for attr in insp.mapper.column_attrs:
        if attr.key in allowed:
            continue
        if insp.attrs[attr.key].history.has_changes():
            _raise_violation(
                entity_type,
                target.id,
                f"Cannot modify field '{attr.key}' on {state} {entity_type}",
                "UPDATE",
                attr.key,
            )


# ---------------------------------------------------------------------------
# JournalEntry / JournalLine
# ---------------------------------------------------------------------------


def _check_journal_entry_immutability(mapper, connection, target):
    """Posted entries are frozen except the closing-entry flag."""
    if _status_before_flush(target) != "posted":
        return
    _check_changed_fields(
        target,
        "JournalEntry",
        _AUDIT_FIELDS | {"is_closing_entry"},
        "posted",
    )


def _check_journal_entry_delete(mapper, connection, target):
    if _status_before_flush(target) == "posted":
        _raise_violation(
            "JournalEntry", target.id, "Cannot delete posted journal entry", "DELETE",
        )


def _parent_entry_posted(connection, entry_id) -> bool:
    from ledger_kernel.models.journal import JournalEntry

    table = JournalEntry.__table__
    status = connection.execute(
        select(table.c.status).where(table.c.id == entry_id)
    ).scalar()
    return _status_value(status) == "posted"


def _check_journal_line_immutability(mapper, connection, target):
    """Lines of a posted entry are frozen."""
    if _parent_entry_posted(connection, target.journal_entry_id):
        _check_changed_fields(target, "JournalLine", _AUDIT_FIELDS, "posted")


def _check_journal_line_delete(mapper, connection, target):
    if _parent_entry_posted(connection, target.journal_entry_id):
        _raise_violation(
            "JournalLine", target.id, "Cannot delete line of posted journal entry", "DELETE",
        )


# ---------------------------------------------------------------------------
# FiscalYear
# ---------------------------------------------------------------------------


def _check_fiscal_year_immutability(mapper, connection, target):
    """A CLOSED fiscal year is frozen."""
    if _status_before_flush(target) != "closed":
        return
    _check_changed_fields(target, "FiscalYear", _AUDIT_FIELDS, "closed")


def _check_fiscal_year_delete(mapper, connection, target):
    if _status_before_flush(target) == "closed":
        _raise_violation(
            "FiscalYear", target.id, "Cannot delete closed fiscal year", "DELETE",
        )


# ---------------------------------------------------------------------------
# ValidationRun
# ---------------------------------------------------------------------------


def _check_validation_run_immutability(mapper, connection, target):
    _raise_violation(
        "ValidationRun", target.id, "Validation runs are immutable", "UPDATE",
    )


def _check_validation_run_delete(mapper, connection, target):
    _raise_violation(
        "ValidationRun", target.id, "Validation runs cannot be deleted", "DELETE",
    )


def _listeners():
    from ledger_kernel.models.fiscal_year import FiscalYear
    from ledger_kernel.models.journal import JournalEntry, JournalLine
    from ledger_kernel.models.validation_run import ValidationRun

    return (
        (JournalEntry, "before_update", _check_journal_entry_immutability),
        (JournalEntry, "before_delete", _check_journal_entry_delete),
        (JournalLine, "before_update", _check_journal_line_immutability),
        (JournalLine, "before_delete", _check_journal_line_delete),
        (FiscalYear, "before_update", _check_fiscal_year_immutability),
        (FiscalYear, "before_delete", _check_fiscal_year_delete),
        (ValidationRun, "before_update", _check_validation_run_immutability),
        (ValidationRun, "before_delete", _check_validation_run_delete),
    )


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Idempotent.  Call after all models are imported but before any database
    operations begin.
    """
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests where you need to intentionally
    violate immutability rules to verify detection.
    """
    for target, event_name, listener_fn in _listeners():
        _safe_remove_listener(target, event_name, listener_fn)
