"""
Period lifecycle -- pure state machine and period generation.

Responsibility:
    Defines which period status changes are legal, how a fiscal year is
    cut into monthly periods, where the adjusting period 13 sits, and how
    a fiscal year's status follows from its periods.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  PeriodService is the
    imperative shell that locks rows and persists the outcome.

Invariants enforced:
    - CLOSED -> OPEN is never legal; a closed period can only be
      soft-reopened (CLOSED -> SOFT_CLOSED).
    - Regular periods are contiguous, non-overlapping, numbered from 1,
      and never more than 12.
    - The adjusting period is number 13 and spans only the year end date.

Failure modes:
    - InvalidPeriodTransitionError for any transition outside the table
      (same-state requests included).
    - InvalidFiscalYearError for a date range that cannot be cut into
      at most 12 monthly periods.
"""

import calendar
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date, timedelta

from ledger_kernel.domain.dtos import PeriodInfo
from ledger_kernel.domain.types import PeriodStatus, PeriodType
from ledger_kernel.exceptions import (
    InvalidFiscalYearError,
    InvalidPeriodTransitionError,
)

MAX_REGULAR_PERIODS = 12
ADJUSTING_PERIOD_NUMBER = 13

LEGAL_TRANSITIONS: frozenset[tuple[PeriodStatus, PeriodStatus]] = frozenset({
    (PeriodStatus.OPEN, PeriodStatus.SOFT_CLOSED),
    (PeriodStatus.OPEN, PeriodStatus.CLOSED),
    (PeriodStatus.SOFT_CLOSED, PeriodStatus.OPEN),
    (PeriodStatus.SOFT_CLOSED, PeriodStatus.CLOSED),
    (PeriodStatus.CLOSED, PeriodStatus.SOFT_CLOSED),
})


@dataclass(frozen=True)
class PeriodSpec:
    """A period to be created, before it has an id."""

    period_number: int
    name: str
    start_date: date
    end_date: date
    period_type: PeriodType = PeriodType.REGULAR


def is_legal_transition(current: PeriodStatus, requested: PeriodStatus) -> bool:
    return (PeriodStatus(current), PeriodStatus(requested)) in LEGAL_TRANSITIONS


def validate_transition(
    current: PeriodStatus,
    requested: PeriodStatus,
    period_id: str | None = None,
) -> None:
    """Raise InvalidPeriodTransitionError unless current -> requested is legal."""
    if not is_legal_transition(current, requested):
        raise InvalidPeriodTransitionError(
            PeriodStatus(current).value, PeriodStatus(requested).value, period_id,
        )


def _month_end(on_date: date) -> date:
    return on_date.replace(day=calendar.monthrange(on_date.year, on_date.month)[1])


def generate_periods(start: date, end: date, is_calendar: bool = False) -> list[PeriodSpec]:
    """
    Cut a fiscal year into consecutive monthly periods.

    The first period starts on ``start`` (which need not be the 1st), every
    period ends on a month end, and the last period is truncated to ``end``.

    Raises:
        InvalidFiscalYearError: end not after start, a calendar year that does
            not run 1 Jan - 31 Dec, or a range needing more than 12 periods.
    """
    if end <= start:
        raise InvalidFiscalYearError(f"end date {end} must be after start date {start}")
    if is_calendar and not (
        start == date(start.year, 1, 1) and end == date(start.year, 12, 31)
    ):
        raise InvalidFiscalYearError("calendar fiscal year must run from 1 January to 31 December")

    periods: list[PeriodSpec] = []
    cursor = start
    while cursor <= end:
        number = len(periods) + 1
        if number > MAX_REGULAR_PERIODS:
            raise InvalidFiscalYearError(
                f"date range {start} to {end} needs more than {MAX_REGULAR_PERIODS} periods"
            )
        period_end = min(_month_end(cursor), end)
        periods.append(PeriodSpec(
            period_number=number,
            name=f"{calendar.month_name[cursor.month]} {cursor.year}",
            start_date=cursor,
            end_date=period_end,
        ))
        cursor = period_end + timedelta(days=1)
    return periods


def adjusting_period_spec(year_end: date) -> PeriodSpec:
    """Period 13: ADJUSTING, spanning only the year end date."""
    return PeriodSpec(
        period_number=ADJUSTING_PERIOD_NUMBER,
        name=f"Adjusting {year_end.year}",
        start_date=year_end,
        end_date=year_end,
        period_type=PeriodType.ADJUSTING,
    )


def find_regular_period(periods: Iterable[PeriodInfo], on_date: date) -> PeriodInfo | None:
    """REGULAR period containing ``on_date``, or None.

    The adjusting period shares the year end date with the last regular
    period and is never returned.
    """
    for period in periods:
        if period.period_type == PeriodType.REGULAR and period.contains(on_date):
            return period
    return None


def last_regular_period(periods: Sequence[PeriodInfo]) -> PeriodInfo | None:
    regular = [p for p in periods if p.period_type == PeriodType.REGULAR]
    return max(regular, key=lambda p: p.period_number) if regular else None


def aggregate_year_status(statuses: Iterable[PeriodStatus]) -> PeriodStatus:
    """Fiscal year status implied by its period statuses.

    OPEN while any period is OPEN, otherwise SOFT_CLOSED.  CLOSED is set
    only by the year-end close.  A year without periods is OPEN.
    """
    statuses = [PeriodStatus(s) for s in statuses]
    if not statuses or PeriodStatus.OPEN in statuses:
        return PeriodStatus.OPEN
    return PeriodStatus.SOFT_CLOSED
