"""
Period lifecycle: transition table, monthly period generation, the
adjusting period and fiscal year status aggregation.
"""

from datetime import date, timedelta
from uuid import uuid4

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from ledger_kernel.domain.dtos import PeriodInfo
from ledger_kernel.domain.period_lifecycle import (
    ADJUSTING_PERIOD_NUMBER,
    LEGAL_TRANSITIONS,
    adjusting_period_spec,
    aggregate_year_status,
    find_regular_period,
    generate_periods,
    is_legal_transition,
    last_regular_period,
    validate_transition,
)
from ledger_kernel.domain.types import PeriodStatus, PeriodType
from ledger_kernel.exceptions import (
    InvalidFiscalYearError,
    InvalidPeriodTransitionError,
)

OPEN = PeriodStatus.OPEN
SOFT = PeriodStatus.SOFT_CLOSED
CLOSED = PeriodStatus.CLOSED


def _period_info(spec, status=OPEN) -> PeriodInfo:
    return PeriodInfo(
        id=uuid4(),
        fiscal_year_id=uuid4(),
        period_number=spec.period_number,
        name=spec.name,
        start_date=spec.start_date,
        end_date=spec.end_date,
        status=status,
        period_type=spec.period_type,
    )


class TestTransitions:

    @pytest.mark.parametrize(
        "current, requested",
        [(OPEN, SOFT), (OPEN, CLOSED), (SOFT, OPEN), (SOFT, CLOSED), (CLOSED, SOFT)],
    )
    def test_legal(self, current, requested):
        assert is_legal_transition(current, requested)
        validate_transition(current, requested)

    def test_closed_to_open_is_illegal(self):
        with pytest.raises(InvalidPeriodTransitionError) as exc_info:
            validate_transition(CLOSED, OPEN, period_id="p-1")
        err = exc_info.value
        assert err.code == "INVALID_PERIOD_TRANSITION"
        assert err.current_status == "closed"
        assert err.requested_status == "open"
        assert err.period_id == "p-1"

    @pytest.mark.parametrize("status", [OPEN, SOFT, CLOSED])
    def test_same_state_is_illegal(self, status):
        assert not is_legal_transition(status, status)

    def test_table_is_exactly_five_transitions(self):
        assert len(LEGAL_TRANSITIONS) == 5

    def test_accepts_raw_values(self):
        assert is_legal_transition("open", "soft_closed")


class TestGeneratePeriods:

    def test_calendar_year(self):
        periods = generate_periods(date(2024, 1, 1), date(2024, 12, 31), is_calendar=True)

        assert len(periods) == 12
        assert [p.period_number for p in periods] == list(range(1, 13))
        assert periods[0].name == "January 2024"
        assert periods[1].end_date == date(2024, 2, 29)
        assert periods[-1].name == "December 2024"
        assert periods[-1].end_date == date(2024, 12, 31)
        assert all(p.period_type == PeriodType.REGULAR for p in periods)

    def test_non_calendar_year(self):
        periods = generate_periods(date(2024, 7, 1), date(2025, 6, 30))
        assert len(periods) == 12
        assert periods[0].name == "July 2024"
        assert periods[-1].name == "June 2025"

    def test_first_period_starts_on_year_start(self):
        periods = generate_periods(date(2024, 3, 15), date(2024, 12, 31))
        assert periods[0].start_date == date(2024, 3, 15)
        assert periods[0].end_date == date(2024, 3, 31)
        assert len(periods) == 10

    def test_last_period_truncated_to_year_end(self):
        periods = generate_periods(date(2024, 1, 1), date(2024, 6, 20))
        assert periods[-1].start_date == date(2024, 6, 1)
        assert periods[-1].end_date == date(2024, 6, 20)

    def test_end_before_start(self):
        with pytest.raises(InvalidFiscalYearError):
            generate_periods(date(2024, 12, 31), date(2024, 1, 1))

    def test_calendar_flag_requires_full_year(self):
        with pytest.raises(InvalidFiscalYearError) as exc_info:
            generate_periods(date(2024, 2, 1), date(2025, 1, 31), is_calendar=True)
        assert "1 January" in exc_info.value.reason

    def test_more_than_twelve_periods(self):
        with pytest.raises(InvalidFiscalYearError):
            generate_periods(date(2024, 1, 15), date(2025, 1, 14))

    @given(
        start=st.dates(min_value=date(2000, 1, 1), max_value=date(2090, 12, 31)),
        length=st.integers(min_value=1, max_value=300),
    )
    @settings(max_examples=200, deadline=None)
    def test_periods_tile_the_year(self, start, length):
        end = start + timedelta(days=length)
        periods = generate_periods(start, end)

        assert periods[0].start_date == start
        assert periods[-1].end_date == end
        for previous, current in zip(periods, periods[1:]):
            assert current.start_date == previous.end_date + timedelta(days=1)
            assert current.period_number == previous.period_number + 1

        infos = [_period_info(p) for p in periods]
        midpoint = start + timedelta(days=length // 2)
        found = find_regular_period(infos, midpoint)
        assert found is not None
        assert found.start_date <= midpoint <= found.end_date


class TestAdjustingPeriod:

    def test_spec(self):
        spec = adjusting_period_spec(date(2024, 12, 31))
        assert spec.period_number == ADJUSTING_PERIOD_NUMBER == 13
        assert spec.name == "Adjusting 2024"
        assert spec.start_date == spec.end_date == date(2024, 12, 31)
        assert spec.period_type == PeriodType.ADJUSTING

    def test_adjusting_period_never_resolved_for_entries(self):
        specs = generate_periods(date(2024, 1, 1), date(2024, 12, 31))
        infos = [_period_info(s) for s in specs]
        infos.append(_period_info(adjusting_period_spec(date(2024, 12, 31))))

        found = find_regular_period(infos, date(2024, 12, 31))
        assert found.period_number == 12
        assert last_regular_period(infos).period_number == 12

    def test_no_period_for_date_outside_year(self):
        infos = [_period_info(s) for s in generate_periods(date(2024, 1, 1), date(2024, 12, 31))]
        assert find_regular_period(infos, date(2025, 1, 1)) is None

    def test_last_regular_period_of_empty_list(self):
        assert last_regular_period([]) is None


class TestAggregateYearStatus:

    def test_any_open_period_keeps_year_open(self):
        assert aggregate_year_status([SOFT, OPEN, CLOSED]) == OPEN

    def test_no_open_period_soft_closes_year(self):
        assert aggregate_year_status([SOFT, CLOSED, CLOSED]) == SOFT

    def test_all_closed_is_still_soft_closed(self):
        assert aggregate_year_status([CLOSED, CLOSED]) == SOFT

    def test_empty_year_is_open(self):
        assert aggregate_year_status([]) == OPEN
