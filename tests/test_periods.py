"""
Test suite for period arithmetic

Tests calendar-correct month steps, due dates and the current-period rules
for monthly and weekly loans.
"""

import pytest
from datetime import date, datetime, timedelta

from microfinance_core.errors import ValidationError
from microfinance_core.periods import (
    Cadence, add_months, due_date_for_period, current_period, chit_fund_current_month,
    to_date, parse_date
)


class TestAddMonths:
    """Test calendar month arithmetic"""

    def test_simple_month_step(self):
        assert add_months(date(2025, 1, 15), 1) == date(2025, 2, 15)

    def test_clamps_to_month_end(self):
        """Test January 31st plus one month lands on the last day of February"""
        assert add_months(date(2025, 1, 31), 1) == date(2025, 2, 28)
        assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)

    def test_crosses_year_boundary(self):
        assert add_months(date(2025, 11, 15), 3) == date(2026, 2, 15)

    def test_negative_months(self):
        assert add_months(date(2025, 3, 31), -1) == date(2025, 2, 28)
        assert add_months(date(2025, 1, 1), -1) == date(2024, 12, 1)


class TestDueDates:
    """Test due dates of schedule periods"""

    def test_monthly_due_dates_do_not_drift(self):
        """Test month-end clamping in February does not shift later periods"""
        start = date(2025, 1, 31)
        assert due_date_for_period(start, 1, Cadence.MONTHLY) == date(2025, 2, 28)
        assert due_date_for_period(start, 2, Cadence.MONTHLY) == date(2025, 3, 31)

    def test_weekly_due_dates(self):
        start = date(2025, 1, 1)
        assert due_date_for_period(start, 1, Cadence.WEEKLY) == date(2025, 1, 8)
        assert due_date_for_period(start, 4, Cadence.WEEKLY) == date(2025, 1, 29)

    def test_period_must_be_positive(self):
        with pytest.raises(ValidationError):
            due_date_for_period(date(2025, 1, 1), 0, Cadence.MONTHLY)


class TestCurrentPeriodMonthly:
    """Test current period for monthly loans"""

    def test_before_disbursement_is_zero(self):
        assert current_period(date(2025, 1, 15), date(2025, 1, 14), Cadence.MONTHLY, 10) == 0

    def test_disbursement_day_is_first_period(self):
        assert current_period(date(2025, 1, 15), date(2025, 1, 15), Cadence.MONTHLY, 10) == 1

    def test_anniversary_not_yet_reached(self):
        """Test the period only advances on the disbursement day-of-month"""
        assert current_period(date(2025, 1, 15), date(2025, 2, 14), Cadence.MONTHLY, 10) == 1
        assert current_period(date(2025, 1, 15), date(2025, 2, 15), Cadence.MONTHLY, 10) == 2

    def test_clamped_to_duration(self):
        assert current_period(date(2025, 1, 15), date(2027, 6, 1), Cadence.MONTHLY, 10) == 10

    def test_accepts_datetimes_and_strings(self):
        assert current_period("2025-01-15", datetime(2025, 4, 20, 23, 59), Cadence.MONTHLY, 10) == 4


class TestCurrentPeriodWeekly:
    """Test current period for weekly loans"""

    def test_disbursement_day_is_first_period(self):
        assert current_period(date(2025, 1, 1), date(2025, 1, 1), Cadence.WEEKLY, 12) == 1

    def test_anniversary_day_belongs_to_completed_week(self):
        start = date(2025, 1, 1)
        assert current_period(start, date(2025, 1, 8), Cadence.WEEKLY, 12) == 1
        assert current_period(start, date(2025, 1, 9), Cadence.WEEKLY, 12) == 2
        assert current_period(start, date(2025, 1, 15), Cadence.WEEKLY, 12) == 2
        assert current_period(start, date(2025, 1, 16), Cadence.WEEKLY, 12) == 3

    def test_clamped_to_duration(self):
        assert current_period(date(2025, 1, 1), date(2025, 12, 31), Cadence.WEEKLY, 12) == 12


class TestCurrentPeriodProperties:
    """Test current period is monotonic and bounded"""

    @pytest.mark.parametrize("cadence", [Cadence.MONTHLY, Cadence.WEEKLY])
    def test_monotonic_and_bounded(self, cadence):
        start = date(2025, 1, 31)
        duration = 12
        previous = 0
        for offset in range(-10, 500):
            period = current_period(start, start + timedelta(days=offset), cadence, duration)
            assert 0 <= period <= duration
            assert period >= previous
            previous = period


class TestChitFundCurrentMonth:
    """Test chit fund month counting"""

    def test_before_start_is_first_month(self):
        assert chit_fund_current_month(date(2025, 1, 10), date(2024, 12, 1), 12) == 1

    def test_counts_months(self):
        assert chit_fund_current_month(date(2025, 1, 10), date(2025, 3, 10), 12) == 3
        assert chit_fund_current_month(date(2025, 1, 10), date(2025, 3, 9), 12) == 2

    def test_clamped_to_duration(self):
        assert chit_fund_current_month(date(2025, 1, 10), date(2030, 1, 1), 12) == 12


class TestDateParsing:
    """Test date normalization"""

    def test_parse_iso_date(self):
        assert parse_date("2025-01-15") == date(2025, 1, 15)

    def test_parse_iso_datetime_with_zulu(self):
        assert parse_date("2025-01-15T10:30:00Z") == date(2025, 1, 15)

    def test_datetime_time_is_stripped(self):
        assert to_date(datetime(2025, 1, 15, 18, 45)) == date(2025, 1, 15)

    @pytest.mark.parametrize("value", ["", "not-a-date", "2025-13-01"])
    def test_invalid_strings(self, value):
        with pytest.raises(ValidationError):
            parse_date(value)

    def test_invalid_type(self):
        with pytest.raises(ValidationError):
            to_date(20250115)
