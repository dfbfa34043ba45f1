"""Unit tests for legacy day numbering and wall-clock checks."""

from datetime import date, datetime, timedelta

import pytest

from src.domain.license_clock import add_days, date_from_excel_day_number, excel_day_number, is_past


class TestExcelDayNumber:
    """Test spreadsheet day numbering."""

    def test_known_value(self):
        assert excel_day_number(date(2024, 1, 1)) == 45292

    def test_consecutive_days_differ_by_one(self):
        assert excel_day_number(date(2024, 1, 2)) - excel_day_number(date(2024, 1, 1)) == 1

    def test_epoch(self):
        """1900-01-01 maps to 2, the compatibility offset."""
        assert excel_day_number(date(1900, 1, 1)) == 2

    def test_datetime_ignores_time(self):
        assert excel_day_number(datetime(2024, 1, 1, 23, 59)) == excel_day_number(date(2024, 1, 1))

    def test_across_leap_day(self):
        assert excel_day_number(date(2024, 3, 1)) - excel_day_number(date(2024, 2, 28)) == 2

    @pytest.mark.parametrize("day", [date(2000, 2, 29), date(2024, 1, 1), date(2031, 12, 31)])
    def test_inverse(self, day):
        assert date_from_excel_day_number(excel_day_number(day)) == day


class TestIsPast:
    def test_past(self):
        now = datetime(2024, 3, 15, 10, 0)
        assert is_past(now - timedelta(seconds=1), now) is True

    def test_future(self):
        now = datetime(2024, 3, 15, 10, 0)
        assert is_past(now + timedelta(days=1), now) is False

    def test_equal_is_not_past(self):
        now = datetime(2024, 3, 15, 10, 0)
        assert is_past(now, now) is False

    def test_defaults_to_wall_clock(self):
        assert is_past(datetime(2000, 1, 1)) is True


def test_add_days():
    assert add_days(16, datetime(2024, 3, 15, 10, 30)) == datetime(2024, 3, 31, 10, 30)
