"""
Tests for month parsing.
"""

from datetime import date

import pytest

from allocator.engine.errors import ValidationError
from allocator.engine.periods import month_key, parse_month, unique_months


class TestParseMonth:

    def test_january(self):
        assert parse_month("2025-01") == (date(2025, 1, 1), date(2025, 1, 31))

    def test_leap_february(self):
        assert parse_month("2024-02") == (date(2024, 2, 1), date(2024, 2, 29))

    def test_plain_february(self):
        assert parse_month("2025-02")[1] == date(2025, 2, 28)

    def test_surrounding_whitespace_ignored(self):
        assert parse_month(" 2025-12 ")[0] == date(2025, 12, 1)

    @pytest.mark.parametrize("bad", ["2025-13", "2025-00", "2025-1", "25-01", "2025/01", "", "January", "1899-12"])
    def test_malformed_rejected(self, bad):
        with pytest.raises(ValidationError) as exc:
            parse_month(bad)
        assert exc.value.error_code == "ERR_INVALID_MONTH"

    def test_non_string_rejected(self):
        with pytest.raises(ValidationError):
            parse_month(202501)


class TestMonthKeys:

    def test_month_key(self):
        assert month_key(date(2025, 3, 9)) == "2025-03"

    def test_unique_months_sorted(self):
        days = [date(2025, 3, 1), date(2024, 12, 31), date(2025, 3, 20), None]
        assert unique_months(days) == ["2024-12", "2025-03"]
