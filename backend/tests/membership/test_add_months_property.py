"""Property-based tests for calendar-safe month arithmetic."""

import calendar
from datetime import datetime, timezone

from hypothesis import given, settings, strategies as st

from app.modules.membership.models import add_months_safe


anchor_strategy = st.builds(
    lambda y, m, d: datetime(y, m, d, tzinfo=timezone.utc),
    st.integers(min_value=2000, max_value=2100),
    st.integers(min_value=1, max_value=12),
    st.integers(min_value=1, max_value=28),
)
any_day_strategy = st.builds(
    lambda y, m, d: datetime(y, m, min(d, calendar.monthrange(y, m)[1]), tzinfo=timezone.utc),
    st.integers(min_value=2000, max_value=2100),
    st.integers(min_value=1, max_value=12),
    st.integers(min_value=1, max_value=31),
)
months_strategy = st.integers(min_value=0, max_value=36)


class TestAddMonthsSafe:
    """Calendar laws for add_months_safe."""

    @given(year=st.integers(min_value=1900, max_value=2200))
    def test_end_of_january_clamps_to_end_of_february(self, year: int) -> None:
        result = add_months_safe(datetime(year, 1, 31, tzinfo=timezone.utc), 1)

        assert result.month == 2
        assert result.day == (29 if calendar.isleap(year) else 28)

    @given(anchor=anchor_strategy, n=months_strategy, m=months_strategy)
    @settings(max_examples=200)
    def test_composition_for_anchor_dates(self, anchor: datetime, n: int, m: int) -> None:
        """*For any* anchor on day 28 or earlier, adding N+M SHALL equal adding M then N."""
        assert add_months_safe(anchor, n + m) == add_months_safe(add_months_safe(anchor, m), n)

    @given(value=any_day_strategy, months=st.integers(min_value=-24, max_value=36))
    @settings(max_examples=200)
    def test_result_lands_in_target_month(self, value: datetime, months: int) -> None:
        result = add_months_safe(value, months)

        year, month_zero = divmod(value.year * 12 + value.month - 1 + months, 12)
        assert (result.year, result.month) == (year, month_zero + 1)
        assert result.day == min(value.day, calendar.monthrange(result.year, result.month)[1])
        assert result.tzinfo == value.tzinfo

    def test_negative_months(self) -> None:
        result = add_months_safe(datetime(2024, 8, 31, tzinfo=timezone.utc), -6)

        assert result == datetime(2024, 2, 29, tzinfo=timezone.utc)

    def test_year_rollover(self) -> None:
        result = add_months_safe(datetime(2024, 11, 30, tzinfo=timezone.utc), 3)

        assert result == datetime(2025, 2, 28, tzinfo=timezone.utc)
