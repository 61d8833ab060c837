"""Tests for settlement period suggestion."""

from datetime import date, timedelta

import pytest

from settleup.period import suggest_period

TODAY = date(2026, 2, 7)


def suggest(
    oldest: date | None = None,
    newest: date | None = None,
    count: int = 0,
    last_end: date | None = None,
    on_last_end: bool = False,
    today: date = TODAY,
):
    """Call suggest_period with short argument names."""
    return suggest_period(
        oldest_unsettled_date=oldest,
        newest_unsettled_date=newest,
        unsettled_count=count,
        last_confirmed_end=last_end,
        has_unsettled_on_last_confirmed=on_last_end,
        today=today,
    )


class TestNoPreviousSettlement:
    """Suggestions for a group that never settled."""

    def test_uses_unsettled_range(self):
        result = suggest(oldest=date(2026, 1, 5), newest=date(2026, 1, 25), count=5)

        assert result.suggested_start == date(2026, 1, 5)
        assert result.suggested_end == date(2026, 1, 25)
        assert result.unsettled_count == 5

    def test_no_data_uses_current_month(self):
        result = suggest()

        assert result.suggested_start == date(2026, 2, 1)
        assert result.suggested_end == TODAY


class TestWithPreviousSettlement:
    """Suggestions after a confirmed session."""

    def test_starts_day_after_last_end(self):
        result = suggest(
            oldest=date(2026, 2, 1),
            newest=date(2026, 2, 5),
            count=2,
            last_end=date(2026, 1, 31),
        )

        assert result.suggested_start == date(2026, 2, 1)
        assert result.suggested_end == date(2026, 2, 5)
        assert result.last_confirmed_end == date(2026, 1, 31)

    def test_includes_last_end_when_data_on_that_day(self):
        result = suggest(
            oldest=date(2026, 1, 31),
            newest=date(2026, 2, 5),
            count=3,
            last_end=date(2026, 1, 31),
            on_last_end=True,
        )

        assert result.suggested_start == date(2026, 1, 31)

    def test_back_dated_payment_pulls_start_back(self):
        result = suggest(
            oldest=date(2026, 1, 10),
            newest=date(2026, 2, 3),
            count=2,
            last_end=date(2026, 1, 31),
        )

        assert result.suggested_start == date(2026, 1, 10)

    def test_no_new_data_collapses_to_end(self):
        # Settled through today, nothing new: start would be tomorrow
        result = suggest(last_end=TODAY)

        assert result.suggested_start == TODAY
        assert result.suggested_end == TODAY

    def test_month_boundary(self):
        result = suggest(
            oldest=date(2026, 3, 1),
            newest=date(2026, 3, 2),
            count=1,
            last_end=date(2026, 2, 28),
            today=date(2026, 3, 3),
        )

        assert result.suggested_start == date(2026, 3, 1)


@pytest.mark.parametrize("last_end_offset", [None, -40, -1, 0, 5])
@pytest.mark.parametrize("oldest_offset", [None, -60, -3, 0])
@pytest.mark.parametrize("on_last_end", [False, True])
def test_start_never_after_end(last_end_offset, oldest_offset, on_last_end):
    """Start <= end for every combination of inputs."""
    oldest = TODAY + timedelta(days=oldest_offset) if oldest_offset is not None else None
    newest = TODAY if oldest is not None else None
    last_end = (
        TODAY + timedelta(days=last_end_offset) if last_end_offset is not None else None
    )

    result = suggest(
        oldest=oldest,
        newest=newest,
        count=1 if oldest else 0,
        last_end=last_end,
        on_last_end=on_last_end,
    )

    assert result.suggested_start <= result.suggested_end
    if oldest is not None:
        assert result.suggested_start <= oldest
