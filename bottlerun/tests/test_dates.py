from __future__ import annotations

from datetime import date, datetime
from zoneinfo import ZoneInfo

import pytest

from bottlerun.utils.dates import parse_iso_day, parse_optional_day, today_local, week_range


def test_today_local_follows_timezone():
    before = datetime.now(ZoneInfo("Australia/Sydney")).date()
    today = today_local("Australia/Sydney")
    after = datetime.now(ZoneInfo("Australia/Sydney")).date()
    assert before <= today <= after


@pytest.mark.parametrize("bad", ["2024-6-10", "10/06/2024", "2024-02-30", "", None])
def test_parse_iso_day_is_strict(bad):
    with pytest.raises(ValueError):
        parse_iso_day(bad)


def test_optional_day_and_week_range():
    assert parse_optional_day("  ") is None
    assert parse_optional_day(" 2024-06-12 ") == date(2024, 6, 12)
    assert week_range(date(2024, 6, 12)) == (date(2024, 6, 10), date(2024, 6, 16))
