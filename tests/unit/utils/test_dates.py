"""Test lenient date parsing."""
from datetime import date, datetime
import pytest
from orderpulse.utils.dates import parse_date, parse_datetime, utcnow


class TestParseDatetime:
    def test_iso_with_z(self):
        assert parse_datetime("2026-03-04T15:00:00Z") == datetime(2026, 3, 4, 15, 0)

    def test_offset_converted_to_naive_utc(self):
        assert parse_datetime("2026-03-04T10:00:00-05:00") == datetime(2026, 3, 4, 15, 0)

    @pytest.mark.parametrize("text", ["March 4, 2026", "Mar 4, 2026", "March 4th, 2026", "03/04/2026", "4 March 2026"])
    def test_merchant_formats(self, text):
        assert parse_datetime(text) == datetime(2026, 3, 4)

    @pytest.mark.parametrize("text", [None, "", "   ", "sometime next week"])
    def test_unparseable_is_none(self, text):
        assert parse_datetime(text) is None


class TestParseDate:
    def test_date_only(self):
        assert parse_date("2026-03-04") == date(2026, 3, 4)

    def test_none(self):
        assert parse_date("soon") is None


def test_utcnow_is_naive():
    assert utcnow().tzinfo is None
