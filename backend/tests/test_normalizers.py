"""
Unit Tests for Amount and Date Normalization

Run with: pytest tests/test_normalizers.py -v
"""

import pytest
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from reconciliation.errors import ValidationError
from reconciliation.normalizers import as_utc, normalize_datetime, to_major_units, to_minor_units

UTC = timezone.utc


class TestToMinorUnits:

    @pytest.mark.parametrize("amount,expected", [
        (150, 15000),
        (150.10, 15010),
        ("150.10", 15010),
        (Decimal("0.01"), 1),
        ("$1,234.56", 123456),
        (-25.5, -2550),
        (0, 0),
        ("0.005", 1),
    ])
    def test_conversion(self, amount, expected):
        assert to_minor_units(amount) == expected

    @pytest.mark.parametrize("amount", ["abc", "", "   ", None, True, "NaN", "Infinity"])
    def test_rejects_non_numeric(self, amount):
        with pytest.raises(ValidationError) as exc_info:
            to_minor_units(amount, field="payment_amount")
        assert exc_info.value.field == "payment_amount"


class TestToMajorUnits:

    def test_two_places(self):
        assert to_major_units(15010) == Decimal("150.10")
        assert str(to_major_units(5)) == "0.05"
        assert to_major_units(-2550) == Decimal("-25.50")


class TestNormalizeDatetime:

    def test_iso_with_z(self):
        assert normalize_datetime("2024-01-10T12:30:00Z") == datetime(2024, 1, 10, 12, 30, tzinfo=UTC)

    def test_offset_converted_to_utc(self):
        result = normalize_datetime("2024-01-10T12:00:00+02:00")
        assert result == datetime(2024, 1, 10, 10, 0, tzinfo=UTC)
        assert result.utcoffset() == timedelta(0)

    @pytest.mark.parametrize("value", ["2024-01-10", "01/10/2024", "2024/01/10", "10-Jan-2024"])
    def test_bank_export_formats(self, value):
        assert normalize_datetime(value) == datetime(2024, 1, 10, tzinfo=UTC)

    def test_naive_datetime_taken_as_utc(self):
        assert normalize_datetime(datetime(2024, 1, 10, 8)) == datetime(2024, 1, 10, 8, tzinfo=UTC)

    def test_date_object(self):
        assert normalize_datetime(date(2024, 1, 10)) == datetime(2024, 1, 10, tzinfo=UTC)

    @pytest.mark.parametrize("value", ["not-a-date", "", None, 20240110])
    def test_invalid(self, value):
        with pytest.raises(ValidationError) as exc_info:
            normalize_datetime(value, field="date")
        assert exc_info.value.field == "date"

    def test_as_utc(self):
        eastern = timezone(timedelta(hours=-5))
        assert as_utc(datetime(2024, 1, 10, 7, tzinfo=eastern)) == datetime(2024, 1, 10, 12, tzinfo=UTC)
        assert as_utc(datetime(2024, 1, 10)).tzinfo is UTC
