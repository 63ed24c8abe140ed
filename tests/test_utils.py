"""Money and datetime parsing shared by the services."""
from datetime import datetime
from decimal import Decimal

import pytest

from marketplace.errors import ValidationError
from marketplace.utils import commission_split, parse_datetime, parse_money


class TestParseMoney:

    def test_rounds_half_up_to_cents(self):
        assert parse_money('10.005', 'price') == Decimal('10.01')

    @pytest.mark.parametrize('value', ['NaN', 'sNaN', 'Infinity', 'abc'])
    def test_non_finite_or_garbage(self, value):
        with pytest.raises(ValidationError) as exc:
            parse_money(value, 'price')
        assert exc.value.field == 'price'

    def test_zero_only_when_allowed(self):
        with pytest.raises(ValidationError):
            parse_money('0', 'price')
        assert parse_money('0', 'price', allow_zero=True) == Decimal('0.00')

    def test_commission_split(self):
        assert commission_split('100.00', '12.5') == (
            Decimal('12.50'), Decimal('87.50'))


class TestParseDatetime:

    def test_offset_is_converted_to_utc(self):
        assert parse_datetime('2026-01-01T00:00+05:30', 'expires_at') == \
            datetime(2025, 12, 31, 18, 30)

    def test_zulu_suffix(self):
        assert parse_datetime('2026-03-01T12:00:00Z', 'expires_at') == \
            datetime(2026, 3, 1, 12, 0)

    def test_naive_value_is_taken_as_utc(self):
        assert parse_datetime('2026-03-01T12:00:00', 'expires_at') == \
            datetime(2026, 3, 1, 12, 0)

    def test_blank_is_none(self):
        assert parse_datetime('', 'expires_at') is None

    def test_garbage(self):
        with pytest.raises(ValidationError) as exc:
            parse_datetime('next tuesday', 'expires_at')
        assert exc.value.field == 'expires_at'
