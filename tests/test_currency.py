"""
Test suite for currency module

Covers currency lookup, exact amount parsing and Money arithmetic.
"""

import pytest
from decimal import Decimal

from banking_ledger.currency import Currency, Money, parse_amount
from banking_ledger.errors import ValidationError


class TestCurrency:
    """Test Currency enum functionality"""

    def test_currency_properties(self):
        assert Currency.USD.code == "USD"
        assert Currency.USD.precision == 2
        assert Currency.JPY.precision == 0
        assert Currency.KWD.precision == 3

    def test_quantum(self):
        assert Currency.USD.quantum == Decimal("0.01")
        assert Currency.JPY.quantum == Decimal("1")
        assert Currency.KWD.quantum == Decimal("0.001")

    def test_from_code_is_case_insensitive(self):
        assert Currency.from_code("usd") is Currency.USD
        assert Currency.from_code(" EUR ") is Currency.EUR

    def test_from_code_unknown(self):
        with pytest.raises(ValidationError, match="Unsupported currency"):
            Currency.from_code("XYZ")

    def test_from_code_non_string(self):
        with pytest.raises(ValidationError):
            Currency.from_code(840)


class TestParseAmount:
    """Test amount parsing into exact decimals"""

    def test_string_amount(self):
        assert parse_amount("250.00", Currency.USD) == Decimal("250.00")

    def test_integer_amount_is_quantized(self):
        amount = parse_amount(100, Currency.USD)
        assert amount == Decimal("100")
        assert str(amount) == "100.00"

    def test_decimal_amount(self):
        assert parse_amount(Decimal("0.01"), Currency.USD) == Decimal("0.01")

    def test_float_rejected(self):
        with pytest.raises(ValidationError, match="float"):
            parse_amount(10.5, Currency.USD)

    def test_bool_rejected(self):
        with pytest.raises(ValidationError):
            parse_amount(True, Currency.USD)

    def test_malformed_string(self):
        with pytest.raises(ValidationError, match="Invalid amount"):
            parse_amount("ten dollars", Currency.USD)
        with pytest.raises(ValidationError, match="Invalid amount"):
            parse_amount("1e30", Currency.USD)
        with pytest.raises(ValidationError, match="Invalid amount"):
            parse_amount("1" * 29, Currency.USD)

    def test_non_finite(self):
        with pytest.raises(ValidationError):
            parse_amount("NaN", Currency.USD)
        with pytest.raises(ValidationError):
            parse_amount("Infinity", Currency.USD)

    def test_too_many_decimal_places(self):
        with pytest.raises(ValidationError, match="decimal places"):
            parse_amount("1.005", Currency.USD)
        with pytest.raises(ValidationError):
            parse_amount("1.5", Currency.JPY)

    def test_negative_parses(self):
        # Sign checks belong to the caller
        assert parse_amount("-5.00", Currency.USD) == Decimal("-5.00")


class TestMoney:
    """Test Money value type"""

    def test_addition_and_subtraction(self):
        a = Money(Decimal("100.10"), Currency.USD)
        b = Money(Decimal("0.20"), Currency.USD)
        assert (a + b).amount == Decimal("100.30")
        assert (a - b).amount == Decimal("99.90")

    def test_no_float_drift(self):
        total = Money.zero(Currency.USD)
        for _ in range(10):
            total = total + Money(Decimal("0.10"), Currency.USD)
        assert total.amount == Decimal("1.00")

    def test_currency_mismatch(self):
        with pytest.raises(ValueError, match="Currency mismatch"):
            Money(Decimal("1"), Currency.USD) + Money(Decimal("1"), Currency.EUR)

    def test_comparisons(self):
        small = Money(Decimal("1.00"), Currency.USD)
        large = Money(Decimal("2.00"), Currency.USD)
        assert small < large
        assert large >= small
        assert (-small).amount == Decimal("-1.00")

    def test_predicates_and_format(self):
        assert Money.zero(Currency.USD).is_zero()
        assert Money(Decimal("1234.5"), Currency.USD).is_positive()
        assert Money(Decimal("1234.5"), Currency.USD).to_string() == "USD 1,234.50"
