"""Tests for the Money and Currency value objects."""

from decimal import Decimal

import pytest

from storage_kernel.domain.currency import CurrencyRegistry
from storage_kernel.domain.values import Currency, Money


class TestCurrency:
    """Currency code validation and precision."""

    def test_normalizes_code(self):
        assert Currency(" inr ").code == "INR"

    def test_rejects_unknown_code(self):
        with pytest.raises(ValueError, match="Invalid ISO 4217"):
            Currency("XYZ")

    def test_decimal_places(self):
        assert Currency("INR").decimal_places == 2
        assert Currency("JPY").decimal_places == 0
        assert Currency("KWD").decimal_places == 3

    def test_rounding_tolerance(self):
        assert Currency("INR").rounding_tolerance == Decimal("0.01")

    def test_registry_validate(self):
        assert CurrencyRegistry.validate("npr") == "NPR"
        with pytest.raises(ValueError, match="3 characters"):
            CurrencyRegistry.validate("RUPEE")


class TestMoneyConstruction:
    """Construction rules."""

    def test_of_string(self):
        m = Money.of("36.50", "INR")
        assert m.amount == Decimal("36.50")
        assert m.currency == Currency("INR")

    def test_of_int(self):
        assert Money.of(55, "INR").amount == Decimal("55")

    def test_float_rejected(self):
        """Floats never enter billing arithmetic."""
        with pytest.raises(ValueError, match="float"):
            Money(amount=36.5, currency=Currency("INR"))

    def test_zero(self):
        assert Money.zero("INR").is_zero

    def test_total(self):
        amounts = [Money.of("10", "INR"), Money.of("2.50", "INR")]
        assert Money.total(amounts, "INR") == Money.of("12.50", "INR")

    def test_total_of_nothing_is_zero(self):
        assert Money.total([], "INR") == Money.zero("INR")


class TestMoneyArithmetic:
    """Arithmetic and comparison."""

    def test_add_and_subtract(self):
        a = Money.of("100", "INR")
        b = Money.of("30.25", "INR")
        assert a + b == Money.of("130.25", "INR")
        assert a - b == Money.of("69.75", "INR")

    def test_multiply_by_bag_count(self):
        assert Money.of("36", "INR") * 50 == Money.of("1800", "INR")
        assert 50 * Money.of("36", "INR") == Money.of("1800", "INR")

    def test_multiply_by_bool_not_supported(self):
        with pytest.raises(TypeError):
            Money.of("36", "INR") * True

    def test_mixed_currency_rejected(self):
        with pytest.raises(ValueError, match="different currencies"):
            Money.of("1", "INR") + Money.of("1", "USD")

    def test_mixed_currency_comparison_rejected(self):
        with pytest.raises(ValueError, match="different currencies"):
            Money.of("1", "INR") < Money.of("1", "USD")

    def test_round_half_up(self):
        assert Money.of("10.005", "INR").round() == Money.of("10.01", "INR")
        assert Money.of("10.004", "INR").round() == Money.of("10.00", "INR")

    def test_round_zero_decimal_currency(self):
        assert Money.of("99.5", "JPY").round().amount == Decimal("100")

    def test_sign_properties(self):
        assert Money.of("1", "INR").is_positive
        assert Money.of("-1", "INR").is_negative
        assert abs(Money.of("-1", "INR")) == Money.of("1", "INR")
        assert -Money.of("1", "INR") == Money.of("-1", "INR")

    def test_max_works_with_ordering(self):
        credit = Money.of("-20", "INR")
        assert max(credit, Money.zero("INR")) == Money.zero("INR")
