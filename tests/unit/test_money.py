"""
Unit tests for Money and Currency.

Verifies:
- Fixed-scale construction (over-scale amounts rejected, not rounded)
- Float prohibition
- parse_positive rejections for untrusted input
- Currency-safe arithmetic and comparison
- Balance helpers (subtract_clamped, min, sum, ratio_to)
"""

from decimal import Decimal

import pytest

from receivables_kernel.domain.values import Currency, Money
from receivables_kernel.exceptions import (
    CurrencyMismatchError,
    InvalidAmountError,
    InvalidCurrencyError,
)


class TestCurrency:
    """Tests for the Currency value object."""

    def test_code_is_normalized(self):
        """Lowercase and padded codes are normalized."""
        assert Currency(" nio ").code == "NIO"

    def test_unknown_code_rejected(self):
        """Codes outside the registry raise InvalidCurrencyError."""
        with pytest.raises(InvalidCurrencyError):
            Currency("XXX")

    def test_quantum_follows_decimal_places(self):
        assert Currency("USD").quantum == Decimal("0.01")
        assert Currency("JPY").quantum == Decimal("1")


class TestMoneyConstruction:
    """Tests for Money constructors."""

    def test_of_scales_to_currency(self):
        """Integer and short text amounts are stored at the currency scale."""
        m = Money.of("400", "NIO")
        assert m.amount == Decimal("400.00")
        assert str(m.amount) == "400.00"

    def test_float_rejected(self):
        """Binary floats never become Money."""
        with pytest.raises(InvalidAmountError):
            Money.of(0.1, "NIO")

    def test_bool_rejected(self):
        with pytest.raises(InvalidAmountError):
            Money.of(True, "NIO")

    def test_over_scale_rejected(self):
        """Three decimals in a 2-decimal currency is an error, not a rounding."""
        with pytest.raises(InvalidAmountError):
            Money.of("10.005", "NIO")

    def test_non_finite_rejected(self):
        with pytest.raises(InvalidAmountError):
            Money.of(Decimal("NaN"), "NIO")

    def test_quantized_rounds_half_up(self):
        """Computed values are rounded half-up to the currency scale."""
        assert Money.quantized(Decimal("10.005"), "NIO").amount == Decimal("10.01")
        assert Money.quantized(Decimal("10.004"), "NIO").amount == Decimal("10.00")

    def test_oversized_amount_is_invalid_amount(self):
        """Quantizing beyond the decimal context precision is an InvalidAmountError."""
        with pytest.raises(InvalidAmountError):
            Money.of(Decimal("1" + "0" * 30), "NIO")
        with pytest.raises(InvalidAmountError):
            Money.quantized(Decimal("1" + "0" * 30), "NIO")

    def test_zero(self):
        assert Money.zero("NIO").is_zero


class TestParsePositive:
    """Tests for the untrusted-input boundary."""

    def test_plain_text(self):
        assert Money.parse_positive("1500.50", "NIO") == Money.of("1500.50", "NIO")

    def test_comma_decimal_separator(self):
        """A single comma is accepted as the decimal separator."""
        assert Money.parse_positive("1500,50", "NIO") == Money.of("1500.50", "NIO")

    def test_integer_and_decimal_inputs(self):
        assert Money.parse_positive(25, "NIO").amount == Decimal("25.00")
        assert Money.parse_positive(Decimal("25.10"), "NIO").amount == Decimal("25.10")

    @pytest.mark.parametrize("value", ["abc", "", "  ", "1.2.3", "1e5", None, "Infinity"])
    def test_non_numeric_rejected(self, value):
        with pytest.raises(InvalidAmountError):
            Money.parse_positive(value, "NIO")

    @pytest.mark.parametrize("value", ["0", "0.00", "-5", Decimal("-0.01")])
    def test_zero_and_negative_rejected(self, value):
        with pytest.raises(InvalidAmountError):
            Money.parse_positive(value, "NIO")

    def test_float_rejected(self):
        with pytest.raises(InvalidAmountError):
            Money.parse_positive(12.5, "NIO")

    def test_too_many_decimals_rejected(self):
        with pytest.raises(InvalidAmountError) as exc_info:
            Money.parse_positive("1.234", "NIO", field="allocations[0].amount")
        assert exc_info.value.field == "allocations[0].amount"

    @pytest.mark.parametrize("value", ["1" + "0" * 30, "10000000000000000", 10**16])
    def test_oversized_amount_rejected(self, value):
        with pytest.raises(InvalidAmountError):
            Money.parse_positive(value, "NIO")

    def test_largest_storable_amount_accepted(self):
        assert Money.parse_positive("9999999999999999.99", "NIO").amount == Decimal(
            "9999999999999999.99"
        )


class TestMoneyArithmetic:
    """Tests for arithmetic and comparison."""

    def test_add_and_subtract(self):
        a = Money.of("100.10", "NIO")
        b = Money.of("0.20", "NIO")
        assert (a + b).amount == Decimal("100.30")
        assert (a - b).amount == Decimal("99.90")

    def test_exact_cents(self):
        """0.10 + 0.20 is exactly 0.30."""
        total = Money.of("0.10", "NIO") + Money.of("0.20", "NIO")
        assert total == Money.of("0.30", "NIO")

    def test_mixed_currency_add_raises(self):
        with pytest.raises(CurrencyMismatchError):
            Money.of("1", "NIO") + Money.of("1", "USD")

    def test_mixed_currency_compare_raises(self):
        with pytest.raises(CurrencyMismatchError):
            Money.of("1", "NIO") < Money.of("1", "USD")

    def test_subtract_clamped_floors_at_zero(self):
        result = Money.of("100", "NIO").subtract_clamped(Money.of("150", "NIO"))
        assert result.is_zero

    def test_min(self):
        smallest = Money.min(Money.of("5", "NIO"), Money.of("3", "NIO"), Money.of("4", "NIO"))
        assert smallest == Money.of("3", "NIO")

    def test_sum_of_empty_is_zero(self):
        assert Money.sum([], "NIO") == Money.zero("NIO")

    def test_ratio_to(self):
        used = Money.of("9500", "NIO")
        limit = Money.of("10000", "NIO")
        assert used.ratio_to(limit) == Decimal("0.9500")

    def test_ratio_to_zero_denominator(self):
        """Division by a zero amount yields 0, never an error."""
        assert Money.of("10", "NIO").ratio_to(Money.zero("NIO")) == Decimal("0.0000")
