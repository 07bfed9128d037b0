# Overview: Pytest coverage for the Money value type.

import pytest
from decimal import Decimal
from fractions import Fraction

from tillcore.errors import MoneyError
from tillcore.money import Money, round_half_up, to_fraction


class TestParsing:
    def test_decimal_strings(self):
        assert Money.from_decimal_string("12").cents == 1200
        assert Money.from_decimal_string("12.5").cents == 1250
        assert Money.from_decimal_string("7.63").cents == 763
        assert Money.from_decimal_string(".05").cents == 5

    def test_half_up_rounding(self):
        """Halves round away from zero, on both sides."""
        assert Money.from_decimal_string("7.625").cents == 763
        assert Money.from_decimal_string("7.624").cents == 762
        assert Money.from_decimal_string("-0.015").cents == -2
        assert Money.from_decimal_string("-0.014").cents == -1

    @pytest.mark.parametrize("text", ["1,234.50", "abc", "", "1e3", "$5", "1.2.3"])
    def test_rejects_malformed_text(self, text):
        with pytest.raises(MoneyError):
            Money.from_decimal_string(text)

    def test_rejects_floats_and_bools(self):
        with pytest.raises(MoneyError):
            Money(1.5)
        with pytest.raises(MoneyError):
            Money(True)
        with pytest.raises(MoneyError):
            Money.from_decimal_string(7.63)

    def test_to_fraction_inputs(self):
        assert to_fraction(3) == Fraction(3)
        assert to_fraction(Decimal("0.10")) == Fraction(1, 10)
        assert to_fraction("1.5") == Fraction(3, 2)
        with pytest.raises(MoneyError):
            to_fraction(0.1)


class TestArithmetic:
    def test_add_and_sum(self):
        assert (Money(150) + Money(250)).cents == 400
        assert Money.sum([Money(1), Money(2), Money(3)]) == Money(6)
        assert Money.sum([]) == Money.zero()

    def test_subtract_fails_fast_when_negative(self):
        assert (Money(500) - Money(200)).cents == 300
        with pytest.raises(MoneyError):
            Money(200).subtract(Money(500))

    def test_subtract_floor_clamps(self):
        assert Money(200).subtract_floor(Money(500)) == Money(0)
        assert Money(500).subtract_floor(Money(200)) == Money(300)

    def test_multiply_rounds_once(self):
        assert Money(350).multiply(2) == Money(700)
        assert Money(333).multiply("0.5") == Money(167)
        assert Money(399).multiply(Fraction(3, 2)) == Money(599)

    def test_percent_of(self):
        assert Money(700).percent_of(10) == Money(70)
        assert Money(5).percent_of(10) == Money(1)  # 0.5 rounds up
        with pytest.raises(MoneyError):
            Money(700).percent_of(101)

    def test_round_half_up_helper(self):
        assert round_half_up(Fraction(5, 2)) == 3
        assert round_half_up(Fraction(-5, 2)) == -3
        assert round_half_up(Fraction(7, 3)) == 2


def test_formatting():
    assert Money(763).to_decimal_string() == "7.63"
    assert str(Money(5)) == "0.05"
    assert str(Money(-5)) == "-0.05"
    assert Money(0).to_decimal_string() == "0.00"
