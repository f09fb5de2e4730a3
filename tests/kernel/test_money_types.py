"""Tests for the money helpers in voucher_kernel.db.types."""

from decimal import ROUND_CEILING, ROUND_FLOOR, Decimal

import pytest

from voucher_kernel.db.types import (
    from_minor_units,
    line_total,
    round_face_value,
    round_money,
    round_wholesale,
    to_decimal,
    to_minor_units,
)


class TestToDecimal:
    def test_float_goes_through_str(self):
        assert to_decimal(9.114) == Decimal("9.114")

    def test_int_and_str(self):
        assert to_decimal(10) == Decimal("10")
        assert to_decimal("12.50") == Decimal("12.50")

    def test_decimal_passthrough(self):
        value = Decimal("1.2345")
        assert to_decimal(value) is value

    def test_empty_uses_default(self):
        assert to_decimal(None, Decimal("0")) == Decimal("0")
        assert to_decimal("", Decimal("0")) == Decimal("0")

    def test_empty_without_default_raises(self):
        with pytest.raises(ValueError):
            to_decimal(None)

    def test_garbage_raises(self):
        with pytest.raises(ValueError, match="Not a numeric amount"):
            to_decimal("ten dollars")


class TestRounding:
    def test_wholesale_four_places_half_up(self):
        assert round_wholesale(Decimal("9.11245")) == Decimal("9.1125")

    def test_face_value_two_places(self):
        assert round_face_value(Decimal("10.005")) == Decimal("10.01")

    def test_round_money_custom_places(self):
        assert round_money(Decimal("1.23456"), 3) == Decimal("1.235")

    def test_line_total(self):
        assert line_total(3, Decimal("9.1125"), 4) == Decimal("27.3375")
        assert line_total(3, Decimal("10.00"), 2) == Decimal("30.00")


class TestMinorUnits:
    def test_to_minor_units_rounds_to_cents(self):
        assert to_minor_units(Decimal("12.3456")) == 1235
        assert to_minor_units(Decimal("28.5")) == 2850

    def test_directional_rounding(self):
        assert to_minor_units(Decimal("10.0049"), rounding=ROUND_CEILING) == 1001
        assert to_minor_units(Decimal("10.0000"), rounding=ROUND_CEILING) == 1000
        assert to_minor_units(Decimal("28.4999"), rounding=ROUND_FLOOR) == 2849

    def test_from_minor_units(self):
        assert from_minor_units(1050) == Decimal("10.50")

    def test_exact_threshold_compares_equal(self):
        # 3 x 9.5 against a balance of exactly 28.50
        cost = line_total(3, Decimal("9.5"), 4)
        assert to_minor_units(cost) == to_minor_units(Decimal("28.50"))
